"""
Transaction preparation script for the ledger oracle soak workers.

Signing happens outside this project. This script collects transactions that
were already signed, either as raw binary files or as hex lines, and writes
them as the line-oriented base64 file the worker pool reads
(`TRANSACTIONS_PATH`).
"""

from __future__ import annotations

import base64
import sys
import time
from pathlib import Path
from typing import Iterable, Iterator, List

import typer

app = typer.Typer(help="Convert signed transactions into the soak workers' base64 line format.")


def _encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _from_binary_files(paths: Iterable[Path]) -> Iterator[str]:
    for path in paths:
        yield _encode(path.read_bytes())


def _from_hex_lines(path: Path) -> Iterator[str]:
    with path.open("r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            text = line.strip()
            if not text or text.startswith("#"):
                continue
            text = text.removeprefix("0x")
            try:
                yield _encode(bytes.fromhex(text))
            except ValueError as exc:
                raise typer.BadParameter(f"{path}:{line_number}: not valid hex ({exc})") from exc


def _collect_binary(source: Path, pattern: str) -> List[Path]:
    if source.is_file():
        return [source]
    return sorted(p for p in source.glob(pattern) if p.is_file())


def write_transactions(bodies: Iterable[str], output: Path) -> int:
    """Write one base64 body per line; returns how many were written."""
    output.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with output.open("w", encoding="utf-8") as f:
        for body in bodies:
            f.write(body + "\n")
            count += 1
    return count


@app.command()
def main(
    source: Path = typer.Argument(
        ...,
        exists=True,
        help="A directory of signed transaction files, a single file, or a hex file with --hex.",
    ),
    output: Path = typer.Option(
        Path("acceptance-test-data/transactions.b64"),
        "--output",
        "-o",
        help="Destination file, one base64 transaction body per line.",
    ),
    hex_lines: bool = typer.Option(
        False,
        "--hex",
        help="Read SOURCE as a text file with one hex-encoded transaction per line.",
    ),
    pattern: str = typer.Option(
        "*.bin",
        "--pattern",
        "-p",
        help="Glob for signed transaction files when SOURCE is a directory.",
    ),
) -> None:
    """
    Convert signed transactions into the base64 line format.
    """
    start = time.perf_counter()
    if hex_lines:
        bodies: Iterable[str] = _from_hex_lines(source)
    else:
        files = _collect_binary(source, pattern)
        if not files:
            typer.echo(f"No files matching '{pattern}' under {source}", err=True)
            raise typer.Exit(code=1)
        bodies = _from_binary_files(files)

    count = write_transactions(bodies, output)
    duration = time.perf_counter() - start
    typer.echo(f"Wrote {count:,} transactions -> {output} in {duration:.2f}s")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
