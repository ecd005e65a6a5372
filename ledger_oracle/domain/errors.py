"""
Failure taxonomy for the ledger oracle.

Every error the checks and the soak harness raise derives from OracleError so
the CLI can render it and exit non-zero. Comparison failures carry both sides
of the comparison as JSON so they can be printed as a before/after report.
"""
from __future__ import annotations

import difflib
import json
from pathlib import Path
from typing import Any, List, Optional


def pretty_json(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def unified_json_diff(expected: Any, actual: Any, expected_label: str, actual_label: str) -> str:
    """Line diff of two JSON values, pretty-printed with sorted keys."""
    lines = difflib.unified_diff(
        pretty_json(expected).splitlines(),
        pretty_json(actual).splitlines(),
        fromfile=expected_label,
        tofile=actual_label,
        lineterm="",
    )
    return "\n".join(lines)


class OracleError(Exception):
    """Base class for every fatal oracle failure."""


class SubscriptionError(OracleError, ConnectionError):
    """A subscription could not be established, or dropped with an error."""


class SequenceViolation(OracleError):
    """Gap, duplicate or regression in a subscription's slot numbering."""

    def __init__(self, expected: int, actual: int, stream: str = "slots with children") -> None:
        self.expected = expected
        self.actual = actual
        self.stream = stream
        super().__init__(
            f"Slot number out of sequence on {stream}! Expected {expected}, got {actual}"
        )


class ComparisonError(OracleError):
    left_label = "left"
    right_label = "right"

    def __init__(self, description: str, left: Any, right: Any) -> None:
        self.description = description
        self.left = left
        self.right = right
        super().__init__(f"{description}: comparison failed")

    def sides(self) -> List[tuple[str, Any]]:
        return [(self.left_label, self.left), (self.right_label, self.right)]

    def diff(self) -> str:
        return unified_json_diff(self.right, self.left, self.right_label, self.left_label)

    def report(self) -> str:
        """Human-diffable rendering: both sides pretty-printed, then the diff."""
        parts = [f"{self.description}:"]
        for label, value in self.sides():
            parts.append(f"{label.capitalize()}: {pretty_json(value)}")
        parts.append(self.diff())
        return "\n".join(parts)


class InconsistentView(ComparisonError):
    """Two retrieval paths that must agree returned different records."""

    left_label = "first"
    right_label = "second"


class SnapshotMismatch(ComparisonError):
    """A record differs from its persisted baseline."""

    left_label = "actual"
    right_label = "expected"

    def __init__(self, description: str, actual: Any, expected: Any) -> None:
        super().__init__(description, actual, expected)
        self.args = (f"{description}: snapshot mismatch",)

    @property
    def actual(self) -> Any:
        return self.left

    @property
    def expected(self) -> Any:
        return self.right


class MissingSnapshot(OracleError):
    """No baseline exists for the requested slot number."""

    def __init__(self, number: int, path: Optional[Path] = None) -> None:
        self.number = number
        self.path = path
        location = f" at {path}" if path else ""
        super().__init__(f"Missing snapshot for slot {number}{location}")


class TransientFetchError(OracleError):
    """Network or service error on a point lookup or submission."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ThroughputRegression(OracleError):
    """Second-phase throughput fell below the accepted ratio of the first."""

    def __init__(self, previous: float, current: float, ratio: float) -> None:
        self.previous = previous
        self.current = current
        self.ratio = ratio
        super().__init__(
            f"Throughput is less than {ratio:.0%} of the previous throughput. "
            f"Old throughput: {previous:.2f} txs/slot, new throughput: {current:.2f} txs/slot"
        )


class ProcessFailure(OracleError):
    """The service under test exited uncleanly."""

    def __init__(self, returncode: Optional[int], detail: str = "") -> None:
        self.returncode = returncode
        message = f"Rollup process failed with exit status {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


__all__ = [
    "ComparisonError",
    "InconsistentView",
    "MissingSnapshot",
    "OracleError",
    "ProcessFailure",
    "SequenceViolation",
    "SnapshotMismatch",
    "SubscriptionError",
    "ThroughputRegression",
    "TransientFetchError",
    "pretty_json",
    "unified_json_diff",
]
