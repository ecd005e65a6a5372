"""
Equivalence checks between two representations of the same ledger record.

Each check runs twice: once over the typed fields and once over the JSON the
service sent. The typed comparison normalizes values through the models, so
encoding-level differences (a field present but empty on one path and absent
on the other, a number rendered as a string) only show up in the JSON one.
"""

from __future__ import annotations

from typing import Sequence

from ledger_oracle.domain.errors import InconsistentView
from ledger_oracle.domain.models import WireRecord


def assert_typed_match(
    first: WireRecord, second: WireRecord, description: str, *ignore: str
) -> None:
    """Typed field equality, children (and any `ignore`d fields) excluded."""
    first_fields = first.typed_fields(*ignore)
    second_fields = second.typed_fields(*ignore)
    if first_fields != second_fields:
        raise InconsistentView(description, first_fields, second_fields)


def assert_json_match(first: WireRecord, second: WireRecord, description: str) -> None:
    """Wire JSON equality with the children field stripped from both sides."""
    first_json = first.to_json(exclude_children=True)
    second_json = second.to_json(exclude_children=True)
    if first_json != second_json:
        raise InconsistentView(f"{description} JSON", first_json, second_json)


def assert_equivalent(first: WireRecord, second: WireRecord, description: str) -> None:
    """Both representations agree on everything except their children."""
    assert_typed_match(first, second, description)
    assert_json_match(first, second, description)


def assert_children_match(
    first: Sequence[WireRecord], second: Sequence[WireRecord], description: str
) -> None:
    """Element-for-element equality of two child lists, typed and JSON."""
    first_typed = [child.model_dump(mode="json") for child in first]
    second_typed = [child.model_dump(mode="json") for child in second]
    if first_typed != second_typed:
        raise InconsistentView(f"{description}: children", first_typed, second_typed)
    first_json = [child.to_json() for child in first]
    second_json = [child.to_json() for child in second]
    if first_json != second_json:
        raise InconsistentView(f"{description}: children JSON", first_json, second_json)


def assert_identical(first: WireRecord, second: WireRecord, description: str) -> None:
    """Full equality, children included."""
    assert_equivalent(first, second, description)
    assert_children_match(first.children, second.children, description)


__all__ = [
    "assert_children_match",
    "assert_equivalent",
    "assert_identical",
    "assert_json_match",
    "assert_typed_match",
]
