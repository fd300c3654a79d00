"""Collection query primitives shared by every store implementation."""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Sequence


class _ServerTimestamp:
    """Sentinel resolved by the store to its own clock at write time."""

    _instance: "_ServerTimestamp | None" = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def has_server_timestamp(data: dict[str, Any]) -> bool:
    return any(v is SERVER_TIMESTAMP for v in data.values())


def provisional(data: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Copy of *data* with server timestamps replaced by a local estimate.

    Used only to validate a write before sending it; the stored value is
    always the store's own time.
    """
    stamp = now or datetime.now(timezone.utc)
    return {k: (stamp if v is SERVER_TIMESTAMP else v) for k, v in data.items()}


def _in(value: Any, candidates: Any) -> bool:
    return value in candidates


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _in,
}


@dataclass(frozen=True)
class FieldFilter:
    """``field op value`` over a document's wire fields.

    Comparisons other than ``==``/``!=`` never match a missing or null field,
    mirroring managed document stores.
    """

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op!r}")

    def matches(self, data: dict[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op in ("==", "!="):
            return _OPERATORS[self.op](actual, self.value)
        if actual is None:
            return False
        try:
            return _OPERATORS[self.op](actual, self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass
class DocumentSnapshot:
    """A document id with a copy of its data."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)


def where(field_name: str, op: str, value: Any) -> FieldFilter:
    return FieldFilter(field_name, op, value)


def apply_query(
    docs: Sequence[DocumentSnapshot],
    filters: Sequence[FieldFilter] = (),
    order_by: Sequence[OrderBy] = (),
) -> list[DocumentSnapshot]:
    """Filter then sort. Nulls sort first ascending, last descending."""
    result = [d for d in docs if all(f.matches(d.data) for f in filters)]
    # Stable sort: apply the least significant key first.
    for order in reversed(order_by):
        present = [d for d in result if d.data.get(order.field) is not None]
        missing = [d for d in result if d.data.get(order.field) is None]
        present.sort(key=lambda d: d.data[order.field], reverse=order.descending)
        result = present + missing if order.descending else missing + present
    return result
