"""Statistics re-derived from a merged view.

All functions are pure and recompute from the full view; none keeps state
between merges.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Hashable, TypeVar

from .view import MergedView

RowT = TypeVar("RowT")


def count_by_partition(view: MergedView[Any]) -> dict[str, int]:
    counts: Counter[str] = Counter(partition for partition, _ in view.rows)
    return dict(sorted(counts.items()))


def group_by(
    view: MergedView[RowT],
    key: Callable[[RowT], Hashable | None],
) -> dict[Hashable, list[RowT]]:
    """Group rows by *key*; rows whose key is ``None`` are left out."""
    groups: dict[Hashable, list[RowT]] = defaultdict(list)
    for row in view:
        value = key(row)
        if value is not None:
            groups[value].append(row)
    return dict(groups)


def count_by(view: MergedView[RowT], key: Callable[[RowT], Hashable | None]) -> dict[Hashable, int]:
    return {value: len(rows) for value, rows in group_by(view, key).items()}


def count_by_day(
    view: MergedView[RowT],
    moment: Callable[[RowT], datetime | None],
    tz: tzinfo,
) -> dict[date, int]:
    """Rows per local calendar day of *moment* in *tz*, oldest day first."""
    counts: Counter[date] = Counter()
    for row in view:
        ts = moment(row)
        if ts is not None:
            counts[ts.astimezone(tz).date()] += 1
    return dict(sorted(counts.items()))
