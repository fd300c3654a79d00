"""Merging independently live partitions into one view.

Each partition (a role collection, a status query, ...) delivers full
snapshots. A snapshot replaces everything that partition contributed
before; other partitions are never touched. Rows are keyed by
``(partition, row id)`` so equal ids in different partitions never collide.

Across partitions the view is eventually consistent: two partitions may be
reflected at different logical times. Statistics are re-derived from the
whole view after every merge, never updated incrementally.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterator,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
)

from society_engine.store.subscription import Subscription, SubscriptionGroup

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")
StatsT = TypeVar("StatsT")

RowKey = tuple[str, str]
SnapshotCallback = Callable[[list[Any]], Awaitable[None]]
ErrorCallback = Callable[[Exception], None]
# A source opens one live query for its partition
Source = Callable[[SnapshotCallback, Optional[ErrorCallback]], Awaitable[Subscription]]
Consumer = Callable[["MergedView[Any]", Any], Awaitable[None]]


def default_row_id(row: Any) -> str:
    row_id = row.get("id") if isinstance(row, Mapping) else getattr(row, "id", None)
    if row_id is None:
        raise ValueError(f"Row has no id: {row!r}")
    return str(row_id)


@dataclass(frozen=True)
class MergedView(Generic[RowT]):
    """Immutable ``(partition, row id) -> row`` mapping."""

    rows: Mapping[RowKey, RowT] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def empty(cls) -> "MergedView[RowT]":
        return cls()

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[RowT]:
        return iter(self.rows.values())

    def __contains__(self, key: object) -> bool:
        return key in self.rows

    @property
    def partitions(self) -> list[str]:
        return sorted({partition for partition, _ in self.rows})

    def rows_for(self, partition: str) -> list[RowT]:
        return [row for (p, _), row in self.rows.items() if p == partition]

    def items(self) -> list[tuple[str, RowT]]:
        """``(partition, row)`` pairs."""
        return [(partition, row) for (partition, _), row in self.rows.items()]

    def values(self) -> list[RowT]:
        return list(self.rows.values())


def merge_partition(
    view: MergedView[RowT],
    partition: str,
    snapshot: Sequence[RowT],
    row_id: Callable[[RowT], str] = default_row_id,
) -> MergedView[RowT]:
    """Return a new view where *snapshot* is *partition*'s whole contribution."""
    rows: dict[RowKey, RowT] = {
        key: row for key, row in view.rows.items() if key[0] != partition
    }
    for row in snapshot:
        rows[(partition, row_id(row))] = row
    return MergedView(MappingProxyType(rows))


class AggregationView(Generic[RowT, StatsT]):
    """Live merge of several partitions with re-derived statistics.

    Args:
        sources: Partition name -> source opening its live query.
        derive: Statistics computed from the whole view after every merge.
        row_id: Extracts a row's id within its partition.
        max_errors: Most recent source errors kept in ``errors``.

    Usage::

        async with AggregationView(sources, derive=count_by_partition) as view:
            view.add_consumer(render)
            ...
    """

    def __init__(
        self,
        sources: Mapping[str, Source],
        derive: Callable[[MergedView[RowT]], StatsT] | None = None,
        row_id: Callable[[RowT], str] = default_row_id,
        max_errors: int = 100,
    ) -> None:
        if not sources:
            raise ValueError("AggregationView needs at least one source")
        self._sources = dict(sources)
        self._derive = derive
        self._row_id = row_id
        self._view: MergedView[RowT] = MergedView.empty()
        self._stats: StatsT | None = derive(self._view) if derive else None
        self._consumers: list[Consumer] = []
        self._group: SubscriptionGroup | None = None
        self._merges = 0
        self._errors: deque[tuple[str, Exception]] = deque(maxlen=max_errors)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open every source. If one fails, the ones already open are
        released before the error propagates."""
        if self._group is not None:
            raise RuntimeError("AggregationView already started")
        group = SubscriptionGroup()
        self._group = group
        try:
            for partition, source in self._sources.items():
                group.add(await source(self._handler(partition), self._error_handler(partition)))
        except Exception:
            logger.warning("AggregationView start failed; releasing %d source(s)", len(group))
            self.stop()
            raise
        logger.info("AggregationView started with partitions %s", list(self._sources))

    def stop(self) -> int:
        """Release every source. Safe to call repeatedly."""
        group, self._group = self._group, None
        if group is None:
            return 0
        return group.cancel_all()

    @property
    def running(self) -> bool:
        return self._group is not None

    async def __aenter__(self) -> "AggregationView[RowT, StatsT]":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def view(self) -> MergedView[RowT]:
        return self._view

    @property
    def stats(self) -> StatsT | None:
        return self._stats

    @property
    def merge_count(self) -> int:
        return self._merges

    @property
    def errors(self) -> list[tuple[str, Exception]]:
        """Source errors reported by the store, per partition."""
        return list(self._errors)

    def add_consumer(self, consumer: Consumer) -> Callable[[], None]:
        """Register *consumer*; it receives ``(view, stats)`` after every
        merge. Returns a function that removes it."""
        self._consumers.append(consumer)

        def _remove() -> None:
            if consumer in self._consumers:
                self._consumers.remove(consumer)

        return _remove

    # ------------------------------------------------------------------

    async def apply(self, partition: str, snapshot: Sequence[RowT]) -> None:
        """Merge one partition snapshot and notify consumers."""
        if partition not in self._sources:
            raise KeyError(f"Unknown partition {partition!r}")
        self._view = merge_partition(self._view, partition, snapshot, self._row_id)
        if self._derive is not None:
            self._stats = self._derive(self._view)
        self._merges += 1
        logger.debug(
            "Merged %d row(s) from %s; view has %d", len(snapshot), partition, len(self._view),
        )
        for consumer in list(self._consumers):
            try:
                await consumer(self._view, self._stats)
            except Exception:
                logger.exception("AggregationView consumer failed on partition %s", partition)

    def _handler(self, partition: str) -> SnapshotCallback:
        async def _on_snapshot(rows: list[Any]) -> None:
            await self.apply(partition, rows)

        return _on_snapshot

    def _error_handler(self, partition: str) -> ErrorCallback:
        def _on_error(exc: Exception) -> None:
            self._errors.append((partition, exc))
            logger.warning("Source %s reported %s", partition, exc)

        return _on_error


def repository_source(repository: Any, filters: Sequence[Any] = (), order_by: Sequence[Any] = ()) -> Source:
    """A source backed by ``ResourceRepository.subscribe``."""

    async def _open(on_snapshot: SnapshotCallback, on_error: ErrorCallback | None) -> Subscription:
        return await repository.subscribe(on_snapshot, filters, order_by, on_error)

    return _open
