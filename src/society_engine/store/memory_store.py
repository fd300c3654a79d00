"""In-memory document store for tests and local development.

No external dependencies. Writes are atomic per document and listeners are
notified in write order, each receiving the full result set of its query.
Listener failures are logged and counted; they never fail the write.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Sequence

from society_engine.core.clock import IClock, WallClock
from society_engine.core.errors import NotFound, StoreUnavailable
from society_engine.core.ids import new_document_id

from .query import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    FieldFilter,
    OrderBy,
    apply_query,
    has_server_timestamp,
)
from .subscription import Subscription

logger = logging.getLogger(__name__)


@dataclass
class _Listener:
    key: str
    collection: str
    filters: tuple[FieldFilter, ...]
    order_by: tuple[OrderBy, ...]
    handler: Any
    on_error: Any = None


class MemoryDocumentStore:
    """In-memory implementation of ``IDocumentStore``.

    Single asyncio event loop only. Every write resolves ``SERVER_TIMESTAMP``
    to one strictly increasing timestamp from the injected clock.
    """

    def __init__(self, clock: IClock | None = None) -> None:
        self._clock = clock or WallClock()
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._listeners: dict[str, dict[str, _Listener]] = defaultdict(dict)
        self._last_stamp: datetime | None = None
        self._available = True
        self._next_listener = 0

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._writes = 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        self._check_available()
        doc_id = new_document_id()
        self._collections[collection][doc_id] = self._resolve(data)
        await self._after_write(collection)
        return doc_id

    async def update(self, collection: str, doc_id: str, patch: dict[str, Any]) -> None:
        self._check_available()
        docs = self._collections[collection]
        if doc_id not in docs:
            raise NotFound(collection, doc_id)
        merged = dict(docs[doc_id])
        merged.update(self._resolve(patch))
        docs[doc_id] = merged
        await self._after_write(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._check_available()
        docs = self._collections[collection]
        if doc_id not in docs:
            raise NotFound(collection, doc_id)
        del docs[doc_id]
        await self._after_write(collection)

    async def increment(
        self, collection: str, doc_id: str, field: str, amount: int = 1,
    ) -> int:
        """Atomically add *amount* to a counter field, creating it at zero."""
        self._check_available()
        doc = dict(self._collections[collection].get(doc_id, {}))
        value = int(doc.get(field, 0)) + amount
        doc[field] = value
        self._collections[collection][doc_id] = doc
        await self._after_write(collection)
        return value

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot | None:
        self._check_available()
        data = self._collections[collection].get(doc_id)
        if data is None:
            return None
        return DocumentSnapshot(doc_id, copy.deepcopy(data))

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> list[DocumentSnapshot]:
        self._check_available()
        return self._run_query(collection, filters, order_by)

    # ------------------------------------------------------------------
    # Live queries
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        collection: str,
        on_snapshot,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
        on_error=None,
    ) -> Subscription:
        """Register a live query and deliver its initial result set."""
        self._check_available()
        self._next_listener += 1
        listener = _Listener(
            key=f"{collection}#{self._next_listener}",
            collection=collection,
            filters=tuple(filters),
            order_by=tuple(order_by),
            handler=on_snapshot,
            on_error=on_error,
        )
        self._listeners[collection][listener.key] = listener

        def _release() -> None:
            self._listeners[collection].pop(listener.key, None)

        subscription = Subscription(listener.key, _release)
        await self._deliver(listener)
        return subscription

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_available(self) -> None:
        if not self._available:
            raise StoreUnavailable("Document store is unavailable")

    def _stamp(self) -> datetime:
        now = self._clock.now()
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        resolved = copy.deepcopy(
            {k: v for k, v in data.items() if v is not SERVER_TIMESTAMP}
        )
        if has_server_timestamp(data):
            stamp = self._stamp()
            for key, value in data.items():
                if value is SERVER_TIMESTAMP:
                    resolved[key] = stamp
        return resolved

    def _run_query(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: Sequence[OrderBy],
    ) -> list[DocumentSnapshot]:
        docs = [
            DocumentSnapshot(doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections[collection].items()
        ]
        return apply_query(docs, filters, order_by)

    async def _after_write(self, collection: str) -> None:
        self._writes += 1
        for listener in list(self._listeners[collection].values()):
            # A handler earlier in this loop may have cancelled this one.
            if listener.key in self._listeners[collection]:
                await self._deliver(listener)

    async def _deliver(self, listener: _Listener) -> None:
        snapshot = self._run_query(listener.collection, listener.filters, listener.order_by)
        try:
            await listener.handler(snapshot)
        except Exception as exc:
            self._error_counts[listener.collection] += 1
            logger.exception(
                "Snapshot handler error on collection=%s listener=%s",
                listener.collection,
                listener.key,
            )
            if listener.on_error is not None:
                try:
                    listener.on_error(exc)
                except Exception:
                    logger.warning("on_error callback failed", exc_info=True)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Return per-collection handler error counts."""
        return dict(self._error_counts)

    @property
    def writes(self) -> int:
        return self._writes

    def listener_count(self, collection: str | None = None) -> int:
        if collection is not None:
            return len(self._listeners[collection])
        return sum(len(v) for v in self._listeners.values())

    def document_count(self, collection: str) -> int:
        return len(self._collections[collection])

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    @property
    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        """Toggle availability to simulate an outage."""
        self._available = available
