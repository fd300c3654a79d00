"""Protocol interfaces for external collaborators.

All module boundaries are defined here as Protocol classes. The in-memory
implementations in ``society_engine.store`` and ``society_engine.storage``
satisfy them; production adapters can be swapped in without changing callers.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, Sequence, runtime_checkable

from society_engine.store.query import DocumentSnapshot, FieldFilter, OrderBy
from society_engine.store.subscription import Subscription

SnapshotHandler = Callable[[list[DocumentSnapshot]], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------

@runtime_checkable
class IDocumentStore(Protocol):
    """Managed document database.

    Writes are atomic per document. ``SERVER_TIMESTAMP`` values in written
    data are replaced by the store's own clock, monotonic per write.
    """

    async def add(self, collection: str, data: dict[str, Any]) -> str: ...

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot | None: ...

    async def update(self, collection: str, doc_id: str, patch: dict[str, Any]) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def increment(
        self, collection: str, doc_id: str, field: str, amount: int = 1,
    ) -> int: ...

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> list[DocumentSnapshot]: ...

    async def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotHandler,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
        on_error: ErrorHandler | None = None,
    ) -> Subscription: ...


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

@runtime_checkable
class IAuthorizer(Protocol):
    """External policy check. The engine calls it but never defines policy."""

    async def is_authorized(self, principal_id: str, action: str) -> bool: ...


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

@runtime_checkable
class IObjectStorage(Protocol):
    """Binary object storage. Raises UploadError on failure."""

    async def upload(self, data: bytes, path: str) -> str: ...


@runtime_checkable
class IMediaReader(Protocol):
    """Turns a client-side media URI into bytes."""

    async def read(self, uri: str) -> bytes: ...
