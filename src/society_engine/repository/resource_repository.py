"""Typed access to one resource collection.

The repository is the validation boundary between the engine's pydantic
models and the store's loosely-typed documents. Everything written is
validated before the write; everything read is validated on the way out.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Iterable, Mapping, Sequence, TypeVar

from pydantic import ValidationError as PydanticValidationError

from society_engine.core.drafts import field_errors
from society_engine.core.errors import NotFound, ValidationError
from society_engine.core.ids import utc_now
from society_engine.core.interfaces import IDocumentStore
from society_engine.core.models import Document, to_wire_value
from society_engine.store.query import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    FieldFilter,
    OrderBy,
    provisional,
)
from society_engine.store.subscription import Subscription

logger = logging.getLogger(__name__)

DocT = TypeVar("DocT", bound=Document)


# Never writable through update()
IMMUTABLE_FIELDS: frozenset[str] = frozenset({"id", "owner_id", "created_at"})

# Writable through update() only while unset
WRITE_ONCE_FIELDS: frozenset[str] = frozenset({"reviewed_by", "reviewed_at", "rejection_reason"})


class ResourceRepository(Generic[DocT]):
    """CRUD, query and live subscription over one collection of *model*.

    Args:
        store: The document store.
        collection: Collection name.
        model: Document subclass describing the collection's shape.
    """

    def __init__(self, store: IDocumentStore, collection: str, model: type[DocT]) -> None:
        self._store = store
        self._collection = collection
        self._model = model

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def model(self) -> type[DocT]:
        return self._model

    # ------------------------------------------------------------------
    # Query builders (python field names -> wire names)
    # ------------------------------------------------------------------

    def where(self, field_name: str, op: str, value: Any) -> FieldFilter:
        return FieldFilter(self._model.wire_name(field_name), op, to_wire_value(value))

    def order(self, field_name: str, descending: bool = False) -> OrderBy:
        return OrderBy(self._model.wire_name(field_name), descending)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(self, resource: DocT, server_fields: Iterable[str] = ()) -> str:
        """Store a new document and return its store-assigned id.

        ``created_at`` and any *server_fields* are written as server
        timestamps; values on *resource* for them are provisional.
        """
        if resource.id is not None:
            raise ValidationError({"id": "id is assigned by the store"})
        data = resource.to_document()
        for name in ("created_at", *server_fields):
            data[self._model.wire_name(name)] = SERVER_TIMESTAMP
        doc_id = await self._store.add(self._collection, data)
        logger.debug("Created %s/%s", self._collection, doc_id)
        return doc_id

    async def get(self, doc_id: str) -> DocT:
        snapshot = await self._store.get(self._collection, doc_id)
        if snapshot is None:
            raise NotFound(self._collection, doc_id)
        return self._to_model(snapshot)

    async def update(self, doc_id: str, patch: Mapping[str, Any]) -> DocT:
        """Apply *patch* (python field names) as a single write.

        The merged document is validated before writing. Last write wins;
        there is no version check.
        """
        errors: dict[str, str] = {}
        for name in patch:
            if name in IMMUTABLE_FIELDS:
                errors[name] = "field is immutable"
            elif name not in self._model.model_fields:
                errors[name] = f"unknown field for {self._model.__name__}"
        if errors:
            raise ValidationError(errors)

        wire_patch = {
            self._model.wire_name(name): (
                value if value is SERVER_TIMESTAMP else to_wire_value(value)
            )
            for name, value in patch.items()
        }
        current = await self._store.get(self._collection, doc_id)
        if current is None:
            raise NotFound(self._collection, doc_id)
        locked = {
            name: "field is write-once and already set"
            for name in WRITE_ONCE_FIELDS.intersection(patch)
            if current.data.get(self._model.wire_name(name)) is not None
        }
        if locked:
            raise ValidationError(locked)
        # A server timestamp is never earlier than one already stored
        merged = {**current.data, **provisional(wire_patch, _not_before(current.data))}
        try:
            self._model.from_snapshot(doc_id, merged)
        except PydanticValidationError as exc:
            raise ValidationError(field_errors(exc)) from exc

        await self._store.update(self._collection, doc_id, wire_patch)
        return await self.get(doc_id)

    async def delete(self, doc_id: str) -> None:
        await self._store.delete(self._collection, doc_id)
        logger.debug("Deleted %s/%s", self._collection, doc_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(
        self,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> AsyncIterator[DocT]:
        """Lazily yield matching documents.

        Each call runs the query once; the iterator cannot be restarted.
        """
        snapshots = await self._store.query(self._collection, filters, order_by)
        for snapshot in snapshots:
            yield self._to_model(snapshot)

    async def list_all(
        self,
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
    ) -> list[DocT]:
        return [doc async for doc in self.query(filters, order_by)]

    async def subscribe(
        self,
        on_snapshot: Callable[[list[DocT]], Awaitable[None]],
        filters: Sequence[FieldFilter] = (),
        order_by: Sequence[OrderBy] = (),
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        """Deliver the full typed result set on every change until cancelled.

        Documents that fail validation are logged and left out of the
        snapshot so one bad record cannot stall a live view.
        """

        async def _handle(snapshots: list[DocumentSnapshot]) -> None:
            rows: list[DocT] = []
            for snapshot in snapshots:
                try:
                    rows.append(self._model.from_snapshot(snapshot.id, snapshot.data))
                except PydanticValidationError as exc:
                    logger.warning(
                        "Skipping invalid %s/%s in live snapshot (%d errors)",
                        self._collection, snapshot.id, exc.error_count(),
                    )
            await on_snapshot(rows)

        return await self._store.subscribe(
            self._collection, _handle, filters, order_by, on_error,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _to_model(self, snapshot: DocumentSnapshot) -> DocT:
        try:
            return self._model.from_snapshot(snapshot.id, snapshot.data)
        except PydanticValidationError as exc:
            errors = {
                f"{self._collection}/{snapshot.id}.{field}": msg
                for field, msg in field_errors(exc).items()
            }
            raise ValidationError(errors) from exc


def _not_before(data: Mapping[str, Any]) -> datetime:
    """Earliest value a server timestamp written now could take."""
    stamps = [v for v in data.values() if isinstance(v, datetime) and v.tzinfo is not None]
    return max([utc_now(), *stamps])
