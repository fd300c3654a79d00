"""Document store primitives and the in-memory store."""

from society_engine.store.memory_store import MemoryDocumentStore
from society_engine.store.query import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    FieldFilter,
    OrderBy,
    where,
)
from society_engine.store.subscription import Subscription, SubscriptionGroup

__all__ = [
    "MemoryDocumentStore",
    "SERVER_TIMESTAMP",
    "DocumentSnapshot",
    "FieldFilter",
    "OrderBy",
    "Subscription",
    "SubscriptionGroup",
    "where",
]
