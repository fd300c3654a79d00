"""Canonical ID and timestamp helpers.

All modules import from here instead of defining local _uuid()/_now() copies.

Document IDs are assigned by the store and are opaque to the engine. Internal
IDs (audit entries, subscriptions) are UUID v4 strings.

All timestamps are ``datetime`` with ``tzinfo=timezone.utc``; never naive.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def new_id() -> str:
    """Generate a new UUID v4 string."""
    return str(uuid.uuid4())


def new_document_id() -> str:
    """Generate a 20 character store-style document id."""
    return uuid.uuid4().hex[:20]


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def to_millis(ts: datetime) -> int:
    """Milliseconds since epoch, as used in storage paths."""
    return int(ts.timestamp() * 1000)
