"""Append-only journal of lifecycle transitions.

Contract:
    - append() MUST succeed or raise (no silent drops)
    - read() returns the retained entries for a resource, oldest first
    - Entries are immutable after append
    - No delete/update operations exist

In-memory with optional JSONL file persistence.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from society_engine.core.enums import ResourceKind
from society_engine.core.ids import new_id, utc_now

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """One recorded transition."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    resource_kind: ResourceKind
    resource_id: str
    actor: str
    event_type: str  # e.g. "listing.approved"
    from_state: str | None = None
    to_state: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class AuditLog:
    """Append-only audit journal."""

    def __init__(
        self,
        persist_path: str | None = None,
        max_memory_entries: int = 100_000,
    ) -> None:
        self._entries: list[AuditEntry] = []
        self._by_resource: dict[str, list[AuditEntry]] = defaultdict(list)
        self._persist_path = persist_path
        self._max = max_memory_entries
        self._available = True

    async def append(self, entry: AuditEntry) -> None:
        """Append an audit entry.

        Raises:
            RuntimeError: If the audit log is unavailable or persistence
                fails.
        """
        if not self._available:
            raise RuntimeError("AuditLog is unavailable")

        self._entries.append(entry)
        self._by_resource[entry.resource_id].append(entry)

        if self._persist_path:
            try:
                path = Path(self._persist_path)
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a") as f:
                    f.write(entry.model_dump_json() + "\n")
            except OSError as exc:
                # Persistence failure makes the log unavailable
                self._available = False
                raise RuntimeError(f"AuditLog persistence failed: {exc}") from exc

        # Memory cap: evict oldest entries
        if len(self._entries) > self._max:
            evicted = self._entries[: -self._max]
            self._entries = self._entries[-self._max :]
            for old in evicted:
                # Per-resource lists share the global order, so the oldest is first
                kept = self._by_resource[old.resource_id]
                kept.pop(0)
                if not kept:
                    del self._by_resource[old.resource_id]

    def read(self, resource_id: str) -> list[AuditEntry]:
        """All entries for one resource, oldest first."""
        return list(self._by_resource.get(resource_id, []))

    def by_actor(self, actor: str) -> list[AuditEntry]:
        return [e for e in self._entries if e.actor == actor]

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    @property
    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        """Toggle availability. Primary use: testing."""
        self._available = available


async def record_transition(
    audit: AuditLog | None,
    *,
    kind: ResourceKind,
    resource_id: str,
    actor: str,
    from_state: str | None,
    to_state: str,
    payload: dict[str, Any] | None = None,
) -> None:
    """Best-effort audit of a transition that has already been written."""
    if audit is None:
        return
    try:
        await audit.append(AuditEntry(
            resource_kind=kind,
            resource_id=resource_id,
            actor=actor,
            event_type=f"{kind.value}.{to_state.lower().replace(' ', '_')}",
            from_state=from_state,
            to_state=to_state,
            payload=payload or {},
        ))
    except Exception:
        logger.warning(
            "Failed to audit %s %s -> %s", kind.value, resource_id, to_state,
            exc_info=True,
        )
