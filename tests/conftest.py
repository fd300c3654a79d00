"""Shared fixtures for the society-engine test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from society_engine.core.clock import SimClock
from society_engine.core.config import Settings
from society_engine.core.enums import UserRole
from society_engine.core.errors import UploadError
from society_engine.core.models import Bill, Complaint, GateLog, Listing, Principal
from society_engine.engine import build_engine
from society_engine.lifecycle.audit_log import AuditLog
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.storage.object_storage import MemoryObjectStorage
from society_engine.store.memory_store import MemoryDocumentStore

KARACHI = ZoneInfo("Asia/Karachi")


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeAuthorizer:
    """Allows everything except explicitly denied principals/actions."""

    def __init__(self) -> None:
        self.denied: set[tuple[str, str]] = set()
        self.denied_principals: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def deny(self, principal_id: str, action: str | None = None) -> None:
        if action is None:
            self.denied_principals.add(principal_id)
        else:
            self.denied.add((principal_id, action))

    async def is_authorized(self, principal_id: str, action: str) -> bool:
        self.calls.append((principal_id, action))
        if principal_id in self.denied_principals:
            return False
        return (principal_id, action) not in self.denied


class FakeMediaReader:
    """Resolves any URI to deterministic bytes unless told to fail."""

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.reads: list[str] = []

    async def read(self, uri: str) -> bytes:
        self.reads.append(uri)
        if uri in self.failing:
            raise UploadError(uri, "cannot read media")
        return f"bytes:{uri}".encode()


# ---------------------------------------------------------------------------
# Clock / store
# ---------------------------------------------------------------------------

@pytest.fixture
def karachi() -> ZoneInfo:
    return KARACHI


@pytest.fixture
def sim_clock() -> SimClock:
    """09:00 on 2024-06-01 in Asia/Karachi (UTC+5)."""
    return SimClock(start=datetime(2024, 6, 1, 4, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(sim_clock) -> MemoryDocumentStore:
    return MemoryDocumentStore(sim_clock)


@pytest.fixture
def storage() -> MemoryObjectStorage:
    return MemoryObjectStorage()


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    return FakeAuthorizer()


@pytest.fixture
def media_reader() -> FakeMediaReader:
    return FakeMediaReader()


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog()


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------

@pytest.fixture
def resident() -> Principal:
    return Principal(
        principal_id="res-1", display_name="Ayesha Khan",
        role=UserRole.RESIDENT, house_no="A-12",
    )


@pytest.fixture
def other_resident() -> Principal:
    return Principal(
        principal_id="res-2", display_name="Bilal Ahmed",
        role=UserRole.RESIDENT, house_no="B-7",
    )


@pytest.fixture
def admin() -> Principal:
    return Principal(principal_id="admin-1", display_name="Admin", role=UserRole.ADMIN)


@pytest.fixture
def guard() -> Principal:
    return Principal(principal_id="guard-1", display_name="Gate Guard", role=UserRole.SECURITY)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

@pytest.fixture
def listing_repo(store) -> ResourceRepository[Listing]:
    return ResourceRepository(store, "listings", Listing)


@pytest.fixture
def complaint_repo(store) -> ResourceRepository[Complaint]:
    return ResourceRepository(store, "complaints", Complaint)


@pytest.fixture
def bill_repo(store) -> ResourceRepository[Bill]:
    return ResourceRepository(store, "bills", Bill)


@pytest.fixture
def gate_repo(store) -> ResourceRepository[GateLog]:
    return ResourceRepository(store, "vehicleLogs", GateLog)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(timezone="Asia/Karachi")


@pytest.fixture
def engine(settings, authorizer, store, storage, media_reader, sim_clock, audit_log):
    return build_engine(
        settings,
        authorizer,
        store=store,
        storage=storage,
        media_reader=media_reader,
        clock=sim_clock,
        audit=audit_log,
    )


@pytest.fixture
def listing_draft() -> dict:
    return {
        "price": 50000,
        "size": "5 Marla",
        "contact": "03001234567",
        "description": "nice house",
        "photos": ["uri1"],
    }
