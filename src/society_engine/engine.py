"""Engine wiring.

Builds every repository and service from ``Settings`` over injected
collaborators. Anything not supplied falls back to the in-memory
implementations, which is what tests and the CLI use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from society_engine.aggregation.dashboard import DashboardStats, build_dashboard
from society_engine.aggregation.directory import DirectoryStats, build_user_directory
from society_engine.aggregation.view import AggregationView
from society_engine.core.clock import IClock, WallClock
from society_engine.core.config import Settings
from society_engine.core.drafts import ComplaintDraft, ListingDraft
from society_engine.core.enums import ResourceKind
from society_engine.core.interfaces import IAuthorizer, IDocumentStore, IMediaReader, IObjectStorage
from society_engine.core.models import Bill, Complaint, GateLog, Listing, UserProfile
from society_engine.gate.tracker import GateLogTracker
from society_engine.lifecycle.audit_log import AuditLog
from society_engine.lifecycle.billing import BillingService
from society_engine.lifecycle.complaints import ComplaintService
from society_engine.lifecycle.creation import CreationOrchestrator
from society_engine.lifecycle.marketplace import MarketplaceService
from society_engine.lifecycle.moderation import ModerationStateMachine
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.storage.object_storage import LocalMediaReader, MemoryObjectStorage
from society_engine.store.memory_store import MemoryDocumentStore

if TYPE_CHECKING:
    from datetime import tzinfo

logger = logging.getLogger(__name__)


@dataclass
class SocietyEngine:
    """All engine components, wired over one store."""

    settings: Settings
    store: IDocumentStore
    storage: IObjectStorage
    clock: IClock
    audit: AuditLog
    listings: ResourceRepository[Listing]
    complaints_repo: ResourceRepository[Complaint]
    bills: ResourceRepository[Bill]
    gate_logs: ResourceRepository[GateLog]
    marketplace: MarketplaceService
    complaints: ComplaintService
    billing: BillingService
    gate: GateLogTracker
    residents: ResourceRepository[UserProfile]

    @property
    def tz(self) -> "tzinfo":
        return self.settings.tzinfo()

    def user_directory(self) -> AggregationView[UserProfile, DirectoryStats]:
        return build_user_directory(self.store, self.settings.collections)

    def dashboard(self) -> AggregationView[object, DashboardStats]:
        return build_dashboard(self.bills, self.complaints_repo, self.listings)

    async def all_residents(self) -> list[UserProfile]:
        return await self.residents.list_all()


def build_engine(
    settings: Settings,
    authorizer: IAuthorizer,
    *,
    store: IDocumentStore | None = None,
    storage: IObjectStorage | None = None,
    media_reader: IMediaReader | None = None,
    clock: IClock | None = None,
    audit: AuditLog | None = None,
    gate_authorizer: IAuthorizer | None = None,
) -> SocietyEngine:
    """Wire a SocietyEngine.

    Raises:
        ConfigError: The configured timezone is unknown.
    """
    tz = settings.tzinfo()
    clock = clock if clock is not None else WallClock()
    store = store if store is not None else MemoryDocumentStore(clock)
    storage = storage if storage is not None else MemoryObjectStorage()
    reader = media_reader if media_reader is not None else LocalMediaReader()
    audit = audit if audit is not None else AuditLog()
    names = settings.collections

    listings = ResourceRepository(store, names.listings, Listing)
    complaints = ResourceRepository(store, names.complaints, Complaint)
    bills = ResourceRepository(store, names.bills, Bill)
    gate_logs = ResourceRepository(store, names.gate_logs, GateLog)
    residents = ResourceRepository(store, names.residents, UserProfile)

    marketplace = MarketplaceService(
        listings,
        CreationOrchestrator(
            listings, ListingDraft, storage, reader,
            folder=settings.storage.listing_folder,
            max_media_items=settings.storage.max_media_items,
        ),
        ModerationStateMachine(listings, authorizer, ResourceKind.LISTING, audit),
    )
    billing = BillingService(
        bills, complaints, authorizer, storage, reader, clock, tz,
        config=settings.billing,
        folder=settings.storage.bill_folder,
        audit=audit,
    )
    complaint_service = ComplaintService(
        complaints,
        CreationOrchestrator(
            complaints, ComplaintDraft, storage, reader,
            folder=settings.storage.complaint_folder,
            max_media_items=settings.storage.max_media_items,
        ),
        store,
        billing,
        authorizer,
        clock,
        tz,
        counters_collection=names.counters,
        audit=audit,
    )
    gate = GateLogTracker(gate_logs, clock, tz, settings.gate, gate_authorizer)

    logger.info("Society engine wired (timezone=%s)", settings.timezone)
    return SocietyEngine(
        settings=settings,
        store=store,
        storage=storage,
        clock=clock,
        audit=audit,
        listings=listings,
        complaints_repo=complaints,
        bills=bills,
        gate_logs=gate_logs,
        marketplace=marketplace,
        complaints=complaint_service,
        billing=billing,
        gate=gate,
        residents=residents,
    )
