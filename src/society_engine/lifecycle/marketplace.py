"""Marketplace listings: creation, moderation and the standard queries."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping

from society_engine.core.drafts import ListingDraft
from society_engine.core.enums import ModerationStatus
from society_engine.core.models import Listing, Principal
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.store.subscription import Subscription

from .creation import CreationOrchestrator
from .moderation import ModerationStateMachine


class MarketplaceService:
    """Facade over the listing repository, orchestrator and state machine."""

    def __init__(
        self,
        repository: ResourceRepository[Listing],
        orchestrator: CreationOrchestrator[ListingDraft, Listing],
        moderation: ModerationStateMachine[Listing],
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._moderation = moderation

    @property
    def repository(self) -> ResourceRepository[Listing]:
        return self._repository

    async def create(self, draft: Mapping[str, Any] | ListingDraft, owner: Principal) -> str:
        return await self._orchestrator.create(draft, owner)

    async def approve(self, listing_id: str, reviewer_id: str) -> Listing:
        return await self._moderation.approve(listing_id, reviewer_id)

    async def reject(self, listing_id: str, reviewer_id: str, reason: str) -> Listing:
        return await self._moderation.reject(listing_id, reviewer_id, reason)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def approved(self) -> list[Listing]:
        """Publicly visible listings, newest first."""
        return await self._repository.list_all(
            [self._repository.where("status", "==", ModerationStatus.APPROVED)],
            [self._repository.order("created_at", descending=True)],
        )

    async def pending(self) -> list[Listing]:
        """Review queue, oldest first. Includes placeholders still uploading."""
        return await self._repository.list_all(
            [self._repository.where("status", "==", ModerationStatus.PENDING)],
            [self._repository.order("created_at")],
        )

    async def mine(self, owner_id: str) -> list[Listing]:
        return await self._repository.list_all(
            [self._repository.where("owner_id", "==", owner_id)],
            [self._repository.order("created_at", descending=True)],
        )

    async def subscribe_approved(
        self, on_snapshot: Callable[[list[Listing]], Awaitable[None]],
    ) -> Subscription:
        return await self._repository.subscribe(
            on_snapshot,
            [self._repository.where("status", "==", ModerationStatus.APPROVED)],
            [self._repository.order("created_at", descending=True)],
        )
