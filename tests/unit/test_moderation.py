"""Tests for the moderation state machine."""

from __future__ import annotations

import pytest

from society_engine.core.drafts import ListingDraft
from society_engine.core.enums import ModerationStatus, ResourceKind
from society_engine.core.errors import IllegalTransition, NotFound, Unauthorized, ValidationError
from society_engine.core.models import Listing
from society_engine.lifecycle.creation import CreationOrchestrator
from society_engine.lifecycle.moderation import (
    TERMINAL_STATES,
    TRANSITIONS,
    ModerationStateMachine,
    can_transition,
)


async def _listing(repo, storage, reader, owner, draft) -> str:
    orch = CreationOrchestrator(repo, ListingDraft, storage, reader, "marketplace")
    return await orch.create(draft, owner)


@pytest.fixture
def machine(listing_repo, authorizer, audit_log):
    return ModerationStateMachine(listing_repo, authorizer, ResourceKind.LISTING, audit_log)


class TestTransitionTable:
    def test_only_pending_moves(self):
        assert TRANSITIONS[ModerationStatus.PENDING] == {
            ModerationStatus.APPROVED, ModerationStatus.REJECTED,
        }
        for state in TERMINAL_STATES:
            assert TRANSITIONS[state] == frozenset()

    def test_can_transition(self):
        assert can_transition(ModerationStatus.PENDING, ModerationStatus.APPROVED)
        assert not can_transition(ModerationStatus.APPROVED, ModerationStatus.REJECTED)
        assert not can_transition(ModerationStatus.PENDING, ModerationStatus.PENDING)


class TestApprove:
    @pytest.mark.asyncio
    async def test_approve_sets_review_fields(
        self, machine, listing_repo, storage, media_reader, resident, listing_draft, sim_clock,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        before = await listing_repo.get(listing_id)

        approved = await machine.approve(listing_id, "admin-1")

        assert approved.status == ModerationStatus.APPROVED
        assert approved.reviewed_by == "admin-1"
        assert approved.reviewed_at is not None
        assert approved.reviewed_at >= sim_clock.now()
        assert approved.rejection_reason is None
        # Content untouched
        assert approved.media == before.media
        assert approved.price == before.price
        assert approved.created_at == before.created_at

    @pytest.mark.asyncio
    async def test_approve_twice_is_illegal(
        self, machine, listing_repo, storage, media_reader, resident, listing_draft,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        first = await machine.approve(listing_id, "admin-1")

        with pytest.raises(IllegalTransition) as exc_info:
            await machine.approve(listing_id, "admin-2")

        assert exc_info.value.current == "Approved"
        after = await listing_repo.get(listing_id)
        assert after.reviewed_by == "admin-1"
        assert after.reviewed_at == first.reviewed_at

    @pytest.mark.asyncio
    async def test_reject_after_approve_is_illegal(
        self, machine, listing_repo, storage, media_reader, resident, listing_draft,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        await machine.approve(listing_id, "admin-1")
        with pytest.raises(IllegalTransition):
            await machine.reject(listing_id, "admin-1", "duplicate")
        assert (await listing_repo.get(listing_id)).status == ModerationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_unauthorized_reviewer(
        self, machine, authorizer, listing_repo, storage, media_reader, resident, listing_draft,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        authorizer.deny("res-2")

        with pytest.raises(Unauthorized) as exc_info:
            await machine.approve(listing_id, "res-2")

        assert exc_info.value.action == "listing:approve"
        assert (await listing_repo.get(listing_id)).status == ModerationStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_resource(self, machine):
        with pytest.raises(NotFound):
            await machine.approve("nope", "admin-1")

    @pytest.mark.asyncio
    async def test_authorization_checked_before_existence(self, machine, authorizer):
        authorizer.deny("res-2")
        with pytest.raises(Unauthorized):
            await machine.approve("nope", "res-2")

    @pytest.mark.asyncio
    async def test_incomplete_placeholder_cannot_be_approved(self, machine, listing_repo):
        listing_id = await listing_repo.create(Listing(
            owner_id="res-1", price=100, size="1 Kanal", contact="0300 1234",
        ))
        with pytest.raises(ValidationError):
            await machine.approve(listing_id, "admin-1")
        assert (await listing_repo.get(listing_id)).status == ModerationStatus.PENDING


class TestReject:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", ["", "   ", None])
    async def test_empty_reason_never_mutates(
        self, machine, authorizer, listing_repo, storage, media_reader, resident, listing_draft,
        reason,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)

        with pytest.raises(ValidationError) as exc_info:
            await machine.reject(listing_id, "admin-1", reason)

        assert exc_info.value.fields == ["reason"]
        after = await listing_repo.get(listing_id)
        assert after.status == ModerationStatus.PENDING
        assert after.reviewed_by is None
        # Reason is checked before the policy is consulted
        assert authorizer.calls == []

    @pytest.mark.asyncio
    async def test_reject_records_reason(
        self, machine, listing_repo, storage, media_reader, resident, listing_draft,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        rejected = await machine.reject(listing_id, "admin-1", "  Blurry photos  ")

        assert rejected.status == ModerationStatus.REJECTED
        assert rejected.rejection_reason == "Blurry photos"
        assert rejected.reviewed_by == "admin-1"

    @pytest.mark.asyncio
    async def test_reject_twice_is_illegal(
        self, machine, listing_repo, storage, media_reader, resident, listing_draft,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        await machine.reject(listing_id, "admin-1", "Blurry photos")
        with pytest.raises(IllegalTransition):
            await machine.reject(listing_id, "admin-1", "Still blurry")
        assert (await listing_repo.get(listing_id)).rejection_reason == "Blurry photos"


class TestAudit:
    @pytest.mark.asyncio
    async def test_transition_is_journaled(
        self, machine, audit_log, listing_repo, storage, media_reader, resident, listing_draft,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        await machine.reject(listing_id, "admin-1", "Wrong price")

        (entry,) = audit_log.read(listing_id)
        assert entry.event_type == "listing.rejected"
        assert entry.from_state == "Pending"
        assert entry.to_state == "Rejected"
        assert entry.actor == "admin-1"
        assert entry.payload == {"reason": "Wrong price"}

    @pytest.mark.asyncio
    async def test_audit_outage_does_not_fail_transition(
        self, machine, audit_log, listing_repo, storage, media_reader, resident, listing_draft,
    ):
        listing_id = await _listing(listing_repo, storage, media_reader, resident, listing_draft)
        audit_log.set_available(False)

        approved = await machine.approve(listing_id, "admin-1")

        assert approved.status == ModerationStatus.APPROVED
        assert audit_log.entry_count == 0
