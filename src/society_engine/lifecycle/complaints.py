"""Complaint numbering, progression and resolution.

    PENDING -> IN_PROGRESS -> RESOLVED
       `--------------------'

A resolution charge goes onto the resident's bill for the current month
while that bill is still a Draft. Otherwise it is left unbilled and picked
up by the next monthly generation.
"""

from __future__ import annotations

import logging
import math
from datetime import tzinfo
from typing import Any, Mapping

from society_engine.core.clock import IClock
from society_engine.core.drafts import ComplaintDraft, parse_draft
from society_engine.core.enums import Action, BillStatus, ComplaintStatus, ResourceKind
from society_engine.core.errors import IllegalTransition, ValidationError
from society_engine.core.interfaces import IAuthorizer, IDocumentStore
from society_engine.core.models import Complaint, ComplaintCharge, Principal
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.store.query import SERVER_TIMESTAMP

from .audit_log import AuditLog, record_transition
from .billing import BillingService
from .creation import CreationOrchestrator
from .guards import require_authorized

logger = logging.getLogger(__name__)

COUNTER_DOC = "complaints"
COUNTER_FIELD = "count"

TRANSITIONS: dict[ComplaintStatus, frozenset[ComplaintStatus]] = {
    ComplaintStatus.PENDING: frozenset({
        ComplaintStatus.IN_PROGRESS, ComplaintStatus.RESOLVED,
    }),
    ComplaintStatus.IN_PROGRESS: frozenset({ComplaintStatus.RESOLVED}),
    ComplaintStatus.RESOLVED: frozenset(),
}


def format_complaint_number(count: int) -> str:
    """``1 -> "C001"``; widens past 999."""
    return f"C{count:03d}"


class ComplaintService:
    """Creates, progresses and resolves resident complaints."""

    def __init__(
        self,
        repository: ResourceRepository[Complaint],
        orchestrator: CreationOrchestrator[ComplaintDraft, Complaint],
        store: IDocumentStore,
        billing: BillingService,
        authorizer: IAuthorizer,
        clock: IClock,
        tz: tzinfo,
        counters_collection: str = "counters",
        audit: AuditLog | None = None,
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._store = store
        self._billing = billing
        self._authorizer = authorizer
        self._clock = clock
        self._tz = tz
        self._counters = counters_collection
        self._audit = audit

    @property
    def repository(self) -> ResourceRepository[Complaint]:
        return self._repository

    async def next_number(self) -> str:
        count = await self._store.increment(self._counters, COUNTER_DOC, COUNTER_FIELD)
        return format_complaint_number(count)

    async def create(self, data: Mapping[str, Any] | ComplaintDraft, owner: Principal) -> str:
        """File a complaint. Returns its id.

        A complaint with photos goes through two-phase creation; without
        photos it is written directly and is complete with empty media.
        The draft is fully validated before a number is allocated.
        """
        draft = parse_draft(ComplaintDraft, data)
        if draft.photos:
            self._orchestrator.validate(draft)

        number = await self.next_number()
        if draft.photos:
            complaint_id = await self._orchestrator.create(
                draft, owner, complaint_number=number,
            )
        else:
            complaint_id = await self._repository.create(
                draft.to_placeholder(owner, number), server_fields=("updated_at",),
            )
        logger.info("Complaint %s filed as %s by %s", number, complaint_id, owner.principal_id)
        return complaint_id

    async def start_progress(self, complaint_id: str, admin_id: str) -> Complaint:
        await require_authorized(self._authorizer, admin_id, Action.COMPLAINT_UPDATE)
        current = await self._repository.get(complaint_id)
        self._check(complaint_id, current.status, ComplaintStatus.IN_PROGRESS)
        updated = await self._repository.update(complaint_id, {
            "status": ComplaintStatus.IN_PROGRESS,
            "updated_at": SERVER_TIMESTAMP,
        })
        await self._audit_transition(complaint_id, admin_id, current.status, updated.status)
        return updated

    async def resolve(
        self,
        complaint_id: str,
        admin_id: str,
        notes: str | None = None,
        charge_amount: float | None = None,
    ) -> Complaint:
        """Resolve a complaint, optionally charging the resident.

        Raises:
            ValidationError: *charge_amount* is negative or not finite.
            Unauthorized: The admin may not resolve complaints.
            NotFound: No such complaint.
            IllegalTransition: The complaint is already resolved.
        """
        if charge_amount is not None and (
            not math.isfinite(charge_amount) or charge_amount < 0
        ):
            raise ValidationError({"charge_amount": "Must be a non-negative amount"})
        await require_authorized(self._authorizer, admin_id, Action.COMPLAINT_RESOLVE)

        current = await self._repository.get(complaint_id)
        self._check(complaint_id, current.status, ComplaintStatus.RESOLVED)

        patch: dict[str, Any] = {
            "status": ComplaintStatus.RESOLVED,
            "resolution_notes": (notes or "").strip() or None,
            "resolved_by": admin_id,
            "resolved_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        }
        if charge_amount:
            patch.update(await self._bill_charge(current, charge_amount))
        else:
            patch.update({"charge_amount": 0.0, "added_to_bill": True, "bill_id": None})

        updated = await self._repository.update(complaint_id, patch)
        await self._audit_transition(
            complaint_id, admin_id, current.status, updated.status,
            {"charge_amount": charge_amount} if charge_amount else None,
        )
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def mine(self, owner_id: str) -> list[Complaint]:
        return await self._repository.list_all(
            [self._repository.where("owner_id", "==", owner_id)],
            [self._repository.order("created_at", descending=True)],
        )

    async def all_complaints(self) -> list[Complaint]:
        return await self._repository.list_all(
            order_by=[self._repository.order("created_at", descending=True)],
        )

    async def pending(self) -> list[Complaint]:
        return await self._repository.list_all(
            [self._repository.where("status", "==", ComplaintStatus.PENDING)],
            [self._repository.order("created_at", descending=True)],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check(complaint_id: str, current: ComplaintStatus, target: ComplaintStatus) -> None:
        if target not in TRANSITIONS.get(current, frozenset()):
            raise IllegalTransition(complaint_id, current.value, target.value)

    async def _bill_charge(self, complaint: Complaint, amount: float) -> dict[str, Any]:
        """Charge fields for the resolution patch."""
        assert complaint.id is not None
        month = self._billing.current_month()
        bill = await self._billing.bill_for(complaint.owner_id, month)
        if bill is None or bill.status != BillStatus.DRAFT:
            logger.info(
                "Charge %.2f on %s deferred to next bill", amount, complaint.complaint_number,
            )
            return {"charge_amount": amount, "added_to_bill": False, "bill_id": None}

        assert bill.id is not None
        await self._billing.add_complaint_charge(bill.id, ComplaintCharge(
            complaint_id=complaint.id,
            complaint_number=complaint.complaint_number,
            description=complaint.title or "Complaint charge",
            amount=amount,
        ))
        return {"charge_amount": amount, "added_to_bill": True, "bill_id": bill.id}

    async def _audit_transition(
        self,
        complaint_id: str,
        actor: str,
        from_state: ComplaintStatus,
        to_state: ComplaintStatus,
        payload: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "complaint %s: %s -> %s by %s",
            complaint_id, from_state.value, to_state.value, actor,
        )
        await record_transition(
            self._audit,
            kind=ResourceKind.COMPLAINT,
            resource_id=complaint_id,
            actor=actor,
            from_state=from_state.value,
            to_state=to_state.value,
            payload=payload,
        )
