"""Bill lifecycle and monthly bill generation.

    DRAFT -> UNPAID -> PENDING -> PAID
                 ^--------'
                 (proof rejected)

Drafts can still receive complaint charges. Once published a bill's
breakdown is frozen; later charges wait for the next generation run.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from datetime import datetime, timezone, tzinfo
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, Field

from society_engine.core.clock import IClock, local_month
from society_engine.core.config import BillingConfig
from society_engine.core.enums import Action, BillStatus, ResourceKind
from society_engine.core.errors import IllegalTransition, Unauthorized, ValidationError
from society_engine.core.interfaces import IAuthorizer, IMediaReader, IObjectStorage
from society_engine.core.models import (
    Bill,
    BillBreakdown,
    Complaint,
    ComplaintCharge,
    Principal,
    UserProfile,
)
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.storage.object_storage import media_path
from society_engine.store.query import SERVER_TIMESTAMP

from .audit_log import AuditLog, record_transition
from .guards import require_authorized

logger = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

TERMINAL_STATES: frozenset[BillStatus] = frozenset({BillStatus.PAID})

# Valid transitions: from -> set of valid targets
TRANSITIONS: dict[BillStatus, frozenset[BillStatus]] = {
    BillStatus.DRAFT: frozenset({BillStatus.UNPAID}),
    BillStatus.UNPAID: frozenset({BillStatus.PENDING}),
    BillStatus.PENDING: frozenset({BillStatus.PAID, BillStatus.UNPAID}),
    BillStatus.PAID: frozenset(),
}

# Previous bills in these states count as outstanding dues
OUTSTANDING_STATES: tuple[BillStatus, ...] = (BillStatus.UNPAID, BillStatus.PENDING)


class GenerationSummary(BaseModel):
    """Outcome of one monthly generation run."""

    month: str
    bills_created: int = 0
    bills_skipped: int = 0
    complaints_processed: int = 0
    bill_ids: list[str] = Field(default_factory=list)


def validate_month(month: str) -> str:
    if not _MONTH_RE.match(month or ""):
        raise ValidationError({"month": f"Expected YYYY-MM, got {month!r}"})
    return month


def due_date_for(month: str, due_day: int, tz: tzinfo) -> datetime:
    """Due date of *month* at local midnight, as UTC."""
    year, month_num = (int(part) for part in month.split("-"))
    return datetime(year, month_num, due_day, tzinfo=tz).astimezone(timezone.utc)


class BillingService:
    """Generates bills and moves them through the payment lifecycle.

    Args:
        bills: Bill repository.
        complaints: Complaint repository; unbilled charges are read and
            marked from here.
        authorizer: External policy check for admin actions.
        storage: Object storage receiving payment proofs.
        media_reader: Resolves proof URIs to bytes.
        clock: Time source for proof paths and the current billing month.
        tz: Society timezone.
        config: Billing defaults.
        folder: Storage folder for payment proofs.
        audit: Optional transition journal.
    """

    def __init__(
        self,
        bills: ResourceRepository[Bill],
        complaints: ResourceRepository[Complaint],
        authorizer: IAuthorizer,
        storage: IObjectStorage,
        media_reader: IMediaReader,
        clock: IClock,
        tz: tzinfo,
        config: BillingConfig | None = None,
        folder: str = "bills",
        audit: AuditLog | None = None,
    ) -> None:
        self._bills = bills
        self._complaints = complaints
        self._authorizer = authorizer
        self._storage = storage
        self._reader = media_reader
        self._clock = clock
        self._tz = tz
        self._config = config or BillingConfig()
        self._folder = folder
        self._audit = audit

    @property
    def repository(self) -> ResourceRepository[Bill]:
        return self._bills

    def current_month(self) -> str:
        return local_month(self._clock.now(), self._tz)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_bill(
        self,
        resident: UserProfile,
        month: str,
        admin_id: str,
        base_charges: float | None = None,
    ) -> str:
        """Create a single Draft bill for *resident*.

        Previous dues are carried over without a late fee. Complaint charges
        can be added until the bill is published.
        """
        validate_month(month)
        await require_authorized(self._authorizer, admin_id, Action.BILL_GENERATE)
        if await self.bill_for(self._resident_id(resident), month) is not None:
            raise ValidationError({
                "month": f"Bill already exists for {resident.name} for {month}",
            })

        dues = await self._outstanding_total(self._resident_id(resident), month)
        bill = self._new_bill(
            resident, month, BillBreakdown.build(
                self._base(base_charges), previous_dues=round(dues, 2),
            ),
            status=BillStatus.DRAFT,
        )
        bill_id = await self._bills.create(bill)
        logger.info("Draft bill %s for %s (%s)", bill_id, resident.name, month)
        return bill_id

    async def generate_monthly_bills(
        self,
        month: str,
        admin_id: str,
        residents: Sequence[UserProfile],
        base_charges: float | None = None,
    ) -> GenerationSummary:
        """Create an Unpaid bill for every resident not yet billed for *month*.

        Each bill carries the base charges, all unbilled complaint charges of
        the resident, and previous Unpaid/Pending dues plus the late fee.
        If any write fails or the run is cancelled, every bill created and
        complaint marked by this run is rolled back before the error is re-raised.
        """
        validate_month(month)
        await require_authorized(self._authorizer, admin_id, Action.BILL_GENERATE)
        base = self._base(base_charges)
        summary = GenerationSummary(month=month)
        created: list[str] = []
        marked: list[str] = []

        try:
            for resident in residents:
                resident_id = self._resident_id(resident)
                if await self.bill_for(resident_id, month) is not None:
                    logger.info("Skipping %s: already billed for %s", resident.name, month)
                    summary.bills_skipped += 1
                    continue

                dues = await self._outstanding_total(resident_id, month)
                late_fee = dues * self._config.late_fee_pct
                unbilled = await self._unbilled_complaints(resident_id)
                charges = [self._charge_for(c) for c in unbilled]

                bill = self._new_bill(
                    resident,
                    month,
                    BillBreakdown.build(base, charges, round(dues + late_fee, 2)),
                    status=BillStatus.UNPAID,
                    sent_by=admin_id,
                )
                bill_id = await self._bills.create(bill, server_fields=("sent_at",))
                created.append(bill_id)

                for complaint in unbilled:
                    assert complaint.id is not None
                    await self._complaints.update(complaint.id, {
                        "added_to_bill": True,
                        "bill_id": bill_id,
                    })
                    marked.append(complaint.id)

                summary.bills_created += 1
                summary.complaints_processed += len(unbilled)
                summary.bill_ids.append(bill_id)
        except BaseException as exc:
            await asyncio.shield(self._roll_back(created, marked, exc))
            raise

        logger.info(
            "Generated %d bill(s) for %s (%d skipped, %d complaint charge(s))",
            summary.bills_created, month, summary.bills_skipped,
            summary.complaints_processed,
        )
        return summary

    async def add_complaint_charge(self, bill_id: str, charge: ComplaintCharge) -> Bill:
        """Append *charge* to a Draft bill and recompute its total."""
        bill = await self._bills.get(bill_id)
        if bill.status != BillStatus.DRAFT:
            raise IllegalTransition(bill_id, bill.status.value, "add_charge")
        breakdown = bill.breakdown.with_charge(charge)
        updated = await self._bills.update(bill_id, {
            "breakdown": breakdown,
            "amount": breakdown.total,
        })
        logger.info(
            "Added %s charge %.2f to bill %s", charge.complaint_number, charge.amount, bill_id,
        )
        return updated

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def publish(self, bill_id: str, admin_id: str) -> Bill:
        """Send a Draft bill to the resident."""
        await require_authorized(self._authorizer, admin_id, Action.BILL_PUBLISH)
        return await self._transition(bill_id, admin_id, BillStatus.UNPAID, {
            "sent_by": admin_id,
            "sent_at": SERVER_TIMESTAMP,
        })

    async def publish_all_drafts(self, admin_id: str) -> int:
        await require_authorized(self._authorizer, admin_id, Action.BILL_PUBLISH)
        drafts = await self._bills.list_all(
            [self._bills.where("status", "==", BillStatus.DRAFT)],
        )
        for bill in drafts:
            assert bill.id is not None
            await self._transition(bill.id, admin_id, BillStatus.UNPAID, {
                "sent_by": admin_id,
                "sent_at": SERVER_TIMESTAMP,
            })
        logger.info("Published %d draft bill(s)", len(drafts))
        return len(drafts)

    async def submit_payment_proof(
        self, bill_id: str, resident: Principal, proof_uri: str,
    ) -> Bill:
        """Upload a payment proof and move the bill to Pending verification.

        Raises:
            Unauthorized: The bill belongs to someone else.
            IllegalTransition: The bill is not Unpaid.
            UploadError: The proof could not be read or stored; the bill is
                unchanged.
        """
        bill = await self._bills.get(bill_id)
        if bill.owner_id != resident.principal_id:
            raise Unauthorized(resident.principal_id, f"bill:submit_proof:{bill_id}")
        if not self._can_transition(bill.status, BillStatus.PENDING):
            raise IllegalTransition(bill_id, bill.status.value, BillStatus.PENDING.value)

        path = media_path(self._folder, bill.owner_id, bill_id, 0, self._clock.now())
        data = await self._reader.read(proof_uri)
        url = await self._storage.upload(data, path)
        return await self._transition(bill_id, resident.principal_id, BillStatus.PENDING, {
            "proof_url": url,
            "proof_uploaded_at": SERVER_TIMESTAMP,
        })

    async def verify_payment(self, bill_id: str, admin_id: str) -> Bill:
        await require_authorized(self._authorizer, admin_id, Action.BILL_VERIFY)
        return await self._transition(bill_id, admin_id, BillStatus.PAID, {
            "verified_by": admin_id,
            "verified_at": SERVER_TIMESTAMP,
        })

    async def reject_payment_proof(self, bill_id: str, admin_id: str) -> Bill:
        """Send a Pending bill back to Unpaid and discard its proof."""
        await require_authorized(self._authorizer, admin_id, Action.BILL_REJECT_PROOF)
        return await self._transition(bill_id, admin_id, BillStatus.UNPAID, {
            "proof_url": None,
            "proof_uploaded_at": None,
        })

    async def archive_paid_bills(self) -> int:
        paid = await self._bills.list_all([
            self._bills.where("status", "==", BillStatus.PAID),
            self._bills.where("is_archived", "==", False),
        ])
        for bill in paid:
            assert bill.id is not None
            await self._bills.update(bill.id, {"is_archived": True})
        return len(paid)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def bill_for(self, owner_id: str, month: str) -> Bill | None:
        bills = await self._bills.list_all([
            self._bills.where("owner_id", "==", owner_id),
            self._bills.where("month", "==", month),
        ])
        return bills[0] if bills else None

    async def resident_bills(self, owner_id: str, include_archived: bool = False) -> list[Bill]:
        """Bills visible to the resident (never Drafts), newest month first."""
        filters = [
            self._bills.where("owner_id", "==", owner_id),
            self._bills.where("status", "!=", BillStatus.DRAFT),
        ]
        if not include_archived:
            filters.append(self._bills.where("is_archived", "==", False))
        return await self._bills.list_all(filters, [self._bills.order("month", descending=True)])

    async def pending_verification(self) -> list[Bill]:
        return await self._bills.list_all(
            [self._bills.where("status", "==", BillStatus.PENDING)],
            [self._bills.order("month", descending=True)],
        )

    async def all_bills(self, include_drafts: bool = True) -> list[Bill]:
        filters = [] if include_drafts else [
            self._bills.where("status", "!=", BillStatus.DRAFT),
        ]
        return await self._bills.list_all(filters, [self._bills.order("month", descending=True)])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _can_transition(current: BillStatus, target: BillStatus) -> bool:
        return target in TRANSITIONS.get(current, frozenset())

    async def _transition(
        self,
        bill_id: str,
        actor: str,
        target: BillStatus,
        patch: Mapping[str, Any],
    ) -> Bill:
        current = await self._bills.get(bill_id)
        if not self._can_transition(current.status, target):
            raise IllegalTransition(bill_id, current.status.value, target.value)
        updated = await self._bills.update(bill_id, {**patch, "status": target})
        logger.info(
            "bill %s: %s -> %s by %s", bill_id, current.status.value, target.value, actor,
        )
        await record_transition(
            self._audit,
            kind=ResourceKind.BILL,
            resource_id=bill_id,
            actor=actor,
            from_state=current.status.value,
            to_state=target.value,
        )
        return updated

    def _base(self, base_charges: float | None) -> float:
        base = self._config.base_charges if base_charges is None else base_charges
        if not math.isfinite(base) or base < 0:
            raise ValidationError({"base_charges": "Must be a non-negative amount"})
        return base

    @staticmethod
    def _resident_id(resident: UserProfile) -> str:
        if not resident.id:
            raise ValidationError({"resident": f"{resident.name} has no id"})
        return resident.id

    def _new_bill(
        self,
        resident: UserProfile,
        month: str,
        breakdown: BillBreakdown,
        status: BillStatus,
        sent_by: str | None = None,
    ) -> Bill:
        return Bill(
            owner_id=self._resident_id(resident),
            owner_display_name=resident.name,
            owner_location=resident.house_no or "",
            month=month,
            breakdown=breakdown,
            amount=breakdown.total,
            due_date=due_date_for(month, self._config.due_day, self._tz),
            status=status,
            sent_by=sent_by,
        )

    async def _outstanding_total(self, owner_id: str, month: str) -> float:
        previous = await self._bills.list_all([
            self._bills.where("owner_id", "==", owner_id),
            self._bills.where("month", "<", month),
            self._bills.where("status", "in", list(OUTSTANDING_STATES)),
        ])
        return sum(b.amount for b in previous)

    async def _unbilled_complaints(self, owner_id: str) -> list[Complaint]:
        return await self._complaints.list_all(
            [
                self._complaints.where("owner_id", "==", owner_id),
                self._complaints.where("added_to_bill", "==", False),
                self._complaints.where("charge_amount", ">", 0),
            ],
            [self._complaints.order("created_at")],
        )

    @staticmethod
    def _charge_for(complaint: Complaint) -> ComplaintCharge:
        assert complaint.id is not None and complaint.charge_amount is not None
        return ComplaintCharge(
            complaint_id=complaint.id,
            complaint_number=complaint.complaint_number,
            description=complaint.title or "Complaint charge",
            amount=complaint.charge_amount,
        )

    async def _roll_back(self, bill_ids: list[str], complaint_ids: list[str], cause: BaseException) -> None:
        logger.warning(
            "Bill generation failed (%r); rolling back %d bill(s)", cause, len(bill_ids),
        )
        for complaint_id in complaint_ids:
            try:
                await self._complaints.update(complaint_id, {
                    "added_to_bill": False,
                    "bill_id": None,
                })
            except Exception:
                logger.exception("Rollback of complaint %s failed", complaint_id)
        for bill_id in bill_ids:
            try:
                await self._bills.delete(bill_id)
            except Exception:
                logger.exception("Rollback of bill %s failed", bill_id)
