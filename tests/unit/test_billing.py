"""Tests for BillingService."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from society_engine.core.enums import BillStatus, UserRole
from society_engine.core.errors import (
    IllegalTransition,
    StoreUnavailable,
    Unauthorized,
    UploadError,
    ValidationError,
)
from society_engine.core.ids import to_millis
from society_engine.core.models import ComplaintCharge, UserProfile
from society_engine.lifecycle.billing import TRANSITIONS, due_date_for, validate_month

COMPLAINT = {
    "title": "Broken gate",
    "description": "Main gate hinge snapped off",
    "category": "Maintenance",
}


def _profile(resident_id: str, name: str, house: str) -> UserProfile:
    return UserProfile(id=resident_id, name=name, role=UserRole.RESIDENT, house_no=house)


@pytest.fixture
def ayesha() -> UserProfile:
    return _profile("res-1", "Ayesha Khan", "A-12")


@pytest.fixture
def bilal() -> UserProfile:
    return _profile("res-2", "Bilal Ahmed", "B-7")


async def _charged_complaint(engine, owner, admin, amount: float) -> str:
    complaint_id = await engine.complaints.create(COMPLAINT, owner)
    await engine.complaints.resolve(complaint_id, admin.principal_id, charge_amount=amount)
    return complaint_id


async def _paid(engine, bill_id, resident, admin):
    await engine.billing.submit_payment_proof(bill_id, resident, "receipt.png")
    return await engine.billing.verify_payment(bill_id, admin.principal_id)


class TestHelpers:
    @pytest.mark.parametrize("month", ["2024-06", "1999-12", "2030-01"])
    def test_valid_months(self, month):
        assert validate_month(month) == month

    @pytest.mark.parametrize("month", ["2024-13", "2024-6", "June", "", "2024-00"])
    def test_invalid_months(self, month):
        with pytest.raises(ValidationError) as exc_info:
            validate_month(month)
        assert exc_info.value.fields == ["month"]

    def test_due_date_is_local_midnight(self, karachi):
        assert due_date_for("2024-06", 25, karachi) == datetime(
            2024, 6, 24, 19, 0, tzinfo=timezone.utc,
        )

    def test_paid_is_terminal(self):
        assert TRANSITIONS[BillStatus.PAID] == frozenset()
        assert BillStatus.UNPAID in TRANSITIONS[BillStatus.PENDING]


class TestMonthlyGeneration:
    @pytest.mark.asyncio
    async def test_bills_every_resident(self, engine, admin, ayesha, bilal, karachi):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha, bilal],
        )

        assert summary.bills_created == 2
        assert summary.bills_skipped == 0
        bill = await engine.billing.bill_for("res-1", "2024-06")
        assert bill.status == BillStatus.UNPAID
        assert bill.amount == 5000
        assert bill.breakdown.previous_dues == 0
        assert bill.sent_by == "admin-1"
        assert bill.sent_at is not None
        assert bill.owner_location == "A-12"
        assert bill.due_date == due_date_for("2024-06", 25, karachi)

    @pytest.mark.asyncio
    async def test_rerun_skips_billed_residents(self, engine, admin, ayesha, bilal):
        await engine.billing.generate_monthly_bills("2024-06", admin.principal_id, [ayesha])
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha, bilal],
        )
        assert (summary.bills_created, summary.bills_skipped) == (1, 1)
        assert len(await engine.billing.all_bills()) == 2

    @pytest.mark.asyncio
    async def test_outstanding_dues_carry_late_fee(self, engine, admin, ayesha):
        await engine.billing.generate_monthly_bills("2024-05", admin.principal_id, [ayesha])
        await engine.billing.generate_monthly_bills("2024-06", admin.principal_id, [ayesha])

        june = await engine.billing.bill_for("res-1", "2024-06")
        assert june.breakdown.previous_dues == 5500
        assert june.amount == 10500

    @pytest.mark.asyncio
    async def test_paid_bills_are_not_dues(self, engine, admin, resident, ayesha):
        await engine.billing.generate_monthly_bills("2024-05", admin.principal_id, [ayesha])
        may = await engine.billing.bill_for("res-1", "2024-05")
        await _paid(engine, may.id, resident, admin)

        await engine.billing.generate_monthly_bills("2024-06", admin.principal_id, [ayesha])
        assert (await engine.billing.bill_for("res-1", "2024-06")).breakdown.previous_dues == 0

    @pytest.mark.asyncio
    async def test_unbilled_charges_are_picked_up_once(
        self, engine, admin, resident, ayesha,
    ):
        complaint_id = await _charged_complaint(engine, resident, admin, 1500)

        june = await engine.billing.generate_monthly_bills("2024-06", admin.principal_id, [ayesha])
        assert june.complaints_processed == 1
        bill = await engine.bills.get(june.bill_ids[0])
        (charge,) = bill.breakdown.complaint_charges
        assert (charge.complaint_id, charge.complaint_number, charge.amount) == (
            complaint_id, "C001", 1500,
        )
        assert bill.amount == 6500

        complaint = await engine.complaints_repo.get(complaint_id)
        assert complaint.added_to_bill is True
        assert complaint.bill_id == bill.id

        july = await engine.billing.generate_monthly_bills("2024-07", admin.principal_id, [ayesha])
        assert july.complaints_processed == 0

    @pytest.mark.asyncio
    async def test_failure_rolls_back_whole_run(
        self, engine, admin, resident, ayesha, bilal, store, monkeypatch, caplog,
    ):
        await _charged_complaint(engine, resident, admin, 700)

        async def broken_update(doc_id, patch):
            raise StoreUnavailable("write timed out")

        # Bilal has no charges so his bill succeeds; Ayesha's complaint update fails
        monkeypatch.setattr(engine.complaints_repo, "update", broken_update)
        with caplog.at_level(logging.WARNING, logger="society_engine.lifecycle.billing"):
            with pytest.raises(StoreUnavailable):
                await engine.billing.generate_monthly_bills(
                    "2024-06", admin.principal_id, [bilal, ayesha],
                )

        assert store.document_count("bills") == 0
        assert any("rolling back 2 bill(s)" in r.getMessage() for r in caplog.records)
        monkeypatch.undo()
        (complaint,) = await engine.complaints.mine("res-1")
        assert complaint.has_unbilled_charge

    @pytest.mark.asyncio
    async def test_timeout_rolls_back_whole_run(
        self, engine, admin, resident, ayesha, bilal, store, monkeypatch,
    ):
        await _charged_complaint(engine, resident, admin, 700)
        create = engine.bills.create
        calls = 0

        async def stalled_create(bill, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 2:
                await asyncio.sleep(10)
            return await create(bill, **kwargs)

        # Ayesha's bill and complaint mark land before Bilal's write stalls
        monkeypatch.setattr(engine.bills, "create", stalled_create)
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                engine.billing.generate_monthly_bills(
                    "2024-06", admin.principal_id, [ayesha, bilal],
                ),
                timeout=0.05,
            )

        assert store.document_count("bills") == 0
        (complaint,) = await engine.complaints.mine("res-1")
        assert complaint.has_unbilled_charge
        assert complaint.bill_id is None

    @pytest.mark.asyncio
    async def test_invalid_month_writes_nothing(self, engine, admin, ayesha, store):
        with pytest.raises(ValidationError):
            await engine.billing.generate_monthly_bills("2024/06", admin.principal_id, [ayesha])
        assert store.document_count("bills") == 0

    @pytest.mark.asyncio
    async def test_denied_admin(self, engine, authorizer, ayesha):
        authorizer.deny("res-2", "bill:generate")
        with pytest.raises(Unauthorized):
            await engine.billing.generate_monthly_bills("2024-06", "res-2", [ayesha])

    @pytest.mark.asyncio
    async def test_resident_without_id(self, engine, admin):
        nobody = UserProfile(name="Ghost", role=UserRole.RESIDENT)
        with pytest.raises(ValidationError) as exc_info:
            await engine.billing.generate_monthly_bills("2024-06", admin.principal_id, [nobody])
        assert exc_info.value.fields == ["resident"]


class TestDrafts:
    @pytest.mark.asyncio
    async def test_generate_bill_creates_draft(self, engine, admin, ayesha):
        bill_id = await engine.billing.generate_bill(ayesha, "2024-06", admin.principal_id)
        bill = await engine.bills.get(bill_id)
        assert bill.status == BillStatus.DRAFT
        assert bill.sent_by is None

        with pytest.raises(ValidationError, match="already exists"):
            await engine.billing.generate_bill(ayesha, "2024-06", admin.principal_id)

    @pytest.mark.asyncio
    async def test_draft_dues_carry_no_late_fee(self, engine, admin, ayesha):
        await engine.billing.generate_monthly_bills("2024-05", admin.principal_id, [ayesha])
        bill_id = await engine.billing.generate_bill(ayesha, "2024-06", admin.principal_id)
        assert (await engine.bills.get(bill_id)).breakdown.previous_dues == 5000

    @pytest.mark.asyncio
    async def test_charges_only_on_drafts(self, engine, admin, ayesha):
        bill_id = await engine.billing.generate_bill(
            ayesha, "2024-06", admin.principal_id, base_charges=3000,
        )
        charge = ComplaintCharge(complaint_id="c1", complaint_number="C009", amount=250.5)

        bill = await engine.billing.add_complaint_charge(bill_id, charge)
        assert bill.amount == 3250.5
        assert bill.breakdown.total == bill.amount

        await engine.billing.publish(bill_id, admin.principal_id)
        with pytest.raises(IllegalTransition) as exc_info:
            await engine.billing.add_complaint_charge(bill_id, charge)
        assert exc_info.value.target == "add_charge"

    @pytest.mark.asyncio
    async def test_publish(self, engine, admin, ayesha):
        bill_id = await engine.billing.generate_bill(ayesha, "2024-06", admin.principal_id)
        bill = await engine.billing.publish(bill_id, admin.principal_id)
        assert bill.status == BillStatus.UNPAID
        assert bill.sent_by == "admin-1"
        assert bill.sent_at is not None

        with pytest.raises(IllegalTransition):
            await engine.billing.publish(bill_id, admin.principal_id)

    @pytest.mark.asyncio
    async def test_publish_all_drafts(self, engine, admin, ayesha, bilal):
        await engine.billing.generate_bill(ayesha, "2024-06", admin.principal_id)
        await engine.billing.generate_bill(bilal, "2024-06", admin.principal_id)

        assert await engine.billing.publish_all_drafts(admin.principal_id) == 2
        assert await engine.billing.publish_all_drafts(admin.principal_id) == 0
        assert all(b.status == BillStatus.UNPAID for b in await engine.billing.all_bills())

    @pytest.mark.asyncio
    async def test_drafts_hidden_from_resident(self, engine, admin, ayesha):
        await engine.billing.generate_bill(ayesha, "2024-06", admin.principal_id)
        assert await engine.billing.resident_bills("res-1") == []
        assert await engine.billing.all_bills(include_drafts=False) == []
        assert len(await engine.billing.all_bills()) == 1


class TestPayment:
    @pytest.mark.asyncio
    async def test_proof_moves_bill_to_pending(
        self, engine, admin, resident, ayesha, storage, sim_clock,
    ):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha],
        )
        bill_id = summary.bill_ids[0]

        bill = await engine.billing.submit_payment_proof(bill_id, resident, "receipt.png")

        path = f"bills/res-1/{bill_id}_0_{to_millis(sim_clock.now())}"
        assert bill.status == BillStatus.PENDING
        assert bill.proof_url == f"memory://{path}"
        assert bill.proof_uploaded_at is not None
        assert storage.get(path) == b"bytes:receipt.png"
        assert [b.id for b in await engine.billing.pending_verification()] == [bill_id]

    @pytest.mark.asyncio
    async def test_only_owner_submits_proof(
        self, engine, admin, other_resident, ayesha, storage,
    ):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha],
        )
        with pytest.raises(Unauthorized):
            await engine.billing.submit_payment_proof(
                summary.bill_ids[0], other_resident, "receipt.png",
            )
        assert len(storage) == 0

    @pytest.mark.asyncio
    async def test_draft_cannot_receive_proof(self, engine, admin, resident, ayesha):
        bill_id = await engine.billing.generate_bill(ayesha, "2024-06", admin.principal_id)
        with pytest.raises(IllegalTransition):
            await engine.billing.submit_payment_proof(bill_id, resident, "receipt.png")

    @pytest.mark.asyncio
    async def test_failed_upload_leaves_bill_unpaid(
        self, engine, admin, resident, ayesha, media_reader,
    ):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha],
        )
        media_reader.failing.add("receipt.png")
        with pytest.raises(UploadError):
            await engine.billing.submit_payment_proof(summary.bill_ids[0], resident, "receipt.png")
        bill = await engine.bills.get(summary.bill_ids[0])
        assert bill.status == BillStatus.UNPAID
        assert bill.proof_url is None

    @pytest.mark.asyncio
    async def test_verify(self, engine, admin, resident, ayesha, audit_log):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha],
        )
        bill = await _paid(engine, summary.bill_ids[0], resident, admin)

        assert bill.status == BillStatus.PAID
        assert bill.verified_by == "admin-1"
        assert bill.verified_at is not None
        assert [e.event_type for e in audit_log.read(bill.id)] == ["bill.pending", "bill.paid"]

        with pytest.raises(IllegalTransition):
            await engine.billing.verify_payment(bill.id, admin.principal_id)

    @pytest.mark.asyncio
    async def test_reject_proof_clears_it(self, engine, admin, resident, ayesha):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha],
        )
        bill_id = summary.bill_ids[0]
        await engine.billing.submit_payment_proof(bill_id, resident, "blurry.png")

        bill = await engine.billing.reject_payment_proof(bill_id, admin.principal_id)
        assert bill.status == BillStatus.UNPAID
        assert bill.proof_url is None
        assert bill.proof_uploaded_at is None

        # Resident can try again
        again = await engine.billing.submit_payment_proof(bill_id, resident, "clear.png")
        assert again.status == BillStatus.PENDING

    @pytest.mark.asyncio
    async def test_unpaid_cannot_be_verified(self, engine, admin, ayesha):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha],
        )
        with pytest.raises(IllegalTransition) as exc_info:
            await engine.billing.verify_payment(summary.bill_ids[0], admin.principal_id)
        assert (exc_info.value.current, exc_info.value.target) == ("Unpaid", "Paid")


class TestArchive:
    @pytest.mark.asyncio
    async def test_archive_paid_bills(self, engine, admin, resident, ayesha, bilal):
        summary = await engine.billing.generate_monthly_bills(
            "2024-06", admin.principal_id, [ayesha, bilal],
        )
        paid_id = (await engine.billing.bill_for("res-1", "2024-06")).id
        await _paid(engine, paid_id, resident, admin)

        assert await engine.billing.archive_paid_bills() == 1
        assert await engine.billing.archive_paid_bills() == 0
        assert await engine.billing.resident_bills("res-1") == []
        (archived,) = await engine.billing.resident_bills("res-1", include_archived=True)
        assert archived.is_archived
        assert len(summary.bill_ids) == 2

