"""Persisted document models.

These are the canonical shapes of every document the engine reads or
writes. Python attributes are snake_case; the store sees the camelCase wire
names. Models are validated on both write and read, so states such as an
Approved listing without media cannot be represented.
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .enums import (
    BillStatus,
    ComplaintCategory,
    ComplaintStatus,
    ListingType,
    ModerationStatus,
    ResourceKind,
    UserRole,
    VehicleClass,
)


def to_wire_value(value: Any) -> Any:
    """Convert enums and nested models to their stored form, recursively."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, WireModel):
        return value.to_wire()
    if isinstance(value, dict):
        return {k: to_wire_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_wire_value(v) for v in value]
    return value


class WireModel(BaseModel):
    """Base for models that cross the store boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_wire(self, exclude: set[str] | None = None) -> dict[str, Any]:
        return to_wire_value(self.model_dump(by_alias=True, exclude=exclude))


class Document(WireModel):
    """A stored document. ``id`` is assigned by the store and never persisted
    inside the document body."""

    kind: ClassVar[ResourceKind]

    id: str | None = None
    created_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        return self.to_wire(exclude={"id"})

    @classmethod
    def wire_name(cls, field_name: str) -> str:
        field = cls.model_fields[field_name]
        return field.alias or field_name

    @classmethod
    def from_snapshot(cls, doc_id: str, data: dict[str, Any]):
        return cls.model_validate({**data, "id": doc_id})


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class Principal(BaseModel):
    """The current principal as exposed by the identity provider."""

    principal_id: str = Field(min_length=1)
    display_name: str = ""
    role: UserRole | None = None
    house_no: str | None = None


# ---------------------------------------------------------------------------
# Moderated resources
# ---------------------------------------------------------------------------

class ModeratedResource(Document):
    """Owner-created record that needs reviewer approval to go public."""

    status: ModerationStatus = ModerationStatus.PENDING
    owner_id: str = Field(min_length=1)
    owner_display_name: str = ""
    owner_location: str = ""
    media: list[str] = Field(default_factory=list)
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None

    @model_validator(mode="after")
    def _check_moderation_state(self) -> "ModeratedResource":
        problems: list[str] = []
        pending = self.status == ModerationStatus.PENDING
        if not pending and not self.media:
            problems.append(f"{self.status.value} resource must have media")
        if pending and (self.reviewed_by is not None or self.reviewed_at is not None):
            problems.append("Pending resource cannot carry review fields")
        if not pending and (self.reviewed_by is None or self.reviewed_at is None):
            problems.append(f"{self.status.value} resource requires reviewedBy and reviewedAt")
        rejected = self.status == ModerationStatus.REJECTED
        if rejected and not self.rejection_reason:
            problems.append("Rejected resource requires rejectionReason")
        if not rejected and self.rejection_reason is not None:
            problems.append("rejectionReason is only set on Rejected resources")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    @property
    def is_complete(self) -> bool:
        return bool(self.media)


class Listing(ModeratedResource):
    """Marketplace property listing."""

    kind: ClassVar[ResourceKind] = ResourceKind.LISTING

    listing_type: ListingType = Field(default=ListingType.SELL, alias="type")
    price: float = Field(gt=0, allow_inf_nan=False)
    size: str = Field(min_length=1)
    location: str = ""
    contact: str = Field(min_length=1)
    description: str = ""


# ---------------------------------------------------------------------------
# Complaints
# ---------------------------------------------------------------------------

class Complaint(Document):
    kind: ClassVar[ResourceKind] = ResourceKind.COMPLAINT

    complaint_number: str
    title: str
    description: str
    category: ComplaintCategory
    status: ComplaintStatus = ComplaintStatus.PENDING
    priority: str = "medium"
    owner_id: str = Field(min_length=1)
    owner_display_name: str = ""
    owner_location: str = ""
    media: list[str] = Field(default_factory=list)
    resolution_notes: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    charge_amount: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    added_to_bill: bool | None = None
    bill_id: str | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_resolution(self) -> "Complaint":
        if self.status == ComplaintStatus.RESOLVED:
            if self.resolved_by is None or self.resolved_at is None:
                raise ValueError("Resolved complaint requires resolvedBy and resolvedAt")
        if self.bill_id is not None and not self.added_to_bill:
            raise ValueError("billId is only set once the charge is billed")
        return self

    @property
    def has_unbilled_charge(self) -> bool:
        return (
            self.added_to_bill is False
            and self.charge_amount is not None
            and self.charge_amount > 0
        )


# ---------------------------------------------------------------------------
# Bills
# ---------------------------------------------------------------------------

class ComplaintCharge(WireModel):
    complaint_id: str
    complaint_number: str
    description: str = "Complaint charge"
    amount: float = Field(gt=0, allow_inf_nan=False)


class BillBreakdown(WireModel):
    base_charges: float = Field(ge=0, allow_inf_nan=False)
    complaint_charges: list[ComplaintCharge] = Field(default_factory=list)
    previous_dues: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    total: float = Field(ge=0, allow_inf_nan=False)

    @classmethod
    def build(
        cls,
        base_charges: float,
        complaint_charges: list[ComplaintCharge] | None = None,
        previous_dues: float = 0.0,
    ) -> "BillBreakdown":
        charges = list(complaint_charges or [])
        total = base_charges + sum(c.amount for c in charges) + previous_dues
        return cls(
            base_charges=base_charges,
            complaint_charges=charges,
            previous_dues=previous_dues,
            total=round(total, 2),
        )

    def with_charge(self, charge: ComplaintCharge) -> "BillBreakdown":
        return BillBreakdown.build(
            self.base_charges, [*self.complaint_charges, charge], self.previous_dues
        )

    @model_validator(mode="after")
    def _check_total(self) -> "BillBreakdown":
        expected = (
            self.base_charges
            + sum(c.amount for c in self.complaint_charges)
            + self.previous_dues
        )
        if not math.isclose(self.total, expected, abs_tol=0.01):
            raise ValueError(f"total {self.total} does not match breakdown {expected:.2f}")
        return self


class Bill(Document):
    kind: ClassVar[ResourceKind] = ResourceKind.BILL

    owner_id: str = Field(min_length=1)
    owner_display_name: str = ""
    owner_location: str = ""
    month: str = Field(pattern=r"^\d{4}-\d{2}$")
    breakdown: BillBreakdown
    amount: float = Field(ge=0, allow_inf_nan=False)
    due_date: datetime
    status: BillStatus = BillStatus.DRAFT
    proof_url: str | None = None
    proof_uploaded_at: datetime | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    sent_by: str | None = None
    sent_at: datetime | None = None
    is_archived: bool = False

    @model_validator(mode="after")
    def _check_payment_state(self) -> "Bill":
        if not math.isclose(self.amount, self.breakdown.total, abs_tol=0.01):
            raise ValueError("amount must equal breakdown.total")
        if self.status in (BillStatus.PENDING, BillStatus.PAID) and not self.proof_url:
            raise ValueError(f"{self.status.value} bill requires proofUrl")
        if self.status == BillStatus.PAID and (
            self.verified_by is None or self.verified_at is None
        ):
            raise ValueError("Paid bill requires verifiedBy and verifiedAt")
        return self


# ---------------------------------------------------------------------------
# Gate logs
# ---------------------------------------------------------------------------

class GateLog(Document):
    """One vehicle visit: opened on entry, closed once on exit."""

    kind: ClassVar[ResourceKind] = ResourceKind.GATE_LOG

    vehicle_no: str = Field(min_length=1)
    vehicle_class: VehicleClass
    entry_time: datetime
    exit_time: datetime | None = None
    associated_house: str | None = None
    logged_by: str = Field(min_length=1)
    logged_by_name: str = ""
    exit_logged_by: str | None = None
    resident_id: str | None = None
    visitor_name: str | None = None
    purpose: str | None = None

    @model_validator(mode="after")
    def _check_times(self) -> "GateLog":
        if self.exit_time is not None and self.exit_time < self.entry_time:
            raise ValueError("exitTime must not be earlier than entryTime")
        return self

    @property
    def is_active(self) -> bool:
        return self.exit_time is None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserProfile(Document):
    kind: ClassVar[ResourceKind] = ResourceKind.USER

    name: str
    email: str = ""
    house_no: str | None = None
    role: UserRole
