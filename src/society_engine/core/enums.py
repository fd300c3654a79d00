"""Enumerations used across the society engine.

Values are the exact strings persisted in the document store and must not
change.
"""

from enum import Enum


class ResourceKind(str, Enum):
    LISTING = "listing"
    COMPLAINT = "complaint"
    BILL = "bill"
    GATE_LOG = "gate_log"
    USER = "user"


class ModerationStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ComplaintStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"


class ComplaintCategory(str, Enum):
    WATER = "Water"
    ELECTRICITY = "Electricity"
    MAINTENANCE = "Maintenance"
    SECURITY = "Security"
    OTHER = "Other"


class BillStatus(str, Enum):
    DRAFT = "Draft"  # Not yet sent to the resident
    UNPAID = "Unpaid"
    PENDING = "Pending"  # Payment proof uploaded, awaiting verification
    PAID = "Paid"


class ListingType(str, Enum):
    SELL = "Sell"
    RENT = "Rent"


class VehicleClass(str, Enum):
    RESIDENT = "Resident"
    VISITOR = "Visitor"
    SERVICE = "Service"


class UserRole(str, Enum):
    ADMIN = "admin"
    RESIDENT = "resident"
    SECURITY = "security"


class Action(str, Enum):
    """Action names passed to the external authorization check."""

    LISTING_APPROVE = "listing:approve"
    LISTING_REJECT = "listing:reject"
    COMPLAINT_UPDATE = "complaint:update"
    COMPLAINT_RESOLVE = "complaint:resolve"
    BILL_GENERATE = "bill:generate"
    BILL_PUBLISH = "bill:publish"
    BILL_VERIFY = "bill:verify"
    BILL_REJECT_PROOF = "bill:reject_proof"
    GATE_ENTRY = "gate:entry"
    GATE_EXIT = "gate:exit"
