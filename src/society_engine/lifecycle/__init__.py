"""Resource lifecycles: creation, moderation, complaints and billing.

Modules:
    creation: Two-phase creation with compensating delete
    moderation: Pending -> Approved/Rejected state machine
    marketplace: Listing facade (create, moderate, query)
    complaints: Complaint numbering, progression and resolution
    billing: Bill lifecycle and monthly generation
    audit_log: Append-only transition journal
"""

from society_engine.lifecycle.audit_log import AuditEntry, AuditLog, record_transition
from society_engine.lifecycle.billing import BillingService, GenerationSummary
from society_engine.lifecycle.complaints import ComplaintService
from society_engine.lifecycle.creation import CreationOrchestrator
from society_engine.lifecycle.marketplace import MarketplaceService
from society_engine.lifecycle.moderation import ModerationStateMachine

__all__ = [
    "AuditEntry",
    "AuditLog",
    "BillingService",
    "ComplaintService",
    "CreationOrchestrator",
    "GenerationSummary",
    "MarketplaceService",
    "ModerationStateMachine",
    "record_transition",
]
