"""Admin dashboard counters over live queries."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from society_engine.core.enums import BillStatus, ComplaintStatus, ModerationStatus
from society_engine.core.models import Bill, Complaint, Listing
from society_engine.repository.resource_repository import ResourceRepository

from .stats import count_by_partition
from .view import AggregationView, MergedView, repository_source

UNPAID_BILLS = "unpaid_bills"
PENDING_COMPLAINTS = "pending_complaints"
PENDING_LISTINGS = "pending_listings"


class DashboardStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    unpaid_bills: int = 0
    pending_complaints: int = 0
    pending_listings: int = 0


def dashboard_stats(view: MergedView[object]) -> DashboardStats:
    counts = count_by_partition(view)
    return DashboardStats(
        unpaid_bills=counts.get(UNPAID_BILLS, 0),
        pending_complaints=counts.get(PENDING_COMPLAINTS, 0),
        pending_listings=counts.get(PENDING_LISTINGS, 0),
    )


def build_dashboard(
    bills: ResourceRepository[Bill],
    complaints: ResourceRepository[Complaint],
    listings: ResourceRepository[Listing],
) -> AggregationView[object, DashboardStats]:
    return AggregationView(
        {
            UNPAID_BILLS: repository_source(
                bills, [bills.where("status", "==", BillStatus.UNPAID)],
            ),
            PENDING_COMPLAINTS: repository_source(
                complaints, [complaints.where("status", "==", ComplaintStatus.PENDING)],
            ),
            PENDING_LISTINGS: repository_source(
                listings, [listings.where("status", "==", ModerationStatus.PENDING)],
            ),
        },
        derive=dashboard_stats,
    )
