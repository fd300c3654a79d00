"""User-submitted drafts and their validation.

Drafts are what forms send. Validation collects every violated field into a
single ValidationError instead of stopping at the first problem.
"""

from __future__ import annotations

from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .enums import ComplaintCategory, ListingType, ModerationStatus
from .errors import ValidationError
from .models import Complaint, Listing, Principal, WireModel

DraftT = TypeVar("DraftT", bound=BaseModel)


def field_errors(exc: PydanticValidationError) -> dict[str, str]:
    """Flatten a pydantic error into ``{field: message}``."""
    errors: dict[str, str] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "__root__"
        errors.setdefault(field, err["msg"])
    return errors


def parse_draft(
    draft_cls: type[DraftT],
    data: Mapping[str, Any] | DraftT,
) -> DraftT:
    """Validate raw form data into *draft_cls*, reporting all field errors."""
    if isinstance(data, draft_cls):
        return data
    try:
        return draft_cls.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError(field_errors(exc)) from exc


class MediaDraft(WireModel):
    """Base for drafts that may carry media URIs to upload."""

    photos: list[str] = Field(default_factory=list)


class ListingDraft(MediaDraft):
    listing_type: ListingType = Field(default=ListingType.SELL, alias="type")
    price: float = Field(gt=0, le=1_000_000_000, allow_inf_nan=False)
    size: str = Field(min_length=1, max_length=50)
    location: str = Field(default="", max_length=200)
    contact: str = Field(min_length=5, max_length=50)
    description: str = Field(min_length=10, max_length=1000)

    def to_placeholder(self, owner: Principal) -> Listing:
        return Listing(
            status=ModerationStatus.PENDING,
            owner_id=owner.principal_id,
            owner_display_name=owner.display_name,
            owner_location=owner.house_no or "",
            media=[],
            listing_type=self.listing_type,
            price=self.price,
            size=self.size,
            location=self.location or owner.house_no or "",
            contact=self.contact,
            description=self.description,
        )


class ComplaintDraft(MediaDraft):
    title: str = Field(min_length=5, max_length=100)
    description: str = Field(min_length=10, max_length=1000)
    category: ComplaintCategory

    def to_placeholder(self, owner: Principal, complaint_number: str) -> Complaint:
        return Complaint(
            complaint_number=complaint_number,
            title=self.title,
            description=self.description,
            category=self.category,
            owner_id=owner.principal_id,
            owner_display_name=owner.display_name,
            owner_location=owner.house_no or "",
            media=[],
        )
