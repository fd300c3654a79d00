"""Moderation lifecycle for owner-created resources.

    PENDING -> [APPROVED|REJECTED]

Approved and Rejected are terminal. A transition is a single write of
status, reviewedBy, reviewedAt (server time) and, on reject,
rejectionReason. Media and payload fields are never touched.

Checks run in a fixed order: reason, authorization, existence, state.
A request that fails any check writes nothing.
"""

from __future__ import annotations

import logging
from typing import Generic, TypeVar

from society_engine.core.enums import Action, ModerationStatus, ResourceKind
from society_engine.core.errors import IllegalTransition
from society_engine.core.interfaces import IAuthorizer
from society_engine.core.models import ModeratedResource
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.store.query import SERVER_TIMESTAMP

from .audit_log import AuditLog, record_transition
from .guards import require_authorized, require_text

logger = logging.getLogger(__name__)

ResT = TypeVar("ResT", bound=ModeratedResource)

TERMINAL_STATES: frozenset[ModerationStatus] = frozenset({
    ModerationStatus.APPROVED,
    ModerationStatus.REJECTED,
})

# Valid transitions: from -> set of valid targets
TRANSITIONS: dict[ModerationStatus, frozenset[ModerationStatus]] = {
    ModerationStatus.PENDING: frozenset({
        ModerationStatus.APPROVED, ModerationStatus.REJECTED,
    }),
    ModerationStatus.APPROVED: frozenset(),
    ModerationStatus.REJECTED: frozenset(),
}


def can_transition(current: ModerationStatus, target: ModerationStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class ModerationStateMachine(Generic[ResT]):
    """Approve or reject Pending resources of one kind.

    Args:
        repository: Repository of the moderated collection.
        authorizer: External policy check.
        kind: Resource kind; selects the action names checked.
        audit: Optional journal; transitions are recorded best effort.
    """

    def __init__(
        self,
        repository: ResourceRepository[ResT],
        authorizer: IAuthorizer,
        kind: ResourceKind = ResourceKind.LISTING,
        audit: AuditLog | None = None,
    ) -> None:
        self._repository = repository
        self._authorizer = authorizer
        self._kind = kind
        self._audit = audit

    async def approve(self, resource_id: str, reviewer_id: str) -> ResT:
        await require_authorized(self._authorizer, reviewer_id, self._action("approve"))
        return await self._transition(
            resource_id, reviewer_id, ModerationStatus.APPROVED, reason=None,
        )

    async def reject(self, resource_id: str, reviewer_id: str, reason: str) -> ResT:
        """Reject a Pending resource.

        Raises:
            ValidationError: *reason* is empty or whitespace.
            Unauthorized: The reviewer may not reject.
            NotFound: No such resource.
            IllegalTransition: The resource is not Pending.
        """
        text = require_text("reason", reason, "A rejection reason is required")
        await require_authorized(self._authorizer, reviewer_id, self._action("reject"))
        return await self._transition(
            resource_id, reviewer_id, ModerationStatus.REJECTED, reason=text,
        )

    # ------------------------------------------------------------------

    def _action(self, verb: str) -> str:
        name = f"{self._kind.value}:{verb}"
        try:
            return Action(name).value
        except ValueError:
            return name

    async def _transition(
        self,
        resource_id: str,
        reviewer_id: str,
        target: ModerationStatus,
        reason: str | None,
    ) -> ResT:
        # Latest read immediately before the write
        current = await self._repository.get(resource_id)
        if not can_transition(current.status, target):
            raise IllegalTransition(resource_id, current.status.value, target.value)

        updated = await self._repository.update(resource_id, {
            "status": target,
            "reviewed_by": reviewer_id,
            "reviewed_at": SERVER_TIMESTAMP,
            "rejection_reason": reason,
        })
        logger.info(
            "%s %s: %s -> %s by %s",
            self._kind.value, resource_id, current.status.value, target.value,
            reviewer_id,
        )
        await record_transition(
            self._audit,
            kind=self._kind,
            resource_id=resource_id,
            actor=reviewer_id,
            from_state=current.status.value,
            to_state=target.value,
            payload={"reason": reason} if reason else None,
        )
        return updated
