"""Precondition helpers shared by the lifecycle services."""

from __future__ import annotations

import logging

from society_engine.core.enums import Action
from society_engine.core.errors import Unauthorized, ValidationError
from society_engine.core.interfaces import IAuthorizer

logger = logging.getLogger(__name__)


async def require_authorized(
    authorizer: IAuthorizer,
    principal_id: str,
    action: Action | str,
) -> None:
    """Raise ``Unauthorized`` unless the external policy allows *action*."""
    action_name = action.value if isinstance(action, Action) else action
    if not await authorizer.is_authorized(principal_id, action_name):
        logger.info("Denied %s for principal %s", action_name, principal_id)
        raise Unauthorized(principal_id, action_name)


def require_text(field: str, value: str | None, message: str) -> str:
    """Return *value* stripped, or raise ``ValidationError`` if blank."""
    text = (value or "").strip()
    if not text:
        raise ValidationError({field: message})
    return text
