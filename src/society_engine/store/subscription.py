"""Live subscription handles.

A subscription stays open until ``cancel()`` is called. Handles are context
managers so that release happens on every exit path, including errors.
"""

from __future__ import annotations

import logging
from typing import Callable

from society_engine.core.ids import new_id

logger = logging.getLogger(__name__)


class Subscription:
    """Handle for one live query. ``cancel()`` is idempotent."""

    def __init__(self, description: str, on_cancel: Callable[[], None]) -> None:
        self.subscription_id = new_id()
        self.description = description
        self._on_cancel: Callable[[], None] | None = on_cancel

    @property
    def active(self) -> bool:
        return self._on_cancel is not None

    def cancel(self) -> None:
        if self._on_cancel is None:
            return
        release, self._on_cancel = self._on_cancel, None
        release()
        logger.debug("Subscription %s cancelled (%s)", self.subscription_id[:8], self.description)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.cancel()

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"Subscription({self.description!r}, {state})"


class SubscriptionGroup:
    """Owns several subscriptions and releases all of them together."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def add(self, subscription: Subscription) -> Subscription:
        self._subscriptions.append(subscription)
        return subscription

    def cancel_all(self) -> int:
        """Cancel every handle, even if one of them raises.

        Returns the number of handles released.
        """
        released = 0
        errors: list[Exception] = []
        while self._subscriptions:
            sub = self._subscriptions.pop()
            try:
                sub.cancel()
                released += 1
            except Exception as exc:
                logger.exception("Failed to cancel %r", sub)
                errors.append(exc)
        if errors:
            raise errors[0]
        return released

    @property
    def active_count(self) -> int:
        return sum(1 for s in self._subscriptions if s.active)

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def __aenter__(self) -> "SubscriptionGroup":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.cancel_all()
