"""Custom exception hierarchy for the society engine."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping


class SocietyError(Exception):
    """Base exception for all engine errors."""


# --- Configuration ---
class ConfigError(SocietyError):
    """Invalid or missing configuration."""


# --- Caller-fixable input ---
class ValidationError(SocietyError):
    """One or more fields failed validation.

    Carries every violated field so forms can render all messages at once.
    """

    def __init__(self, errors: Mapping[str, str]):
        self.errors = dict(errors)
        detail = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(f"Validation failed: {detail}")

    @property
    def fields(self) -> list[str]:
        return list(self.errors)


# --- Policy ---
class Unauthorized(SocietyError):
    """The external authorization check denied the action."""

    def __init__(self, principal_id: str, action: str):
        self.principal_id = principal_id
        self.action = action
        super().__init__(f"{principal_id!r} is not authorized for {action}")


# --- Lifecycle ---
class IllegalTransition(SocietyError):
    """A state machine precondition was violated."""

    def __init__(self, resource_id: str, current: str, target: str):
        self.resource_id = resource_id
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal transition for {resource_id}: {current} -> {target}"
        )


class AlreadyExited(SocietyError):
    """Exit was already recorded for this gate log."""

    def __init__(self, log_id: str, vehicle_no: str, exit_time: datetime):
        self.log_id = log_id
        self.vehicle_no = vehicle_no
        self.exit_time = exit_time
        super().__init__(
            f"Vehicle {vehicle_no} (log {log_id}) already exited at "
            f"{exit_time.isoformat()}"
        )


# --- Store ---
class StoreError(SocietyError):
    """Document store error."""


class NotFound(StoreError):
    """No document with the given id."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class Conflict(StoreError):
    """Concurrent modification detected.

    Reserved for optimistic concurrency; writes are last-write-wins today.
    """


class StoreUnavailable(StoreError):
    """Transient infrastructure failure. Not retried internally."""


# --- Media ---
class UploadError(SocietyError):
    """A media upload failed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Upload to {path} failed: {reason}")
