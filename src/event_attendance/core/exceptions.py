from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """Base exception for business rule violations."""

    code = "domain_error"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class ValidationError(DomainError):
    """Raised when input data is invalid (bad time range, missing scope, ...)."""

    code = "validation_error"


class NotFoundError(DomainError):
    """Raised when an event or attendance record does not exist."""

    code = "not_found"

    def __init__(self, message: str, *, resource_id: Optional[int] = None):
        super().__init__(message)
        self.resource_id = resource_id

    def to_dict(self) -> dict:
        return {**super().to_dict(), "resource_id": self.resource_id}


class AuthorizationError(DomainError):
    """Raised when an actor lacks permission for an action (Forbidden)."""

    code = "forbidden"


class InvalidTransitionError(DomainError):
    """Raised when the target status is not reachable from the current one."""

    code = "invalid_transition"

    def __init__(self, current, target, allowed=()):
        self.current = current
        self.target = target
        self.allowed = tuple(allowed)
        allowed_s = ", ".join(s.value for s in self.allowed) or "none"
        super().__init__(
            f"Invalid status transition from {current.value} to {target.value}. Allowed transitions: {allowed_s}"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "current": self.current.value,
            "target": self.target.value,
            "allowed": [s.value for s in self.allowed],
        }


class ConflictError(DomainError):
    """Raised on overlapping events, duplicate registrations and lost updates."""

    code = "conflict"

    def __init__(self, message: str, *, blocking_id: Optional[int] = None):
        super().__init__(message)
        self.blocking_id = blocking_id

    def to_dict(self) -> dict:
        return {**super().to_dict(), "blocking_id": self.blocking_id}


class StaleStateError(ConflictError):
    """The event changed between read and write; callers may retry."""

    code = "stale_state"

    def __init__(self, event_id: int, expected, target):
        self.expected = expected
        self.target = target
        super().__init__(
            f"Event {event_id} is no longer {expected.value}; cannot move to {target.value}",
            blocking_id=event_id,
        )


class CapacityExceededError(DomainError):
    code = "capacity_exceeded"

    def __init__(self, event_id: int, capacity: int):
        self.event_id = event_id
        self.capacity = capacity
        super().__init__(f"Event {event_id} is at full capacity ({capacity})")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "capacity": self.capacity}


class BusinessRuleViolation(DomainError):
    """Delete blocked by attendance, mark outside the allowed window, ..."""

    code = "business_rule_violation"
