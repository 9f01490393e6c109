"""Typed errors raised by the ride services and mapped to HTTP responses in main."""

from typing import Any


class RideServiceError(Exception):
    """Base exception for all coordinator errors."""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(RideServiceError):
    """Malformed or missing input. Raised before any write."""

    status_code = 422


class ConflictError(RideServiceError):
    """Lost a race for an exclusive claim (e.g. ride already accepted)."""

    status_code = 409


class IllegalTransitionError(RideServiceError):
    """Requested status is not reachable from the current one."""

    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move ride from '{current}' to '{requested}'",
            {"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class NotFoundError(RideServiceError):
    """Entity does not exist or is not visible to the actor."""

    status_code = 404


class PersistenceError(RideServiceError):
    """Backing store unavailable. Callers may retry with backoff."""

    status_code = 503
