"""Error taxonomy raised by the services and rendered by the app."""

from __future__ import annotations

from typing import Any


class TrackerError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500
    default_code = "ERROR"

    def __init__(self, message: str, code: str | None = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.extra}


class ValidationError(TrackerError):
    """Missing or malformed input. Raised before any write happens."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(TrackerError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(TrackerError):
    """Duplicate assignment or a transition the current state does not allow."""

    status_code = 409
    default_code = "CONFLICT"


class AuthorizationError(TrackerError):
    status_code = 403
    default_code = "FORBIDDEN"


class PersistenceError(TrackerError):
    """A transaction failed and was rolled back.

    The underlying database error is chained as ``__cause__`` for logs; the
    message itself is safe to show to callers.
    """

    status_code = 500
    default_code = "PERSISTENCE_ERROR"
