"""Error taxonomy for the security layer.

Every check in cafe_guard reports failure by raising one of these. They are
detected synchronously at the point of check and never retried internally.
The FastAPI exception handler in ``cafe_guard.main`` renders them with
``cafe_guard.models.rejection.build_rejection_response``.

    AdmissionDenied  429  rate limit / block; retryable after ``retry_after``
    Unauthenticated  401  missing, malformed, invalid or expired token
    Unauthorized     403  role or outlet-scope denial
    NotFound         404  referenced outlet or key does not exist
    StateConflict    409  operation not allowed in the record's current state
"""

from __future__ import annotations

from typing import Optional


class SecurityError(Exception):
    """Base class. ``status_code`` is the HTTP status the rejection maps to."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AdmissionDenied(SecurityError):
    status_code = 429

    def __init__(self, message: str, retry_after: int, reason: str = "blocked") -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.reason = reason


class Unauthenticated(SecurityError):
    status_code = 401


class Unauthorized(SecurityError):
    status_code = 403


class NotFound(SecurityError):
    status_code = 404


class StateConflict(SecurityError):
    status_code = 409


def retry_after_of(exc: SecurityError) -> Optional[int]:
    """Return the retry hint carried by ``exc``, if any."""
    return getattr(exc, "retry_after", None)
