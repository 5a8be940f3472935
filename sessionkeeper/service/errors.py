from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for operational outcomes mapped to transport responses.

    Each class carries an HTTP status_code and a stable error_code:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - capacity_exceeded (409)
    - rate_limited (429)
    - server_error (500)
    - service_unavailable (503)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Credential missing or rejected (401).

    ``reason`` is kept for logs only; the HTTP boundary answers every
    subclass with the same body.
    """

    status_code = 401
    error_code = "unauthorized"
    reason: str = "invalid"


class TokenMissingError(AuthenticationError):
    reason = "missing"


class TokenInvalidError(AuthenticationError):
    reason = "invalid"


class TokenKindMismatchError(TokenInvalidError):
    """A validly signed token was presented where the other kind is expected."""
    reason = "kind_mismatch"


class TokenExpiredError(AuthenticationError):
    reason = "expired"


class TokenRevokedError(AuthenticationError):
    reason = "revoked"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class CapacityExceededError(ServiceError):
    """User already holds the maximum number of sessions (409)."""
    status_code = 409
    error_code = "capacity_exceeded"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(
        self,
        retry_after: int,
        *,
        limit: Optional[int] = None,
        remaining: int = 0,
        message: str = "rate limit exceeded",
    ) -> None:
        super().__init__(message, detail={"retry_after": retry_after})
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class InfrastructureError(ServerError):
    """The shared key-value store failed or timed out (503)."""
    status_code = 503
    error_code = "service_unavailable"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "TokenMissingError",
    "TokenInvalidError",
    "TokenKindMismatchError",
    "TokenExpiredError",
    "TokenRevokedError",
    "ForbiddenError",
    "NotFoundError",
    "CapacityExceededError",
    "RateLimitedError",
    "ServerError",
    "InfrastructureError",
]
