"""Gateway error taxonomy.

Every rejection the gateway can produce is a ``GatewayError`` subclass
carrying its HTTP status, a machine-readable ``code`` and optional
remediation data. ``main.py`` renders them all with one handler using
the ``{"error": {...}}`` envelope.
"""

import math
from datetime import datetime
from typing import Any


class GatewayError(Exception):
    """Base class for errors rendered to API clients."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        extra: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message or self.message
        self.extra = extra or {}
        self.headers = headers or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "request_id": request_id,
                **self.extra,
            }
        }


class AuthenticationError(GatewayError):
    """Missing, malformed, unknown or revoked API key."""

    status_code = 401
    code = "invalid_api_key"
    message = "Invalid or missing API key"


class UnauthorizedError(GatewayError):
    """Missing or invalid developer bearer token."""

    status_code = 401
    code = "unauthorized"
    message = "Authentication required"


class AuthorizationError(GatewayError):
    status_code = 403
    code = "forbidden"
    message = "You do not have access to this resource"


class NotFound(GatewayError):
    status_code = 404
    code = "not_found"
    message = "Resource not found"


class KeyLimitExceeded(GatewayError):
    status_code = 409
    code = "key_limit_exceeded"
    message = "Maximum number of active API keys reached"

    def __init__(self, limit: int):
        super().__init__(
            f"A developer may hold at most {limit} active API keys",
            extra={"limit": limit},
        )


class QuotaExceeded(GatewayError):
    """Monthly quota used up; resolves at ``reset_at``."""

    status_code = 429
    code = "quota_exceeded"
    message = "Monthly request quota exceeded"

    def __init__(self, limit: int, reset_at: datetime):
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(
            extra={"limit": limit, "reset_at": reset_at.isoformat()},
            headers={
                "X-Quota-Limit": str(limit),
                "X-Quota-Remaining": "0",
                "X-Quota-Reset": reset_at.isoformat(),
            },
        )


class RateLimited(GatewayError):
    """Token bucket empty; resolves after ``retry_after_seconds``."""

    status_code = 429
    code = "rate_limited"
    message = "Rate limit exceeded"

    def __init__(self, retry_after_seconds: float):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            extra={"retry_after_seconds": round(retry_after_seconds, 3)},
            headers={"Retry-After": str(max(1, math.ceil(retry_after_seconds)))},
        )


class BackendError(GatewayError):
    """The moderation backend could not produce a response."""

    status_code = 502
    code = "bad_gateway"
    message = "The moderation backend returned an invalid response"


class BackendUnavailable(BackendError):
    status_code = 503
    code = "backend_unavailable"
    message = "The moderation backend is unavailable"


class BackendTimeout(BackendError):
    status_code = 504
    code = "backend_timeout"
    message = "The moderation backend did not respond in time"


class StoreUnavailable(GatewayError):
    """The shared store could not be reached; requests fail closed."""

    status_code = 503
    code = "service_unavailable"
    message = "Service temporarily unavailable"
