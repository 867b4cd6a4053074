"""Error taxonomy shared by the authorization gate and domain handlers.

Codes follow tRPC naming so transports can map them to HTTP statuses.
"""

import logging

from .security.sanitizers import sanitize_error_message

logger = logging.getLogger(__name__)


class GuardError(Exception):
    code = "INTERNAL_SERVER_ERROR"
    http_status = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(GuardError):
    """No valid session. Never says whether it expired or never existed."""

    code = "UNAUTHORIZED"
    http_status = 401
    default_message = "Authentication required"


class InvariantViolationError(GuardError):
    """An authenticated session is missing data it must always carry."""

    code = "INTERNAL_SERVER_ERROR"
    http_status = 500
    default_message = "Internal server error"


class ForbiddenError(GuardError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Access denied"


class NotFoundError(GuardError):
    """Absent, or owned by another tenant. The two are indistinguishable."""

    code = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"


class ConflictError(GuardError):
    code = "CONFLICT"
    http_status = 409
    default_message = "Conflict"


class RateLimitedError(GuardError):
    code = "TOO_MANY_REQUESTS"
    http_status = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None):
        super().__init__(message)
        self.headers = headers or {}


def error_response(exc: BaseException, environment: str = "production") -> tuple[int, dict]:
    """Map an exception to an HTTP status and a client-safe body."""
    if isinstance(exc, GuardError):
        # Internal invariant details stay server-side.
        if isinstance(exc, InvariantViolationError):
            logger.error("Invariant violation: %s", exc.message)
            return exc.http_status, {
                "code": exc.code,
                "message": sanitize_error_message(exc, environment),
            }
        return exc.http_status, {"code": exc.code, "message": exc.message}

    logger.error("Unhandled error while serving request", exc_info=exc)
    return 500, {
        "code": "INTERNAL_SERVER_ERROR",
        "message": sanitize_error_message(exc, environment),
    }
