"""Request-level hardening: sanitizers, rate limiting, CSRF and response headers."""

from .csrf import (
    csrf_cookie_header,
    csrf_cookie_name,
    generate_csrf_token,
    validate_csrf_token,
)
from .events import emit_security_log
from .headers import security_headers
from .rate_limit import (
    RATE_LIMIT_CONFIGS,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    client_identifier,
    rate_limit_headers,
    select_rate_limit,
)
from .sanitizers import (
    normalize_identifier,
    redact_sensitive,
    sanitize_email,
    sanitize_error_message,
    sanitize_html,
    sanitize_phone,
)

__all__ = [
    "RATE_LIMIT_CONFIGS",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimiter",
    "client_identifier",
    "csrf_cookie_header",
    "csrf_cookie_name",
    "emit_security_log",
    "generate_csrf_token",
    "normalize_identifier",
    "rate_limit_headers",
    "redact_sensitive",
    "sanitize_email",
    "sanitize_error_message",
    "sanitize_html",
    "sanitize_phone",
    "security_headers",
    "select_rate_limit",
    "validate_csrf_token",
]
