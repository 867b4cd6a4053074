"""Double-submit CSRF token protection."""

import hmac
import secrets

CSRF_TOKEN_BYTES = 32
CSRF_HEADER_NAME = "x-csrf-token"
CSRF_MAX_AGE_SECONDS = 24 * 60 * 60

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
# RPC calls carry their own session checks.
EXEMPT_PATH_PREFIXES = ("/api/trpc",)


def csrf_cookie_name(environment: str) -> str:
    return "__Host-csrf-token" if environment == "production" else "csrf-token"


def generate_csrf_token() -> str:
    return secrets.token_hex(CSRF_TOKEN_BYTES)


def csrf_cookie_header(token: str, environment: str) -> str:
    parts = [
        f"{csrf_cookie_name(environment)}={token}",
        "Path=/",
        "SameSite=Strict",
        "HttpOnly",
    ]
    if environment == "production":
        parts.append("Secure")
    parts.append(f"Max-Age={CSRF_MAX_AGE_SECONDS}")
    return "; ".join(parts)


def validate_csrf_token(
    method: str,
    path: str,
    header_token: str | None,
    cookie_token: str | None,
) -> bool:
    if method.upper() in SAFE_METHODS:
        return True
    if any(path.startswith(prefix) for prefix in EXEMPT_PATH_PREFIXES):
        return True
    if not header_token or not cookie_token:
        return False
    return hmac.compare_digest(header_token.encode(), cookie_token.encode())
