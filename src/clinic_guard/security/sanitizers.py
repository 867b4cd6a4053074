"""Input sanitization and redaction helpers."""

import re
from collections.abc import Mapping
from typing import Any

HTML_ENTITIES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}

EMAIL_PATTERN = re.compile(r"^[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}$")
PHONE_PATTERN = re.compile(r"^0\d{1,4}-?\d{1,4}-?\d{4}$")

SENSITIVE_KEYS = (
    "password",
    "passwordhash",
    "password_hash",
    "token",
    "secret",
    "apikey",
    "api_key",
)

GENERIC_ERROR_MESSAGE = "An error occurred"


def normalize_identifier(identifier: str) -> str:
    """Canonical form of a login identifier (email)."""
    return identifier.strip().lower()


def sanitize_html(value: str) -> str:
    return re.sub(r"[&<>\"'/]", lambda m: HTML_ENTITIES[m.group(0)], value)


def sanitize_email(email: str) -> str | None:
    normalized = normalize_identifier(email)
    return normalized if EMAIL_PATTERN.match(normalized) else None


def sanitize_phone(phone: str) -> str | None:
    cleaned = re.sub(r"[^\d-]", "", phone)
    return cleaned if PHONE_PATTERN.match(cleaned) else None


def sanitize_error_message(error: BaseException | str, environment: str = "production") -> str:
    """Client-facing error text. Details are only exposed in development."""
    if environment == "development":
        return str(error)
    return GENERIC_ERROR_MESSAGE


def redact_sensitive(details: Mapping[str, Any]) -> dict[str, Any]:
    """Replace values whose key looks like a credential with ``[REDACTED]``.

    Nested mappings are redacted recursively.
    """
    redacted: dict[str, Any] = {}
    for key, value in details.items():
        key_lower = key.lower()
        if any(marker in key_lower for marker in SENSITIVE_KEYS):
            redacted[key] = "[REDACTED]"
        elif isinstance(value, Mapping):
            redacted[key] = redact_sensitive(value)
        else:
            redacted[key] = value
    return redacted
