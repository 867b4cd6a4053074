"""Operational security logging with credential redaction."""

import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from .sanitizers import redact_sensitive

logger = logging.getLogger(__name__)


def emit_security_log(
    event: str,
    details: Mapping[str, Any],
    environment: str = "production",
    level: int = logging.WARNING,
) -> dict[str, Any]:
    """Write a security event to the operational log.

    Production emits one JSON object per line for log shippers; other
    environments get a readable line. Returns the redacted payload.
    """
    sanitized = redact_sensitive(details)

    if environment == "production":
        payload = {"timestamp": datetime.now(UTC).isoformat(), "event": event, **sanitized}
        logger.log(level, json.dumps(payload, default=str))
    else:
        logger.log(level, "[SECURITY] %s: %s", event, sanitized)

    return sanitized
