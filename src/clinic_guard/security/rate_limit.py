"""Fixed-window request rate limiting on top of ``limits``.

The default ``memory://`` storage is per process and expires windows on its
own. Point ``storage_uri`` at ``redis://...`` to share counters between
instances (requires: pip install clinic-guard[redis]).
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from .sanitizers import normalize_identifier

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_URI = "memory://"
NAMESPACE = "clinic_guard"

AUTH_PATHS = ("/api/auth/callback", "/api/auth/signin", "/login")
UPLOAD_PATHS = ("/api/upload",)


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: int
    max_requests: int
    key_prefix: str = "default"


RATE_LIMIT_CONFIGS: dict[str, RateLimitConfig] = {
    "auth": RateLimitConfig(window_seconds=15 * 60, max_requests=5, key_prefix="auth"),
    "api": RateLimitConfig(window_seconds=60, max_requests=100, key_prefix="api"),
    "upload": RateLimitConfig(window_seconds=60, max_requests=10, key_prefix="upload"),
    "sensitive": RateLimitConfig(window_seconds=60, max_requests=10, key_prefix="sensitive"),
}


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


def client_identifier(headers: Mapping[str, str]) -> str:
    """Identify the calling client from proxy headers."""
    lowered = {k.lower(): v for k, v in headers.items()}

    forwarded_for = lowered.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = lowered.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return "unknown"


def select_rate_limit(
    path: str, configs: Mapping[str, RateLimitConfig] | None = None
) -> RateLimitConfig:
    configs = configs or RATE_LIMIT_CONFIGS
    if any(path.startswith(p) for p in AUTH_PATHS):
        return configs["auth"]
    if any(path.startswith(p) for p in UPLOAD_PATHS):
        return configs["upload"]
    return configs["api"]


def rate_limit_headers(result: RateLimitResult, now: datetime | None = None) -> dict[str, str]:
    now = now or datetime.now(UTC)
    retry_after = max(0, math.ceil((result.reset_at - now).total_seconds()))
    return {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at.timestamp())),
        "Retry-After": str(retry_after),
    }


@lru_cache(maxsize=64)
def limit_item(config: RateLimitConfig) -> RateLimitItem:
    return RateLimitItemPerSecond(config.max_requests, config.window_seconds, namespace=NAMESPACE)


class RateLimiter:
    """Counts requests per ``(prefix, client)`` in fixed windows."""

    def __init__(
        self,
        configs: Mapping[str, RateLimitConfig] | None = None,
        storage_uri: str = DEFAULT_STORAGE_URI,
    ):
        self._configs = dict(configs or RATE_LIMIT_CONFIGS)
        self._storage = storage_from_string(storage_uri)
        self._limiter = FixedWindowRateLimiter(self._storage)

    @property
    def configs(self) -> dict[str, RateLimitConfig]:
        return self._configs

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one request and report whether it fits the window."""
        item = limit_item(config)
        key = normalize_identifier(identifier)

        allowed = self._limiter.hit(item, config.key_prefix, key)
        stats = self._limiter.get_window_stats(item, config.key_prefix, key)
        if not allowed:
            logger.info("Rate limit exceeded for %s", config.key_prefix)

        return RateLimitResult(
            allowed=allowed,
            remaining=stats.remaining if allowed else 0,
            reset_at=datetime.fromtimestamp(stats.reset_time, UTC),
        )

    def check_request(self, path: str, headers: Mapping[str, str]) -> RateLimitResult:
        return self.check(client_identifier(headers), select_rate_limit(path, self._configs))

    def enforce(self, path: str, headers: Mapping[str, str]) -> RateLimitResult:
        """Like ``check_request`` but raises once the window is exhausted.

        Raises:
            RateLimitedError: Carrying the ``Retry-After`` headers for the response.
        """
        from ..errors import RateLimitedError

        result = self.check_request(path, headers)
        if not result.allowed:
            raise RateLimitedError(headers=rate_limit_headers(result))
        return result

    def reset(self) -> None:
        """Drop every counter in the backing storage."""
        self._storage.reset()
