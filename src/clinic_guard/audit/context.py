"""Request metadata carried into audit entries for forensic context."""

from collections.abc import Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str | None = None
    user_agent: str | None = None


_request_meta: ContextVar[RequestMeta | None] = ContextVar("request_meta", default=None)


def request_meta_from_headers(headers: Mapping[str, str]) -> RequestMeta:
    """Best-effort client address and user agent from request headers.

    The first ``X-Forwarded-For`` hop wins, then ``X-Real-IP``. Missing
    values stay ``None``.
    """
    lowered = {key.lower(): value for key, value in headers.items()}

    ip_address = None
    forwarded_for = lowered.get("x-forwarded-for")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip() or None
    if ip_address is None:
        real_ip = lowered.get("x-real-ip")
        ip_address = real_ip.strip() if real_ip and real_ip.strip() else None

    user_agent = lowered.get("user-agent") or None
    return RequestMeta(ip_address=ip_address, user_agent=user_agent)


def get_request_meta() -> RequestMeta:
    """Get current request metadata, or an empty one outside a request."""
    return _request_meta.get() or RequestMeta()


def set_request_meta(meta: RequestMeta | None) -> None:
    _request_meta.set(meta)


@contextmanager
def request_meta_scope(meta: RequestMeta):
    """Bind request metadata for the duration of one request.

    Restores the previous value on exit.
    """
    token = _request_meta.set(meta)
    try:
        yield meta
    finally:
        _request_meta.reset(token)
