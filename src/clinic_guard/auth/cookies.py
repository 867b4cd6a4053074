"""Session transport cookie policy.

Production cookies use the ``__Host-`` prefix and the ``Secure`` flag; every
other environment uses plain names so local HTTP works.
"""

from dataclasses import dataclass

from ..security.csrf import csrf_cookie_name

PRODUCTION = "production"

SESSION_COOKIE = "session-token"
CALLBACK_URL_COOKIE = "callback-url"

SESSION_MAX_AGE_SECONDS = 24 * 60 * 60
SESSION_UPDATE_AGE_SECONDS = 5 * 60


def _cookie_name(base: str, environment: str) -> str:
    return f"__Host-{base}" if environment == PRODUCTION else base


@dataclass(frozen=True)
class CookieSettings:
    name: str
    http_only: bool = True
    same_site: str = "Lax"
    path: str = "/"
    secure: bool = False
    max_age: int | None = None

    def header(self, value: str) -> str:
        """Render a ``Set-Cookie`` header value."""
        parts = [f"{self.name}={value}", f"Path={self.path}", f"SameSite={self.same_site}"]
        if self.http_only:
            parts.append("HttpOnly")
        if self.secure:
            parts.append("Secure")
        if self.max_age is not None:
            parts.append(f"Max-Age={self.max_age}")
        return "; ".join(parts)

    def expired_header(self) -> str:
        return CookieSettings(
            name=self.name,
            http_only=self.http_only,
            same_site=self.same_site,
            path=self.path,
            secure=self.secure,
            max_age=0,
        ).header("")


def session_cookie(
    environment: str = PRODUCTION, max_age: int = SESSION_MAX_AGE_SECONDS
) -> CookieSettings:
    return CookieSettings(
        name=_cookie_name(SESSION_COOKIE, environment),
        secure=environment == PRODUCTION,
        max_age=max_age,
    )


def callback_url_cookie(environment: str = PRODUCTION) -> CookieSettings:
    return CookieSettings(
        name=_cookie_name(CALLBACK_URL_COOKIE, environment),
        secure=environment == PRODUCTION,
    )


def csrf_token_cookie(environment: str = PRODUCTION) -> CookieSettings:
    return CookieSettings(
        name=csrf_cookie_name(environment),
        secure=environment == PRODUCTION,
    )


def read_cookie(cookie_header: str | None, name: str) -> str | None:
    """Pull one value out of a ``Cookie`` request header."""
    if not cookie_header:
        return None
    for part in cookie_header.split(";"):
        key, sep, value = part.strip().partition("=")
        if sep and key == name:
            return value
    return None
