"""HIPAA-compliant session management for stateless signed tokens.

HIPAA Reference: 164.312(a)(2)(iii) - Automatic logoff after inactivity.

Sessions are never stored server-side. Expiry is evaluated lazily whenever a
token is inspected: an idle or over-age token evaluates to ``ExpiredSession``
carrying a copy with identity cleared.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

from .models import (
    Account,
    ExpiredSession,
    Session,
    SessionState,
    SessionToken,
    UserRole,
    ValidSession,
)

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

IDLE_TIMEOUT = "idle_timeout"
MAX_AGE = "max_age"


@dataclass
class SessionConfig:
    idle_timeout_minutes: int = 30
    max_age_hours: int = 24
    update_age_minutes: int = 5

    @property
    def idle_timeout(self) -> timedelta:
        return timedelta(minutes=self.idle_timeout_minutes)

    @property
    def max_age(self) -> timedelta:
        return timedelta(hours=self.max_age_hours)

    @property
    def update_age(self) -> timedelta:
        return timedelta(minutes=self.update_age_minutes)


def _timestamp(value: datetime) -> int:
    return int(value.timestamp())


def _from_timestamp(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, UTC)


class SessionManager:
    def __init__(self, secret: str, config: SessionConfig | None = None):
        if not secret:
            raise ValueError("Session signing secret must not be empty")
        self._secret = secret
        self._config = config or SessionConfig()

    @property
    def config(self) -> SessionConfig:
        return self._config

    def issue(self, account: Account, now: datetime | None = None) -> SessionToken:
        now = now or datetime.now(UTC)
        return SessionToken(
            user_id=account.user_id,
            role=account.role,
            tenant_id=account.tenant_id,
            issued_at=now,
            last_activity_at=now,
            email=account.email,
            name=account.name,
        )

    def encode(self, token: SessionToken) -> str:
        payload = {
            "iat": _timestamp(token.issued_at),
            "last_activity": _timestamp(token.last_activity_at),
            "exp": _timestamp(token.issued_at + self._config.max_age),
        }
        if token.user_id is not None:
            payload["sub"] = token.user_id
        if token.role is not None:
            payload["role"] = token.role.value
        if token.tenant_id is not None:
            payload["tenant_id"] = token.tenant_id
        if token.email is not None:
            payload["email"] = token.email
        if token.name is not None:
            payload["name"] = token.name
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def decode(self, encoded: str) -> SessionToken | None:
        """Verify signature and expiry. Returns None for any unusable token."""
        try:
            payload = jwt.decode(encoded, self._secret, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.debug("Session token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug("Invalid session token: %s", e)
            return None

        try:
            role = UserRole(payload["role"]) if payload.get("role") else None
            return SessionToken(
                user_id=payload.get("sub"),
                role=role,
                tenant_id=payload.get("tenant_id"),
                issued_at=_from_timestamp(payload["iat"]),
                last_activity_at=_from_timestamp(payload.get("last_activity", payload["iat"])),
                email=payload.get("email"),
                name=payload.get("name"),
            )
        except (KeyError, ValueError) as e:
            logger.debug("Malformed session token claims: %s", e)
            return None

    def evaluate(self, token: SessionToken, now: datetime | None = None) -> SessionState:
        now = now or datetime.now(UTC)
        if now - token.issued_at > self._config.max_age:
            return ExpiredSession(token=token.cleared(), reason=MAX_AGE)
        if now - token.last_activity_at > self._config.idle_timeout:
            return ExpiredSession(token=token.cleared(), reason=IDLE_TIMEOUT)
        return ValidSession(token=token)

    def refresh(
        self,
        token: SessionToken,
        now: datetime | None = None,
        touch: bool = False,
    ) -> SessionToken:
        """Apply expiry rules and, for an explicit touch, bump last activity."""
        now = now or datetime.now(UTC)
        state = self.evaluate(token, now)
        if isinstance(state, ExpiredSession):
            logger.info("Session expired (%s)", state.reason)
            return state.token
        if touch:
            return dataclasses.replace(token, last_activity_at=now)
        return token

    def should_reissue(self, token: SessionToken, now: datetime | None = None) -> bool:
        """True once the cookie is older than the update age and worth re-signing."""
        now = now or datetime.now(UTC)
        return now - token.last_activity_at >= self._config.update_age

    def to_request_session(self, token: SessionToken | None) -> Session | None:
        if token is None or not token.user_id or not token.tenant_id:
            return None
        return Session(
            user_id=token.user_id,
            role=token.role,
            tenant_id=token.tenant_id,
            email=token.email,
            name=token.name,
        )

    def session_from_cookie(
        self, encoded: str | None, now: datetime | None = None
    ) -> Session | None:
        """Decode, evaluate and project a cookie value onto a request session."""
        if not encoded:
            return None
        token = self.decode(encoded)
        if token is None:
            return None
        state = self.evaluate(token, now)
        if isinstance(state, ExpiredSession):
            return None
        return self.to_request_session(state.token)
