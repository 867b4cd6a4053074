"""HIPAA-compliant authentication models.

HIPAA Reference: 164.312(d) - Person or Entity Authentication
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

GENERIC_LOGIN_FAILURE = "Invalid email or password"
LOCKED_LOGIN_FAILURE = "Invalid email or password. Please try again later."


class UserRole(Enum):
    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"
    NURSE = "NURSE"
    STAFF = "STAFF"
    PATIENT = "PATIENT"


class AuthStatus(Enum):
    SUCCESS = "success"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"


class FailureReason(Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"


@dataclass
class Account:
    user_id: str
    tenant_id: str
    email: str
    name: str
    role: UserRole
    password_hash: str | None = None
    is_active: bool = True

    @classmethod
    def from_db_row(cls, row: dict) -> "Account":
        return cls(
            user_id=row["id"],
            tenant_id=row["tenant_id"],
            email=row["email"],
            name=row.get("name") or "",
            role=UserRole(row["role"]),
            password_hash=row.get("password_hash"),
            is_active=row.get("is_active", True),
        )


@dataclass(frozen=True)
class SessionToken:
    """Claims carried by the signed, client-held session token.

    Identity fields are optional because an idle-expired token keeps its
    outer structure with identity cleared.
    """

    user_id: str | None
    role: UserRole | None
    tenant_id: str | None
    issued_at: datetime
    last_activity_at: datetime
    email: str | None = None
    name: str | None = None

    def cleared(self) -> "SessionToken":
        return SessionToken(
            user_id=None,
            role=None,
            tenant_id=None,
            issued_at=self.issued_at,
            last_activity_at=self.last_activity_at,
        )


@dataclass(frozen=True)
class Session:
    """Identity attached to an inbound request."""

    user_id: str | None
    role: UserRole | None
    tenant_id: str | None
    email: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class ValidSession:
    token: SessionToken


@dataclass(frozen=True)
class ExpiredSession:
    """A token past its idle timeout or absolute lifetime.

    ``token`` is the cleared form, so anything that reads it sees an
    unauthenticated session.
    """

    token: SessionToken
    reason: str


SessionState = ValidSession | ExpiredSession


@dataclass
class AuthResult:
    status: AuthStatus
    account: Account | None = None
    session: SessionToken | None = None
    token: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == AuthStatus.SUCCESS
