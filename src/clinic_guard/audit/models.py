"""HIPAA-compliant audit log models."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


class AuditAction(Enum):
    PHI_ACCESS = "PHI_ACCESS"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    EXPORT = "EXPORT"
    PRINT = "PRINT"


MODIFICATION_ACTIONS = frozenset({AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE})
AUTH_ACTIONS = frozenset({AuditAction.LOGIN, AuditAction.LOGOUT, AuditAction.LOGIN_FAILED})


def _load_json(value: Any) -> Any:
    # asyncpg hands jsonb back as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


def _dump(value: Any) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


@dataclass
class AuditEntry:
    action: AuditAction
    entity_type: str
    entity_id: str
    tenant_id: str
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    old_data: Any = None
    new_data: Any = None
    id: int | None = None
    created_at: datetime | None = None
    user_name: str | None = None
    user_email: str | None = None

    def to_db_row(self) -> dict[str, Any]:
        """Convert to dict suitable for database insertion."""
        return {
            "action": self.action.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "old_data": _dump(self.old_data),
            "new_data": _dump(self.new_data),
        }

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "old_data": self.old_data,
            "new_data": self.new_data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "user_name": self.user_name,
            "user_email": self.user_email,
        }

    @classmethod
    def from_db_row(cls, row: dict) -> "AuditEntry":
        return cls(
            id=row.get("id"),
            action=AuditAction(row["action"]),
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            tenant_id=row["tenant_id"],
            user_id=row.get("user_id"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            old_data=_load_json(row.get("old_data")),
            new_data=_load_json(row.get("new_data")),
            created_at=row.get("created_at"),
            user_name=row.get("user_name"),
            user_email=row.get("user_email"),
        )


@dataclass
class AuditWriteResult:
    """Outcome of a best-effort audit write.

    ``written`` is False when the database insert failed; ``fell_back`` says
    whether the entry reached the local fallback file instead.
    """

    written: bool
    entry: AuditEntry
    error: str | None = None
    fell_back: bool = False

    @property
    def ok(self) -> bool:
        return self.written


@dataclass
class AuditQuery:
    entity_type: str | None = None
    entity_id: str | None = None
    user_id: str | None = None
    action: AuditAction | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    def validate(self, max_limit: int = MAX_PAGE_SIZE) -> None:
        if self.limit <= 0 or self.limit > max_limit:
            raise ValueError(f"limit must be between 1 and {max_limit}, got {self.limit}")
        if self.offset < 0:
            raise ValueError(f"offset must not be negative, got {self.offset}")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")


@dataclass
class AuditPage:
    entries: list[AuditEntry] = field(default_factory=list)
    total: int = 0


@dataclass
class AuditConfig:
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    unattributed_tenant_id: str = "system"
    include_change_values: bool = False
    fallback_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditConfig":
        fallback_path = data.get("fallback_path")
        return cls(
            default_page_size=data.get("default_page_size", DEFAULT_PAGE_SIZE),
            max_page_size=data.get("max_page_size", MAX_PAGE_SIZE),
            unattributed_tenant_id=data.get("unattributed_tenant_id", "system"),
            include_change_values=data.get("include_change_values", False),
            fallback_path=Path(fallback_path) if fallback_path else None,
        )
