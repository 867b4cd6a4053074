"""Best-effort HIPAA audit log writer.

Audit writes are awaited before a response is finalized, but a failed write
never aborts the operation being observed. Failures are logged to the
operational channel, optionally mirrored to a local JSONL file, and reported
back through ``AuditWriteResult``.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import asyncpg

from ..phi.classifier import is_phi_entity
from .context import RequestMeta, get_request_meta
from .models import AUTH_ACTIONS, MODIFICATION_ACTIONS, AuditAction, AuditEntry, AuditWriteResult

logger = logging.getLogger(__name__)

UNKNOWN_ENTITY_ID = "unknown"


class AuditLogWriter:
    def __init__(
        self,
        pool: asyncpg.Pool | None = None,
        fallback_path: Path | None = None,
    ):
        self._pool = pool
        self._fallback_path = fallback_path

    def set_pool(self, pool: asyncpg.Pool) -> None:
        """Set the database connection pool."""
        self._pool = pool

    async def record(self, entry: AuditEntry) -> AuditWriteResult:
        """Persist one entry. Never raises on storage failure."""
        try:
            await self._write_to_db(entry)
            return AuditWriteResult(written=True, entry=entry)
        except Exception as e:
            logger.error(
                "[AUDIT] Failed to write %s entry for %s/%s (tenant %s): %s",
                entry.action.value,
                entry.entity_type,
                entry.entity_id,
                entry.tenant_id,
                e,
            )
            fell_back = self._write_to_fallback(entry)
            return AuditWriteResult(written=False, entry=entry, error=str(e), fell_back=fell_back)

    async def _write_to_db(self, entry: AuditEntry) -> None:
        if not entry.tenant_id:
            raise ValueError("Audit entry requires a tenant id")
        if self._pool is None:
            raise RuntimeError("No database pool configured")

        row = entry.to_db_row()
        async with self._pool.acquire() as conn:
            result = await conn.fetchrow(
                """
                INSERT INTO audit_logs (
                    action, entity_type, entity_id, user_id, tenant_id,
                    ip_address, user_agent, old_data, new_data
                ) VALUES (
                    $1::audit_action, $2, $3, $4, $5,
                    $6, $7, $8::jsonb, $9::jsonb
                ) RETURNING id, created_at
                """,
                row["action"],
                row["entity_type"],
                row["entity_id"],
                row["user_id"],
                row["tenant_id"],
                row["ip_address"],
                row["user_agent"],
                row["old_data"],
                row["new_data"],
            )

        if result:
            entry.id = result["id"]
            entry.created_at = result["created_at"]

    def _write_to_fallback(self, entry: AuditEntry) -> bool:
        if self._fallback_path is None:
            return False
        try:
            with open(self._fallback_path, "a") as f:
                f.write(json.dumps(entry.to_json_dict(), default=str) + "\n")
            logger.warning("[AUDIT] Wrote entry to fallback file: %s", self._fallback_path)
            return True
        except OSError as e:
            logger.error("[AUDIT] Failed to write to fallback file: %s", e)
            return False

    def _build(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        tenant_id: str,
        user_id: str | None,
        request_meta: RequestMeta | None,
        old_data: Any = None,
        new_data: Any = None,
    ) -> AuditEntry:
        meta = request_meta or get_request_meta()
        return AuditEntry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            tenant_id=tenant_id,
            user_id=user_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            old_data=old_data,
            new_data=new_data,
        )

    async def log_access(
        self,
        entity_type: str,
        entity_id: str,
        user_id: str,
        tenant_id: str,
        request_meta: RequestMeta | None = None,
    ) -> AuditWriteResult | None:
        """Record a read of a PHI entity. Returns None for non-PHI types."""
        if not is_phi_entity(entity_type):
            return None
        entry = self._build(
            AuditAction.PHI_ACCESS, entity_type, entity_id, tenant_id, user_id, request_meta
        )
        return await self.record(entry)

    async def log_modification(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        user_id: str,
        tenant_id: str,
        old_data: Any = None,
        new_data: Any = None,
        request_meta: RequestMeta | None = None,
    ) -> AuditWriteResult | None:
        """Record a create, update or delete of a PHI entity.

        Callers pass only the changed fields plus identifying context, see
        ``clinic_guard.phi.changes``.
        """
        if action not in MODIFICATION_ACTIONS:
            raise ValueError(f"Not a modification action: {action}")
        if not is_phi_entity(entity_type):
            return None
        entry = self._build(
            action,
            entity_type,
            entity_id,
            tenant_id,
            user_id,
            request_meta,
            old_data=old_data,
            new_data=new_data,
        )
        return await self.record(entry)

    async def log_auth_event(
        self,
        action: AuditAction,
        tenant_id: str,
        user_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        request_meta: RequestMeta | None = None,
    ) -> AuditWriteResult:
        if action not in AUTH_ACTIONS:
            raise ValueError(f"Not an authentication action: {action}")
        entry = self._build(
            action,
            "User",
            user_id or UNKNOWN_ENTITY_ID,
            tenant_id,
            user_id,
            request_meta,
            new_data=dict(metadata) if metadata else None,
        )
        return await self.record(entry)

    async def log_security_event(
        self,
        entity_type: str,
        entity_id: str,
        tenant_id: str,
        user_id: str | None = None,
        reason: str | None = None,
        request_meta: RequestMeta | None = None,
    ) -> AuditWriteResult:
        entry = self._build(
            AuditAction.ACCESS_DENIED,
            entity_type,
            entity_id,
            tenant_id,
            user_id,
            request_meta,
            new_data={"reason": reason} if reason else None,
        )
        return await self.record(entry)

    async def log_export_event(
        self,
        entity_type: str,
        entity_ids: Iterable[str],
        user_id: str,
        tenant_id: str,
        export_format: str,
        request_meta: RequestMeta | None = None,
    ) -> AuditWriteResult:
        ids = list(entity_ids)
        entry = self._build(
            AuditAction.EXPORT,
            entity_type,
            ",".join(ids),
            tenant_id,
            user_id,
            request_meta,
            new_data={"export_format": export_format, "record_count": len(ids)},
        )
        return await self.record(entry)

    async def log_print_event(
        self,
        entity_type: str,
        entity_id: str,
        user_id: str,
        tenant_id: str,
        request_meta: RequestMeta | None = None,
    ) -> AuditWriteResult:
        entry = self._build(
            AuditAction.PRINT, entity_type, entity_id, tenant_id, user_id, request_meta
        )
        return await self.record(entry)
