"""HIPAA-compliant audit schema management."""

import logging
from importlib.resources import files

import asyncpg

logger = logging.getLogger(__name__)


class AuditSchemaManager:
    """Manages the append-only audit table.

    The DDL installs an immutability trigger so UPDATE and DELETE are
    rejected by the database itself; retention is an operational concern.
    """

    async def create_audit_schema(self, conn: asyncpg.Connection) -> None:
        sql = files("clinic_guard.db.schema").joinpath("audit_tables.sql").read_text()
        await conn.execute(sql)
        logger.info("Audit schema created/updated")

    async def schema_exists(self, conn: asyncpg.Connection) -> bool:
        result = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public' AND table_name = 'audit_logs'
            )
            """
        )
        return bool(result)

    async def verify_immutability(self, conn: asyncpg.Connection) -> bool:
        """Verify that the audit immutability trigger is in place."""
        result = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT 1 FROM pg_trigger
                WHERE tgname = 'audit_immutability'
                  AND tgrelid = 'audit_logs'::regclass
            )
            """
        )
        return bool(result)

    async def get_audit_stats(self, conn: asyncpg.Connection, tenant_id: str) -> dict:
        """Get audit log statistics for one tenant."""
        stats = await conn.fetchrow(
            """
            SELECT
                COUNT(*) as total_entries,
                COUNT(DISTINCT user_id) as unique_users,
                MIN(created_at) as oldest_entry,
                MAX(created_at) as newest_entry,
                COUNT(*) FILTER (WHERE action = 'LOGIN_FAILED') as failed_login_count,
                COUNT(*) FILTER (WHERE action = 'ACCESS_DENIED') as access_denied_count,
                COUNT(*) FILTER (WHERE action = 'PHI_ACCESS') as phi_access_count
            FROM audit_logs
            WHERE tenant_id = $1
            """,
            tenant_id,
        )
        return dict(stats) if stats else {}
