"""Tenant-scoped audit trail queries.

Callers are expected to have passed the admin-only gate already; this module
does not re-check roles, but it never runs a query without a tenant predicate.
"""

import logging
from typing import Any

import asyncpg

from .models import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    AuditConfig,
    AuditEntry,
    AuditPage,
    AuditQuery,
)

logger = logging.getLogger(__name__)

_SELECT_COLUMNS = """
    a.id, a.action, a.entity_type, a.entity_id, a.user_id, a.tenant_id,
    a.ip_address, a.user_agent, a.old_data, a.new_data, a.created_at,
    u.name AS user_name, u.email AS user_email
"""


def build_where(tenant_id: str, filters: AuditQuery) -> tuple[str, list[Any]]:
    """AND-combine the provided filters behind a mandatory tenant predicate."""
    if not tenant_id:
        raise ValueError("Audit queries require a tenant id")

    clauses = ["a.tenant_id = $1"]
    params: list[Any] = [tenant_id]

    def add(clause: str, value: Any) -> None:
        params.append(value)
        clauses.append(clause.format(n=len(params)))

    if filters.entity_type:
        add("a.entity_type = ${n}", filters.entity_type)
    if filters.entity_id:
        add("a.entity_id = ${n}", filters.entity_id)
    if filters.user_id:
        add("a.user_id = ${n}", filters.user_id)
    if filters.action:
        add("a.action = ${n}::audit_action", filters.action.value)
    if filters.start_date:
        add("a.created_at >= ${n}", filters.start_date)
    if filters.end_date:
        add("a.created_at <= ${n}", filters.end_date)

    return " AND ".join(clauses), params


class AuditQueryService:
    def __init__(
        self, max_page_size: int = MAX_PAGE_SIZE, default_page_size: int = DEFAULT_PAGE_SIZE
    ):
        if default_page_size > max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        self._max_page_size = max_page_size
        self._default_page_size = default_page_size

    @classmethod
    def from_config(cls, config: AuditConfig) -> "AuditQueryService":
        return cls(config.max_page_size, config.default_page_size)

    @property
    def max_page_size(self) -> int:
        return self._max_page_size

    @property
    def default_page_size(self) -> int:
        return self._default_page_size

    async def query(
        self,
        conn: asyncpg.Connection,
        tenant_id: str,
        filters: AuditQuery | None = None,
    ) -> AuditPage:
        """One page of matching entries, newest first, plus the total count."""
        filters = filters or AuditQuery(limit=self._default_page_size)
        filters.validate(self._max_page_size)

        where, params = build_where(tenant_id, filters)
        limit_param = len(params) + 1
        offset_param = len(params) + 2

        rows = await conn.fetch(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM audit_logs a
            LEFT JOIN users u ON u.id = a.user_id
            WHERE {where}
            ORDER BY a.created_at DESC, a.id DESC
            LIMIT ${limit_param} OFFSET ${offset_param}
            """,
            *params,
            filters.limit,
            filters.offset,
        )
        total = await conn.fetchval(
            f"SELECT COUNT(*) FROM audit_logs a WHERE {where}",
            *params,
        )

        return AuditPage(
            entries=[AuditEntry.from_db_row(dict(row)) for row in rows],
            total=total or 0,
        )

    async def entity_trail(
        self,
        conn: asyncpg.Connection,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEntry]:
        """Complete history of one entity within a tenant, newest first."""
        where, params = build_where(
            tenant_id, AuditQuery(entity_type=entity_type, entity_id=entity_id)
        )
        rows = await conn.fetch(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM audit_logs a
            LEFT JOIN users u ON u.id = a.user_id
            WHERE {where}
            ORDER BY a.created_at DESC, a.id DESC
            """,
            *params,
        )
        return [AuditEntry.from_db_row(dict(row)) for row in rows]
