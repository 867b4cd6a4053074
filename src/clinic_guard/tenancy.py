"""Tenant-scoped data access.

The storage layer does not enforce tenant boundaries, so every statement
issued here carries a ``tenant_id = $1`` predicate. A row owned by another
tenant is indistinguishable from a missing row: both raise ``NotFoundError``.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

import asyncpg

from .errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

TENANT_COLUMN = "tenant_id"


def quote_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


class TenantScopedRepository:
    def __init__(
        self,
        table: str,
        entity_type: str,
        id_column: str = "id",
        order_by: str = "updated_at",
        search_columns: tuple[str, ...] = (),
    ):
        self.table = table
        self.entity_type = entity_type
        self._table = quote_identifier(table)
        self.id_column = id_column
        self._id = quote_identifier(id_column)
        self._order_by = quote_identifier(order_by)
        self._search_columns = tuple(quote_identifier(c) for c in search_columns)

    def _where(
        self, tenant_id: str, filters: Mapping[str, Any] | None
    ) -> tuple[str, list[Any]]:
        if not tenant_id:
            raise ValueError("tenant_id is required for tenant-scoped access")
        params: list[Any] = [tenant_id]
        clauses = [f"{quote_identifier(TENANT_COLUMN)} = $1"]
        for column, value in (filters or {}).items():
            # Callers cannot widen or swap the tenant through filters.
            if column == TENANT_COLUMN:
                continue
            params.append(value)
            clauses.append(f"{quote_identifier(column)} = ${len(params)}")
        return " AND ".join(clauses), params

    async def find_one(
        self,
        conn: asyncpg.Connection,
        tenant_id: str,
        filters: Mapping[str, Any],
    ) -> dict | None:
        where, params = self._where(tenant_id, filters)
        row = await conn.fetchrow(f"SELECT * FROM {self._table} WHERE {where} LIMIT 1", *params)
        return dict(row) if row else None

    async def get(self, conn: asyncpg.Connection, tenant_id: str, entity_id: str) -> dict:
        row = await self.find_one(conn, tenant_id, {self.id_column: entity_id})
        if row is None:
            raise NotFoundError(f"{self.entity_type} not found")
        return row

    async def get_many(
        self, conn: asyncpg.Connection, tenant_id: str, entity_ids: list[str]
    ) -> list[dict]:
        """Rows for the given ids that belong to the tenant. Foreign ids are dropped."""
        if not tenant_id:
            raise ValueError("tenant_id is required for tenant-scoped access")
        rows = await conn.fetch(
            f"SELECT * FROM {self._table} "
            f"WHERE {quote_identifier(TENANT_COLUMN)} = $1 AND {self._id} = ANY($2::text[])",
            tenant_id,
            list(entity_ids),
        )
        return [dict(row) for row in rows]

    async def list(
        self,
        conn: asyncpg.Connection,
        tenant_id: str,
        filters: Mapping[str, Any] | None = None,
        limit: int = 20,
        offset: int = 0,
        search: str | None = None,
    ) -> tuple[list[dict], int]:
        """One page of rows, most recently updated first, plus the total count.

        ``search`` is a case-insensitive substring match across the
        repository's ``search_columns``.
        """
        where, params = self._where(tenant_id, filters)
        if search and self._search_columns:
            params.append(f"%{search}%")
            matches = " OR ".join(f"{col} ILIKE ${len(params)}" for col in self._search_columns)
            where = f"{where} AND ({matches})"
        n = len(params)
        rows = await conn.fetch(
            f"""
            SELECT * FROM {self._table}
            WHERE {where}
            ORDER BY {self._order_by} DESC
            LIMIT ${n + 1} OFFSET ${n + 2}
            """,
            *params,
            limit,
            offset,
        )
        total = await conn.fetchval(f"SELECT COUNT(*) FROM {self._table} WHERE {where}", *params)
        return [dict(row) for row in rows], total or 0

    async def create(
        self,
        conn: asyncpg.Connection,
        tenant_id: str,
        values: Mapping[str, Any],
    ) -> dict:
        if not tenant_id:
            raise ValueError("tenant_id is required for tenant-scoped access")
        data = {k: v for k, v in values.items() if k != TENANT_COLUMN}
        data[TENANT_COLUMN] = tenant_id

        columns = ", ".join(quote_identifier(k) for k in data)
        placeholders = ", ".join(f"${i}" for i in range(1, len(data) + 1))
        try:
            row = await conn.fetchrow(
                f"INSERT INTO {self._table} ({columns}) VALUES ({placeholders}) RETURNING *",
                *data.values(),
            )
        except asyncpg.UniqueViolationError as e:
            logger.info("Duplicate %s rejected for tenant %s", self.entity_type, tenant_id)
            raise ConflictError(f"{self.entity_type} already exists") from e
        return dict(row)

    async def update(
        self,
        conn: asyncpg.Connection,
        tenant_id: str,
        entity_id: str,
        values: Mapping[str, Any],
    ) -> dict:
        data = {k: v for k, v in values.items() if k != TENANT_COLUMN}
        if not data:
            return await self.get(conn, tenant_id, entity_id)

        assignments = ", ".join(
            f"{quote_identifier(k)} = ${i}" for i, k in enumerate(data, start=3)
        )
        row = await conn.fetchrow(
            f"""
            UPDATE {self._table} SET {assignments}
            WHERE {self._id} = $1 AND {quote_identifier(TENANT_COLUMN)} = $2
            RETURNING *
            """,
            entity_id,
            tenant_id,
            *data.values(),
        )
        if row is None:
            raise NotFoundError(f"{self.entity_type} not found")
        return dict(row)

    async def delete(self, conn: asyncpg.Connection, tenant_id: str, entity_id: str) -> None:
        result = await conn.execute(
            f"DELETE FROM {self._table} WHERE {self._id} = $1 "
            f"AND {quote_identifier(TENANT_COLUMN)} = $2",
            entity_id,
            tenant_id,
        )
        if result == "DELETE 0":
            raise NotFoundError(f"{self.entity_type} not found")
