"""Credential lookup against the users table.

Login happens before a tenant is known, so this is the one lookup that is
not tenant-scoped. It only ever matches on the normalized email, compared
against the stored address trimmed and lower-cased.
"""

import logging

import asyncpg

from .models import Account

logger = logging.getLogger(__name__)


class AccountStore:
    async def find_active_by_email(self, conn: asyncpg.Connection, email: str) -> Account | None:
        row = await conn.fetchrow(
            """
            SELECT id, tenant_id, email, name, role, password_hash, is_active
            FROM users
            WHERE lower(btrim(email)) = $1 AND is_active = true
            """,
            email,
        )
        if not row:
            return None
        return Account.from_db_row(dict(row))

    async def update_password_hash(
        self, conn: asyncpg.Connection, user_id: str, password_hash: str
    ) -> None:
        await conn.execute(
            "UPDATE users SET password_hash = $2, updated_at = NOW() WHERE id = $1",
            user_id,
            password_hash,
        )
