"""Authentication schema management.

HIPAA Reference: 164.312(d) - Person or Entity Authentication
"""

import logging
from importlib.resources import files

import asyncpg

logger = logging.getLogger(__name__)


class AuthSchemaManager:
    async def create_auth_schema(self, conn: asyncpg.Connection) -> None:
        sql = files("clinic_guard.db.schema").joinpath("users_tables.sql").read_text()
        await conn.execute(sql)
        logger.info("Auth schema created/updated")

    async def schema_exists(self, conn: asyncpg.Connection) -> bool:
        result = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public' AND table_name = 'users'
            )
            """
        )
        return bool(result)
