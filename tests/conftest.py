"""Pytest configuration and fixtures for clinic-guard tests."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from argon2 import PasswordHasher

from clinic_guard.audit import AuditLogWriter
from clinic_guard.auth import Authenticator, LoginThrottle, SessionManager
from clinic_guard.auth.passwords import PasswordService

try:
    from testcontainers.postgres import PostgresContainer

    HAS_TESTCONTAINERS = True
except ImportError:
    HAS_TESTCONTAINERS = False

TEST_SECRET = "test-session-secret-with-at-least-32-chars"


@pytest.fixture
def audit_conn():
    """Connection the audit writer acquires from its pool."""
    conn = AsyncMock()
    conn.fetchrow.return_value = {"id": 1, "created_at": datetime.now(UTC)}
    return conn


@pytest.fixture
def mock_pool(audit_conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=audit_conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=None)
    return pool


@pytest.fixture
def audit_writer(mock_pool):
    return AuditLogWriter(mock_pool)


@pytest.fixture
def audit_rows(audit_conn):
    """Decode the INSERT parameters the audit writer sent to its connection."""

    def _rows() -> list[dict]:
        rows = []
        for call in audit_conn.fetchrow.call_args_list:
            args = call.args
            if "INSERT INTO audit_logs" not in args[0]:
                continue
            rows.append(
                {
                    "action": args[1],
                    "entity_type": args[2],
                    "entity_id": args[3],
                    "user_id": args[4],
                    "tenant_id": args[5],
                    "ip_address": args[6],
                    "user_agent": args[7],
                    "old_data": json.loads(args[8]) if args[8] else None,
                    "new_data": json.loads(args[9]) if args[9] else None,
                }
            )
        return rows

    return _rows


@pytest.fixture
def fast_passwords():
    """Argon2id with minimal cost so tests stay quick."""
    return PasswordService(
        PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, hash_len=16, salt_len=8)
    )


@pytest.fixture
def session_manager():
    return SessionManager(TEST_SECRET)


@pytest.fixture
def throttle():
    return LoginThrottle()


@pytest.fixture
def lookup_conn():
    """Connection used for the credential lookup."""
    conn = AsyncMock()
    conn.fetchrow.return_value = None
    return conn


@pytest.fixture
def make_user_row(fast_passwords):
    def _factory(
        email: str = "doctor@example.com",
        password: str = "Correct-Horse-42!",
        user_id: str = "user-doctor",
        tenant_id: str = "tenant-a",
        role: str = "DOCTOR",
        password_hash: str | None = None,
    ) -> dict:
        return {
            "id": user_id,
            "tenant_id": tenant_id,
            "email": email,
            "name": "Dr. Test",
            "role": role,
            "password_hash": password_hash or fast_passwords.hash_password(password),
            "is_active": True,
        }

    return _factory


@pytest.fixture
def authenticator(session_manager, audit_writer, throttle, fast_passwords):
    return Authenticator(
        session_manager,
        audit_writer,
        throttle=throttle,
        passwords=fast_passwords,
    )


@pytest.fixture(scope="session")
def postgres_container():
    """Create a PostgreSQL container for integration tests."""
    if not HAS_TESTCONTAINERS:
        pytest.skip("testcontainers not installed")

    with PostgresContainer("postgres:15") as postgres:
        yield postgres


@pytest.fixture
async def test_db(postgres_container):
    """Connection to a database with the auth, audit and patient schema."""
    import asyncpg
    from importlib.resources import files

    from clinic_guard.audit import AuditSchemaManager
    from clinic_guard.auth import AuthSchemaManager

    url = postgres_container.get_connection_url()
    if url.startswith("postgresql+psycopg2://"):
        url = url.replace("postgresql+psycopg2://", "postgresql://")

    conn = await asyncpg.connect(url)

    await AuthSchemaManager().create_auth_schema(conn)
    await AuditSchemaManager().create_audit_schema(conn)
    await conn.execute(
        files("clinic_guard.db.schema").joinpath("patients_tables.sql").read_text()
    )

    yield conn

    await conn.close()


@pytest.fixture
async def test_pool(postgres_container, test_db):
    import asyncpg

    url = postgres_container.get_connection_url()
    if url.startswith("postgresql+psycopg2://"):
        url = url.replace("postgresql+psycopg2://", "postgresql://")

    pool = await asyncpg.create_pool(url, min_size=1, max_size=2)
    yield pool
    await pool.close()
