"""clinic-guard: operator CLI for the PHI audit and access-control layer."""

import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Annotated
from urllib.parse import urlparse, urlunparse

import asyncpg
import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigValidationError, GuardConfig, load_config
from .secrets import (
    DATABASE_URL_ENV_VAR,
    CredentialValidationError,
    SecretProviderError,
    get_database_password,
    get_session_secret,
    mask_password_in_url,
    validate_no_password_in_url,
)

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    if value:
        print(__version__)
        raise typer.Exit()


app = typer.Typer(
    name="clinic-guard", help="PHI audit trail and access-control tooling for clinic tenants"
)
console = Console()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version", callback=version_callback, is_eager=True, help="Show version and exit"
        ),
    ] = None,
) -> None:
    pass


def setup_logging(verbose: bool, quiet: bool) -> None:
    """Configure logging based on verbosity flags."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("clinic_guard").setLevel(level)


def _resolve_database_url(db_url: str | None) -> str | None:
    """Resolve the database URL from ``--db`` or the environment.

    The URL itself must not carry a password; one from the secrets provider
    is spliced in when available.

    Raises:
        CredentialValidationError: If a password is embedded in the URL.
    """
    url = db_url or os.environ.get(DATABASE_URL_ENV_VAR)
    if not url:
        console.print(
            f"[red]Error: No database URL. Pass --db or set {DATABASE_URL_ENV_VAR}.[/red]"
        )
        return None

    validate_no_password_in_url(url)

    password = get_database_password()
    if password:
        parsed = urlparse(url)
        user_part = parsed.username or "postgres"
        netloc = f"{user_part}:{password}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        url_with_password = urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
        logger.info("Using %s", mask_password_in_url(url_with_password))
        return url_with_password
    return url


def _database_url_or_exit(db_url: str | None) -> str:
    try:
        resolved = _resolve_database_url(db_url)
    except CredentialValidationError as e:
        console.print(f"[red]Security Error: {e}[/red]")
        raise typer.Exit(1) from None
    if resolved is None:
        raise typer.Exit(1)
    return resolved


def _load_guard_config(config_path: Path | None) -> GuardConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ConfigValidationError) as e:
        console.print(f"[red]Configuration Error: {e}[/red]")
        raise typer.Exit(1) from None


def _parse_datetime(value: str | None, option: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        console.print(f"[red]Error: Invalid {option}: {e}[/red]")
        raise typer.Exit(1) from None


@app.command("init-db")
def init_db(
    db_url: Annotated[str | None, typer.Option("--db", "-d", help="PostgreSQL URL")] = None,
    with_patients: bool = typer.Option(
        True, "--with-patients/--no-patients", help="Create the reference patients table"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Initialize database schema.

    Creates tenants and users, the append-only audit table with its
    immutability trigger, and (unless --no-patients) the patients table.
    """
    from importlib.resources import files

    from .audit import AuditSchemaManager
    from .auth import AuthSchemaManager

    setup_logging(verbose, quiet=False)
    resolved_db_url = _database_url_or_exit(db_url)

    async def run_init() -> bool:
        conn = await asyncpg.connect(resolved_db_url)
        try:
            await AuthSchemaManager().create_auth_schema(conn)
            audit_schema = AuditSchemaManager()
            await audit_schema.create_audit_schema(conn)
            if with_patients:
                sql = files("clinic_guard.db.schema").joinpath("patients_tables.sql").read_text()
                await conn.execute(sql)
            return await audit_schema.verify_immutability(conn)
        finally:
            await conn.close()

    try:
        immutable = asyncio.run(run_init())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    console.print("[green]✓[/green] Auth schema initialized")
    console.print("[green]✓[/green] HIPAA audit schema initialized")
    if with_patients:
        console.print("[green]✓[/green] Patients table initialized")
    if not immutable:
        console.print("[red]✗ Audit immutability trigger NOT active[/red]")
        raise typer.Exit(1)


audit_app = typer.Typer(help="HIPAA audit trail queries (45 CFR 164.312(b))")
app.add_typer(audit_app, name="audit")


def _entries_table(title: str, entries) -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Time")
    table.add_column("Action")
    table.add_column("Entity")
    table.add_column("User")
    table.add_column("IP")

    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.created_at.isoformat(timespec="seconds") if entry.created_at else "",
            entry.action.value,
            f"{entry.entity_type}/{entry.entity_id}",
            entry.user_name or entry.user_id or "-",
            entry.ip_address or "-",
        )
    return table


@audit_app.command("query")
def audit_query(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant ID")],
    entity_type: Annotated[str | None, typer.Option("--entity-type", help="Entity type")] = None,
    entity_id: Annotated[str | None, typer.Option("--entity-id", help="Entity ID")] = None,
    user_id: Annotated[str | None, typer.Option("--user-id", help="Acting user ID")] = None,
    action: Annotated[str | None, typer.Option("--action", help="Audit action")] = None,
    start_date: Annotated[
        str | None, typer.Option("--start-date", "-s", help="Start (ISO 8601)")
    ] = None,
    end_date: Annotated[str | None, typer.Option("--end-date", "-e", help="End (ISO 8601)")] = None,
    limit: Annotated[
        int | None, typer.Option("--limit", "-n", help="Page size (default from config)")
    ] = None,
    offset: int = typer.Option(0, "--offset", help="Entries to skip"),
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="TOML configuration file")
    ] = None,
    db_url: Annotated[str | None, typer.Option("--db", "-d", help="PostgreSQL URL")] = None,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Filter and page through one tenant's audit trail.

    Example:
        clinic-guard audit query --tenant clinic-a --entity-type Patient --limit 20
    """
    from .audit import AuditAction, AuditQuery

    service = _load_guard_config(config_path).query_service()

    try:
        parsed_action = AuditAction(action.upper()) if action else None
    except ValueError:
        valid = ", ".join(a.value for a in AuditAction)
        console.print(f"[red]Error: Unknown action '{action}'. Valid: {valid}[/red]")
        raise typer.Exit(1) from None

    filters = AuditQuery(
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        action=parsed_action,
        start_date=_parse_datetime(start_date, "start-date"),
        end_date=_parse_datetime(end_date, "end-date"),
        limit=limit if limit is not None else service.default_page_size,
        offset=offset,
    )
    try:
        filters.validate(service.max_page_size)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    resolved_db_url = _database_url_or_exit(db_url)

    async def run_query():
        conn = await asyncpg.connect(resolved_db_url)
        try:
            return await service.query(conn, tenant, filters)
        finally:
            await conn.close()

    try:
        page = asyncio.run(run_query())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if json_output:
        output = {
            "logs": [entry.to_json_dict() for entry in page.entries],
            "total": page.total,
        }
        console.print(json.dumps(output, indent=2, default=str))
        return

    console.print(_entries_table(f"Audit log for {tenant}", page.entries))
    console.print(f"Showing {len(page.entries)} of {page.total:,} entries")


@audit_app.command("trail")
def audit_trail(
    entity_type: Annotated[str, typer.Argument(help="Entity type, e.g. Patient")],
    entity_id: Annotated[str, typer.Argument(help="Entity ID")],
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant ID")],
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="TOML configuration file")
    ] = None,
    db_url: Annotated[str | None, typer.Option("--db", "-d", help="PostgreSQL URL")] = None,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show everything that happened to one record, newest first."""
    service = _load_guard_config(config_path).query_service()

    resolved_db_url = _database_url_or_exit(db_url)

    async def run_trail():
        conn = await asyncpg.connect(resolved_db_url)
        try:
            return await service.entity_trail(conn, tenant, entity_type, entity_id)
        finally:
            await conn.close()

    try:
        entries = asyncio.run(run_trail())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if json_output:
        console.print(json.dumps([e.to_json_dict() for e in entries], indent=2, default=str))
        return

    if not entries:
        console.print("No audit entries found")
        return
    console.print(_entries_table(f"{entity_type}/{entity_id}", entries))


@audit_app.command("stats")
def audit_stats(
    tenant: Annotated[str, typer.Option("--tenant", "-t", help="Tenant ID")],
    db_url: Annotated[str | None, typer.Option("--db", "-d", help="PostgreSQL URL")] = None,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show audit log statistics for one tenant."""
    from .audit import AuditSchemaManager

    resolved_db_url = _database_url_or_exit(db_url)

    async def run_stats():
        conn = await asyncpg.connect(resolved_db_url)
        try:
            schema_manager = AuditSchemaManager()
            stats = await schema_manager.get_audit_stats(conn, tenant)
            immutable = await schema_manager.verify_immutability(conn)
            return stats, immutable
        finally:
            await conn.close()

    try:
        stats, immutable = asyncio.run(run_stats())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if json_output:
        output = {"stats": stats, "immutability_trigger_active": immutable}
        console.print(json.dumps(output, indent=2, default=str))
        return

    console.print(f"[bold]Audit Log Statistics ({tenant})[/bold]")
    console.print(f"  Total Entries: {stats.get('total_entries', 0):,}")
    console.print(f"  Unique Users: {stats.get('unique_users', 0):,}")
    console.print(f"  Failed Logins: {stats.get('failed_login_count', 0):,}")
    console.print(f"  Access Denied: {stats.get('access_denied_count', 0):,}")
    console.print(f"  PHI Access: {stats.get('phi_access_count', 0):,}")
    if stats.get("oldest_entry"):
        console.print(f"  Oldest Entry: {stats['oldest_entry']}")
    if stats.get("newest_entry"):
        console.print(f"  Newest Entry: {stats['newest_entry']}")
    if immutable:
        console.print("[green]  ✓ Immutability trigger active[/green]")
    else:
        console.print("[red]  ✗ Immutability trigger NOT active[/red]")


auth_app = typer.Typer(help="Credential tooling (HIPAA 164.312(d))")
app.add_typer(auth_app, name="auth")


def _report_policy_errors(errors: list[str]) -> None:
    console.print("[red]Password does not meet policy:[/red]")
    for error in errors:
        console.print(f"  - {error}")


@auth_app.command("hash-password")
def auth_hash_password(
    password: Annotated[
        str,
        typer.Option(
            "--password",
            "-p",
            prompt=True,
            hide_input=True,
            confirmation_prompt=True,
            help="Password to hash",
        ),
    ],
    skip_policy: bool = typer.Option(
        False, "--skip-policy", help="Hash even if the password fails the strength policy"
    ),
) -> None:
    """Print an Argon2id hash suitable for users.password_hash."""
    from .auth import PasswordPolicy, PasswordService

    errors = PasswordPolicy().validate(password)
    if errors and not skip_policy:
        _report_policy_errors(errors)
        raise typer.Exit(1)

    print(PasswordService().hash_password(password))


@auth_app.command("check-password")
def auth_check_password(
    password: Annotated[
        str,
        typer.Option("--password", "-p", prompt=True, hide_input=True, help="Password to check"),
    ],
) -> None:
    """Check a password against the strength policy."""
    from .auth import PasswordPolicy

    errors = PasswordPolicy().validate(password)
    if errors:
        _report_policy_errors(errors)
        raise typer.Exit(1)
    console.print("[green]✓[/green] Password meets policy")


@auth_app.command("login")
def auth_login(
    email: Annotated[str, typer.Option("--email", "-e", prompt=True, help="Account email")],
    password: Annotated[
        str, typer.Option("--password", "-p", prompt=True, hide_input=True, help="Password")
    ],
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="TOML configuration file")
    ] = None,
    db_url: Annotated[str | None, typer.Option("--db", "-d", help="PostgreSQL URL")] = None,
    show_token: bool = typer.Option(False, "--show-token", help="Print the signed session token"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
) -> None:
    """Check credentials through the full login path (throttle, audit, session)."""
    from .audit import AuditLogWriter
    from .auth import Authenticator, LoginThrottle, SessionManager

    config = _load_guard_config(config_path)
    try:
        secret = get_session_secret()
    except SecretProviderError as e:
        console.print(f"[red]Security Error: {e}[/red]")
        raise typer.Exit(1) from None

    resolved_db_url = _database_url_or_exit(db_url)

    async def run_login():
        pool = await asyncpg.create_pool(resolved_db_url, min_size=1, max_size=2)
        try:
            authenticator = Authenticator(
                SessionManager(secret.get_value(), config.session),
                AuditLogWriter(pool, fallback_path=config.audit.fallback_path),
                throttle=LoginThrottle(config=config.throttle),
                unattributed_tenant_id=config.audit.unattributed_tenant_id,
            )
            async with pool.acquire() as conn:
                return await authenticator.authenticate(conn, email, password)
        finally:
            await pool.close()

    try:
        result = asyncio.run(run_login())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from None

    if not result.ok:
        console.print(f"[red]Login failed: {result.message}[/red]")
        raise typer.Exit(1)

    if not quiet:
        console.print(f"[green]✓[/green] Authenticated {result.account.email}")
        console.print(f"  Role: {result.account.role.value}")
        console.print(f"  Tenant: {result.account.tenant_id}")
        console.print(f"  Idle timeout: {config.session.idle_timeout_minutes} minutes")
    if show_token:
        print(result.token)


phi_app = typer.Typer(help="PHI entity classification")
app.add_typer(phi_app, name="phi")


@phi_app.command("list")
def phi_list() -> None:
    """List entity types classified as PHI."""
    from .phi import PHI_ENTITIES

    table = Table(title="PHI entity types")
    table.add_column("Entity type")
    for entity_type in sorted(PHI_ENTITIES):
        table.add_row(entity_type)
    console.print(table)


@phi_app.command("check")
def phi_check(
    entity_type: Annotated[str, typer.Argument(help="Entity type name, e.g. Patient")],
) -> None:
    """Exit 0 if ENTITY_TYPE is PHI, 1 otherwise."""
    from .phi import is_phi_entity

    if is_phi_entity(entity_type):
        console.print(f"{entity_type}: [yellow]PHI[/yellow] (access is audited)")
        return
    console.print(f"{entity_type}: not PHI")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
