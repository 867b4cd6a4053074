"""Authorization gate for protected operations.

HIPAA Reference: 164.312(a)(1) - Access Controls
Default deny principle: each guard fails closed.

Guards run in order (session, tenant, role) and stop at the first
rejection. A handler wrapped by a protected procedure always receives an
``AuthorizedContext`` with a user id and a tenant id, so every query it
issues can filter by tenant unconditionally. Guards never write audit
entries; handlers do, with the identity the gate attached.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, TypeVar

import asyncpg

from ..audit.context import RequestMeta
from ..audit.logger import AuditLogWriter
from ..audit.models import AuditConfig
from ..errors import ForbiddenError, InvariantViolationError, UnauthenticatedError
from .models import Session, UserRole

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class RequestContext:
    """What the transport hands the gate for one request."""

    conn: asyncpg.Connection
    audit: AuditLogWriter
    session: Session | None = None
    request_meta: RequestMeta = field(default_factory=RequestMeta)
    audit_config: AuditConfig = field(default_factory=AuditConfig)


@dataclass
class AuthorizedContext(RequestContext):
    """A context that has passed the session and tenant guards."""

    tenant_id: str = ""

    @property
    def user_id(self) -> str:
        return self.session.user_id

    @property
    def role(self) -> UserRole | None:
        return self.session.role


Guard = Callable[[RequestContext], RequestContext]


def require_session(ctx: RequestContext) -> RequestContext:
    if ctx.session is None or not ctx.session.user_id:
        logger.debug("Rejected request without a session")
        raise UnauthenticatedError()
    return ctx


def require_tenant(ctx: RequestContext) -> AuthorizedContext:
    if ctx.session is None or not ctx.session.user_id:
        raise UnauthenticatedError()
    if not ctx.session.tenant_id:
        # Authenticated sessions always carry a tenant; reaching here is a bug.
        logger.warning("Session for user %s has no tenant id", ctx.session.user_id)
        raise InvariantViolationError("Tenant ID not found in session")
    return AuthorizedContext(
        conn=ctx.conn,
        audit=ctx.audit,
        session=ctx.session,
        request_meta=ctx.request_meta,
        audit_config=ctx.audit_config,
        tenant_id=ctx.session.tenant_id,
    )


def require_roles(*roles: UserRole) -> Guard:
    allowed = frozenset(roles)
    if not allowed:
        raise ValueError("require_roles needs at least one role")

    def guard(ctx: RequestContext) -> RequestContext:
        if ctx.session is None or ctx.session.role not in allowed:
            logger.info(
                "Role %s denied, allowed: %s",
                ctx.session.role.value if ctx.session and ctx.session.role else None,
                sorted(r.value for r in allowed),
            )
            raise ForbiddenError()
        return ctx

    guard.allowed_roles = allowed
    return guard


class Procedure:
    """An immutable guard chain that wraps async handlers.

    ``use`` and ``allow_roles`` return a new procedure, so presets can be
    extended per operation without mutating shared state.
    """

    def __init__(self, guards: tuple[Guard, ...] = ()):
        self._guards = tuple(guards)

    @property
    def guards(self) -> tuple[Guard, ...]:
        return self._guards

    def use(self, guard: Guard) -> "Procedure":
        return Procedure(self._guards + (guard,))

    def allow_roles(self, *roles: UserRole) -> "Procedure":
        return self.use(require_roles(*roles))

    def authorize(self, ctx: RequestContext) -> RequestContext:
        for guard in self._guards:
            ctx = guard(ctx)
        return ctx

    def __call__(
        self, handler: Callable[..., Awaitable[R]]
    ) -> Callable[..., Awaitable[R]]:
        @wraps(handler)
        async def wrapper(ctx: RequestContext, *args: Any, **kwargs: Any) -> R:
            return await handler(self.authorize(ctx), *args, **kwargs)

        wrapper.procedure = self
        return wrapper


public_procedure = Procedure()
protected_procedure = Procedure((require_session, require_tenant))
admin_procedure = protected_procedure.allow_roles(UserRole.ADMIN)
doctor_procedure = protected_procedure.allow_roles(UserRole.ADMIN, UserRole.DOCTOR)
