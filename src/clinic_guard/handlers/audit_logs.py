"""Admin-only audit trail handlers."""

from ..audit.models import AuditEntry, AuditPage, AuditQuery
from ..audit.query import AuditQueryService
from ..auth.guards import AuthorizedContext, admin_procedure


@admin_procedure
async def query_audit_logs(ctx: AuthorizedContext, filters: AuditQuery | None = None) -> AuditPage:
    service = AuditQueryService.from_config(ctx.audit_config)
    return await service.query(ctx.conn, ctx.tenant_id, filters)


@admin_procedure
async def entity_audit_trail(
    ctx: AuthorizedContext, entity_type: str, entity_id: str
) -> list[AuditEntry]:
    service = AuditQueryService.from_config(ctx.audit_config)
    return await service.entity_trail(ctx.conn, ctx.tenant_id, entity_type, entity_id)
