"""HIPAA-compliant audit logging for clinic-guard.

HIPAA Citation: 45 CFR 164.312(b) - Audit Controls
"""

from .context import (
    RequestMeta,
    get_request_meta,
    request_meta_from_headers,
    request_meta_scope,
    set_request_meta,
)
from .logger import AuditLogWriter
from .models import (
    AuditAction,
    AuditConfig,
    AuditEntry,
    AuditPage,
    AuditQuery,
    AuditWriteResult,
)
from .query import AuditQueryService
from .schema import AuditSchemaManager

__all__ = [
    "AuditAction",
    "AuditConfig",
    "AuditEntry",
    "AuditLogWriter",
    "AuditPage",
    "AuditQuery",
    "AuditQueryService",
    "AuditSchemaManager",
    "AuditWriteResult",
    "RequestMeta",
    "get_request_meta",
    "request_meta_from_headers",
    "request_meta_scope",
    "set_request_meta",
]
