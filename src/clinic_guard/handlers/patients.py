"""Tenant-scoped patient handlers.

Every read of a single patient, every mutation, export and print goes
through the audit writer with the identity the gate attached. Listing is
not logged; only opening a record is.
"""

import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..audit.models import AuditAction
from ..auth.guards import AuthorizedContext, admin_procedure, doctor_procedure, protected_procedure
from ..errors import ConflictError
from ..phi.changes import change_snapshot
from ..security.sanitizers import sanitize_email, sanitize_phone
from ..tenancy import TenantScopedRepository

logger = logging.getLogger(__name__)

ENTITY_TYPE = "Patient"

PATIENT_FIELDS = frozenset(
    {
        "patient_number",
        "first_name",
        "last_name",
        "first_name_kana",
        "last_name_kana",
        "date_of_birth",
        "gender",
        "blood_type",
        "phone",
        "email",
        "address",
        "postal_code",
        "emergency_contact",
        "emergency_phone",
        "allergies",
        "medical_history",
        "insurance_number",
        "insurance_type",
        "notes",
    }
)
REQUIRED_FIELDS = ("patient_number", "first_name", "last_name")

patients = TenantScopedRepository(
    "patients",
    ENTITY_TYPE,
    search_columns=("first_name", "last_name", "patient_number", "phone"),
)


def clean_patient_input(data: Mapping[str, Any], partial: bool = False) -> dict[str, Any]:
    """Whitelist and normalize patient fields.

    Raises:
        ValueError: On unknown fields, missing required fields or bad contact data.
    """
    unknown = set(data) - PATIENT_FIELDS
    if unknown:
        raise ValueError(f"Unknown patient fields: {', '.join(sorted(unknown))}")

    if not partial:
        missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
        if missing:
            raise ValueError(f"Missing required patient fields: {', '.join(missing)}")

    cleaned = dict(data)
    if "email" in cleaned:
        email = cleaned["email"]
        if email:
            cleaned["email"] = sanitize_email(email)
            if cleaned["email"] is None:
                raise ValueError("Invalid email address")
        else:
            cleaned["email"] = None
    for key in ("phone", "emergency_phone"):
        if cleaned.get(key):
            phone = sanitize_phone(cleaned[key])
            if phone is None:
                raise ValueError(f"Invalid phone number for {key}")
            cleaned[key] = phone
    return cleaned


@protected_procedure
async def list_patients(
    ctx: AuthorizedContext,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    if page < 1:
        raise ValueError(f"page must be at least 1, got {page}")
    if limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")

    rows, total = await patients.list(
        ctx.conn,
        ctx.tenant_id,
        filters={"is_active": True},
        limit=limit,
        offset=(page - 1) * limit,
        search=search,
    )
    return {"patients": rows, "total": total, "pages": math.ceil(total / limit)}


@protected_procedure
async def get_patient(ctx: AuthorizedContext, patient_id: str) -> dict[str, Any]:
    patient = await patients.get(ctx.conn, ctx.tenant_id, patient_id)
    await ctx.audit.log_access(
        ENTITY_TYPE, patient_id, ctx.user_id, ctx.tenant_id, request_meta=ctx.request_meta
    )
    return patient


@protected_procedure
async def create_patient(ctx: AuthorizedContext, data: Mapping[str, Any]) -> dict[str, Any]:
    values = clean_patient_input(data)

    existing = await patients.find_one(
        ctx.conn, ctx.tenant_id, {"patient_number": values["patient_number"]}
    )
    if existing:
        raise ConflictError("Patient number already exists")

    patient = await patients.create(ctx.conn, ctx.tenant_id, values)
    await ctx.audit.log_modification(
        AuditAction.CREATE,
        ENTITY_TYPE,
        patient["id"],
        ctx.user_id,
        ctx.tenant_id,
        new_data={"patient_number": patient["patient_number"]},
        request_meta=ctx.request_meta,
    )
    return patient


@protected_procedure
async def update_patient(
    ctx: AuthorizedContext,
    patient_id: str,
    data: Mapping[str, Any],
    include_change_values: bool | None = None,
) -> dict[str, Any]:
    """Apply a partial update.

    The audit entry lists changed field names, or their old and new values
    when ``include_change_values`` (default: the audit config) is set.
    """
    if include_change_values is None:
        include_change_values = ctx.audit_config.include_change_values
    values = clean_patient_input(data, partial=True)
    before = await patients.get(ctx.conn, ctx.tenant_id, patient_id)

    if "patient_number" in values and values["patient_number"] != before["patient_number"]:
        clash = await patients.find_one(
            ctx.conn, ctx.tenant_id, {"patient_number": values["patient_number"]}
        )
        if clash:
            raise ConflictError("Patient number already exists")

    patient = await patients.update(
        ctx.conn, ctx.tenant_id, patient_id, {**values, "updated_at": datetime.now(UTC)}
    )

    old_data, new_data = change_snapshot(before, values, include_values=include_change_values)
    await ctx.audit.log_modification(
        AuditAction.UPDATE,
        ENTITY_TYPE,
        patient_id,
        ctx.user_id,
        ctx.tenant_id,
        old_data=old_data,
        new_data=new_data,
        request_meta=ctx.request_meta,
    )
    return patient


@doctor_procedure
async def delete_patient(ctx: AuthorizedContext, patient_id: str) -> dict[str, Any]:
    """Soft delete: the row is kept and marked inactive."""
    await patients.get(ctx.conn, ctx.tenant_id, patient_id)
    patient = await patients.update(
        ctx.conn,
        ctx.tenant_id,
        patient_id,
        {"is_active": False, "updated_at": datetime.now(UTC)},
    )
    await ctx.audit.log_modification(
        AuditAction.DELETE,
        ENTITY_TYPE,
        patient_id,
        ctx.user_id,
        ctx.tenant_id,
        new_data={"is_active": False},
        request_meta=ctx.request_meta,
    )
    return patient


@admin_procedure
async def export_patients(
    ctx: AuthorizedContext,
    patient_ids: list[str],
    export_format: str = "csv",
) -> list[dict[str, Any]]:
    rows = await patients.get_many(ctx.conn, ctx.tenant_id, patient_ids)
    await ctx.audit.log_export_event(
        ENTITY_TYPE,
        [row["id"] for row in rows],
        ctx.user_id,
        ctx.tenant_id,
        export_format,
        request_meta=ctx.request_meta,
    )
    logger.info("Exported %d patients as %s", len(rows), export_format)
    return rows


@protected_procedure
async def print_patient(ctx: AuthorizedContext, patient_id: str) -> dict[str, Any]:
    patient = await patients.get(ctx.conn, ctx.tenant_id, patient_id)
    await ctx.audit.log_print_event(
        ENTITY_TYPE, patient_id, ctx.user_id, ctx.tenant_id, request_meta=ctx.request_meta
    )
    return patient
