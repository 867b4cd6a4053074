"""Tests for the tenant-scoped patient handlers and their audit trail."""

from unittest.mock import AsyncMock

import pytest

from clinic_guard.audit import AuditAction, AuditConfig, AuditQuery
from clinic_guard.auth import RequestContext, Session, UserRole
from clinic_guard.errors import ConflictError, ForbiddenError, NotFoundError
from clinic_guard.handlers import (
    create_patient,
    delete_patient,
    entity_audit_trail,
    export_patients,
    get_patient,
    list_patients,
    print_patient,
    query_audit_logs,
    update_patient,
)
from clinic_guard.handlers.patients import clean_patient_input

PATIENT = {
    "id": "p-1",
    "tenant_id": "tenant-a",
    "patient_number": "P-0001",
    "first_name": "Hana",
    "last_name": "Yamada",
    "phone": "03-1234-5678",
    "is_active": True,
}
PATIENT_INPUT = {"patient_number": "P-0001", "first_name": "Hana", "last_name": "Yamada"}


@pytest.fixture
def db():
    conn = AsyncMock()
    conn.fetchrow.return_value = None
    conn.fetch.return_value = []
    conn.fetchval.return_value = 0
    return conn


def make_ctx(db, audit_writer, role=UserRole.DOCTOR, tenant_id="tenant-a", audit_config=None):
    return RequestContext(
        conn=db,
        audit=audit_writer,
        session=Session(user_id="user-1", role=role, tenant_id=tenant_id),
        audit_config=audit_config or AuditConfig(),
    )


class TestCleanPatientInput:
    def test_unknown_field(self):
        with pytest.raises(ValueError, match="Unknown patient fields: tenant_id"):
            clean_patient_input({**PATIENT_INPUT, "tenant_id": "tenant-b"})

    def test_missing_required(self):
        with pytest.raises(ValueError, match="last_name"):
            clean_patient_input({"patient_number": "P-1", "first_name": "Hana"})

    def test_partial_skips_required(self):
        assert clean_patient_input({"notes": "n"}, partial=True) == {"notes": "n"}

    def test_email_normalized(self):
        cleaned = clean_patient_input({**PATIENT_INPUT, "email": " Hana@Example.COM "})
        assert cleaned["email"] == "hana@example.com"

    def test_bad_email(self):
        with pytest.raises(ValueError, match="email"):
            clean_patient_input({**PATIENT_INPUT, "email": "not-an-email"})

    def test_bad_phone(self):
        with pytest.raises(ValueError, match="phone"):
            clean_patient_input({**PATIENT_INPUT, "phone": "12345"})


class TestReadHandlers:
    @pytest.mark.asyncio
    async def test_get_logs_phi_access(self, db, audit_writer, audit_rows):
        db.fetchrow.return_value = PATIENT

        patient = await get_patient(make_ctx(db, audit_writer), "p-1")

        assert patient["id"] == "p-1"
        rows = audit_rows()
        assert len(rows) == 1
        assert rows[0]["action"] == "PHI_ACCESS"
        assert rows[0]["entity_id"] == "p-1"
        assert rows[0]["user_id"] == "user-1"
        assert rows[0]["tenant_id"] == "tenant-a"

    @pytest.mark.asyncio
    async def test_get_foreign_patient_is_not_found_and_not_logged(
        self, db, audit_writer, audit_conn
    ):
        with pytest.raises(NotFoundError):
            await get_patient(make_ctx(db, audit_writer, tenant_id="tenant-b"), "p-1")
        assert db.fetchrow.call_args.args[1] == "tenant-b"
        audit_conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_is_not_logged(self, db, audit_writer, audit_conn):
        db.fetch.return_value = [PATIENT]
        db.fetchval.return_value = 41

        result = await list_patients(make_ctx(db, audit_writer), search="Hana", limit=20)

        assert result["total"] == 41
        assert result["pages"] == 3
        assert result["patients"] == [PATIENT]
        audit_conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 20), (-1, 20), (1, 0)])
    async def test_list_rejects_bad_paging(self, db, audit_writer, page, limit):
        with pytest.raises(ValueError, match="at least 1"):
            await list_patients(make_ctx(db, audit_writer), page=page, limit=limit)
        db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_print_logs_print_event(self, db, audit_writer, audit_rows):
        db.fetchrow.return_value = PATIENT
        await print_patient(make_ctx(db, audit_writer, role=UserRole.NURSE), "p-1")
        assert audit_rows()[0]["action"] == "PRINT"


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_logs_create(self, db, audit_writer, audit_rows):
        db.fetchrow.side_effect = [None, PATIENT]

        patient = await create_patient(make_ctx(db, audit_writer), PATIENT_INPUT)

        assert patient["id"] == "p-1"
        row = audit_rows()[0]
        assert row["action"] == "CREATE"
        assert row["new_data"] == {"patient_number": "P-0001"}

    @pytest.mark.asyncio
    async def test_duplicate_number_conflicts(self, db, audit_writer, audit_conn):
        db.fetchrow.return_value = PATIENT
        with pytest.raises(ConflictError, match="Patient number already exists"):
            await create_patient(make_ctx(db, audit_writer), PATIENT_INPUT)
        audit_conn.fetchrow.assert_not_called()


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_logs_changed_field_names_only(self, db, audit_writer, audit_rows):
        updated = {**PATIENT, "phone": "03-9999-0000"}
        db.fetchrow.side_effect = [PATIENT, updated]

        result = await update_patient(
            make_ctx(db, audit_writer), "p-1", {"phone": "03-9999-0000", "first_name": "Hana"}
        )

        assert result["phone"] == "03-9999-0000"
        row = audit_rows()[0]
        assert row["action"] == "UPDATE"
        assert row["old_data"] is None
        assert row["new_data"] == {"updated_fields": ["phone"]}

    @pytest.mark.asyncio
    async def test_update_can_record_values(self, db, audit_writer, audit_rows):
        db.fetchrow.side_effect = [PATIENT, {**PATIENT, "phone": "03-9999-0000"}]

        await update_patient(
            make_ctx(db, audit_writer),
            "p-1",
            {"phone": "03-9999-0000"},
            include_change_values=True,
        )

        row = audit_rows()[0]
        assert row["old_data"] == {"phone": "03-1234-5678"}
        assert row["new_data"] == {"phone": "03-9999-0000"}

    @pytest.mark.asyncio
    async def test_update_values_follow_audit_config(self, db, audit_writer, audit_rows):
        db.fetchrow.side_effect = [PATIENT, {**PATIENT, "phone": "03-9999-0000"}]
        ctx = make_ctx(db, audit_writer, audit_config=AuditConfig(include_change_values=True))

        await update_patient(ctx, "p-1", {"phone": "03-9999-0000"})

        row = audit_rows()[0]
        assert row["old_data"] == {"phone": "03-1234-5678"}
        assert row["new_data"] == {"phone": "03-9999-0000"}

    @pytest.mark.asyncio
    async def test_explicit_flag_overrides_audit_config(self, db, audit_writer, audit_rows):
        db.fetchrow.side_effect = [PATIENT, {**PATIENT, "phone": "03-9999-0000"}]
        ctx = make_ctx(db, audit_writer, audit_config=AuditConfig(include_change_values=True))

        await update_patient(ctx, "p-1", {"phone": "03-9999-0000"}, include_change_values=False)

        assert audit_rows()[0]["new_data"] == {"updated_fields": ["phone"]}

    @pytest.mark.asyncio
    async def test_update_in_other_tenant_is_not_found(self, db, audit_writer, audit_conn):
        with pytest.raises(NotFoundError):
            await update_patient(
                make_ctx(db, audit_writer, tenant_id="tenant-b"), "p-1", {"notes": "x"}
            )
        assert db.fetchrow.call_count == 1
        audit_conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_survives_audit_failure(self, db, audit_writer, audit_conn):
        db.fetchrow.side_effect = [PATIENT, {**PATIENT, "notes": "follow up"}]
        audit_conn.fetchrow.side_effect = ConnectionError("audit store down")

        result = await update_patient(make_ctx(db, audit_writer), "p-1", {"notes": "follow up"})

        assert result["notes"] == "follow up"
        assert audit_conn.fetchrow.call_count == 1

    @pytest.mark.asyncio
    async def test_renumber_to_taken_number_conflicts(self, db, audit_writer):
        clash = {**PATIENT, "id": "p-2", "patient_number": "P-0002"}
        db.fetchrow.side_effect = [PATIENT, clash]
        with pytest.raises(ConflictError):
            await update_patient(
                make_ctx(db, audit_writer), "p-1", {"patient_number": "P-0002"}
            )


class TestRoleGatedHandlers:
    @pytest.mark.asyncio
    async def test_delete_is_soft_and_logged(self, db, audit_writer, audit_rows):
        db.fetchrow.side_effect = [PATIENT, {**PATIENT, "is_active": False}]

        result = await delete_patient(make_ctx(db, audit_writer), "p-1")

        assert result["is_active"] is False
        assert "is_active" in db.fetchrow.call_args.args[0]
        row = audit_rows()[0]
        assert row["action"] == "DELETE"
        assert row["new_data"] == {"is_active": False}

    @pytest.mark.asyncio
    async def test_nurse_cannot_delete(self, db, audit_writer, audit_conn):
        with pytest.raises(ForbiddenError):
            await delete_patient(make_ctx(db, audit_writer, role=UserRole.NURSE), "p-1")
        db.fetchrow.assert_not_called()
        audit_conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_export_logs_ids(self, db, audit_writer, audit_rows):
        db.fetch.return_value = [PATIENT, {**PATIENT, "id": "p-2"}]

        rows = await export_patients(
            make_ctx(db, audit_writer, role=UserRole.ADMIN), ["p-1", "p-2", "p-foreign"]
        )

        assert len(rows) == 2
        row = audit_rows()[0]
        assert row["action"] == "EXPORT"
        assert row["entity_id"] == "p-1,p-2"
        assert row["new_data"] == {"export_format": "csv", "record_count": 2}

    @pytest.mark.asyncio
    async def test_doctor_cannot_export(self, db, audit_writer):
        with pytest.raises(ForbiddenError):
            await export_patients(make_ctx(db, audit_writer), ["p-1"])


class TestAuditLogHandlers:
    @pytest.mark.asyncio
    async def test_admin_query_is_scoped_to_session_tenant(self, db, audit_writer):
        db.fetchval.return_value = 0

        page = await query_audit_logs(
            make_ctx(db, audit_writer, role=UserRole.ADMIN),
            AuditQuery(action=AuditAction.PHI_ACCESS),
        )

        assert page.total == 0
        assert db.fetch.call_args.args[1] == "tenant-a"

    @pytest.mark.asyncio
    async def test_doctor_cannot_query(self, db, audit_writer):
        with pytest.raises(ForbiddenError):
            await query_audit_logs(make_ctx(db, audit_writer))
        db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_entity_trail(self, db, audit_writer):
        await entity_audit_trail(
            make_ctx(db, audit_writer, role=UserRole.ADMIN), "Patient", "p-1"
        )
        assert db.fetch.call_args.args[1:] == ("tenant-a", "Patient", "p-1")

    @pytest.mark.asyncio
    async def test_page_sizes_follow_audit_config(self, db, audit_writer):
        config = AuditConfig(default_page_size=7, max_page_size=10)
        ctx = make_ctx(db, audit_writer, role=UserRole.ADMIN, audit_config=config)

        await query_audit_logs(ctx)
        assert db.fetch.call_args.args[1:] == ("tenant-a", 7, 0)

        with pytest.raises(ValueError, match="between 1 and 10"):
            await query_audit_logs(ctx, AuditQuery(limit=11))
