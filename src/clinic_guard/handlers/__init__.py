"""Domain handlers wired through the authorization gate."""

from .audit_logs import entity_audit_trail, query_audit_logs
from .patients import (
    create_patient,
    delete_patient,
    export_patients,
    get_patient,
    list_patients,
    print_patient,
    update_patient,
)

__all__ = [
    "create_patient",
    "delete_patient",
    "entity_audit_trail",
    "export_patients",
    "get_patient",
    "list_patients",
    "print_patient",
    "query_audit_logs",
    "update_patient",
]
