"""Narrow payloads for modification audit entries.

Audit rows record what changed, not whole records, to bound log size and
the amount of PHI copied into the audit trail.
"""

from collections.abc import Mapping
from typing import Any

_MISSING = object()


def changed_fields(before: Mapping[str, Any], after: Mapping[str, Any]) -> list[str]:
    """Sorted names of keys in ``after`` whose value differs from ``before``."""
    return sorted(key for key, value in after.items() if before.get(key, _MISSING) != value)


def change_snapshot(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    include_values: bool = False,
) -> tuple[dict[str, Any] | None, dict[str, Any]]:
    """Build ``(old_data, new_data)`` for an UPDATE entry.

    By default only the changed field names are kept. With ``include_values``
    the old and new values of the changed fields are recorded as well.
    """
    fields = changed_fields(before, after)
    if not include_values:
        return None, {"updated_fields": fields}

    old_data = {key: before.get(key) for key in fields}
    new_data = {key: after[key] for key in fields}
    return old_data, new_data
