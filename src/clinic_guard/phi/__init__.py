"""PHI (Protected Health Information) classification.

HIPAA Reference: 164.312(b) - Audit Controls
"""

from .changes import change_snapshot, changed_fields
from .classifier import PHI_ENTITIES, is_phi_entity

__all__ = [
    "PHI_ENTITIES",
    "change_snapshot",
    "changed_fields",
    "is_phi_entity",
]
