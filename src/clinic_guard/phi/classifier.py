"""Entity-type classification for Protected Health Information.

HIPAA Reference: 164.312(b) - Audit Controls

This set is the only place that decides whether reads and writes of an
entity type are audited. Call sites must ask ``is_phi_entity`` rather than
keep their own lists.
"""

PHI_ENTITIES: frozenset[str] = frozenset(
    {
        "Patient",
        "MedicalRecord",
        "Prescription",
        "LabResult",
        "MedicalImage",
        "AudiometryTest",
        "TympanometryTest",
        "VestibularTest",
        "EndoscopyExam",
        "AllergyTest",
        "QuestionnaireResponse",
        "Document",
        "PatientMessage",
        "MedicationRecord",
        "Invoice",
    }
)


def is_phi_entity(entity_type: str) -> bool:
    return entity_type in PHI_ENTITIES
