"""
Pydantic schemas for API request/response models.
"""
from transit_envelope.schemas.subject_key import (
    HealthResponse,
    SubjectKeyDeletedResponse,
    SubjectKeyListResponse,
    SubjectKeyStatus,
)

__all__ = [
    "HealthResponse",
    "SubjectKeyDeletedResponse",
    "SubjectKeyListResponse",
    "SubjectKeyStatus",
]
