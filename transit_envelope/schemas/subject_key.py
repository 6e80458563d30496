"""
Pydantic schemas for the GDPR admin API.

Subject keys are the per-subject KEKs held by the transit service. Deleting one
is the erasure operation: every record encrypted for the subject becomes
unrecoverable.
"""
from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Schema for health check endpoint response."""
    status: str
    transit: str
    timestamp: datetime


class SubjectKeyStatus(BaseModel):
    """Whether a subject currently has a key at the transit service."""
    subject_id: str = Field(description="Data subject identifier")
    key_name: str = Field(description="Remote key name derived from the subject ID")
    exists: bool = Field(description="Whether the key exists")


class SubjectKeyListResponse(BaseModel):
    """Managed subject key names."""
    keys: List[str] = Field(description="Key names carrying the configured prefix")
    total: int = Field(description="Number of keys")


class SubjectKeyDeletedResponse(BaseModel):
    """Response after erasing a subject's key."""
    subject_id: str = Field(description="Data subject identifier")
    key_name: str = Field(description="Deleted remote key name")
    message: str = Field(description="Human-readable message")
