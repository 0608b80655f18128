"""Patient and surgeon schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email
from ...utils.sanitization import sanitize_string


class PatientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None
    surgeon_id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v):
        cleaned = sanitize_string(v)
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("email")
    @classmethod
    def validate_patient_email(cls, v):
        return validate_email(v)

    @field_validator("phone", "notes")
    @classmethod
    def sanitize_optional(cls, v):
        return sanitize_string(v)


class PatientResponse(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    surgeon_id: Optional[str] = None
    surgeon_name: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PatientImportResponse(BaseModel):
    created: int
    linked: int
    skipped: int
    errors: list[str]


class SurgeonResponse(BaseModel):
    id: str
    zoho_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    specialty: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class SurgeonSyncResponse(BaseModel):
    success: bool = True
    total: int
    created: int
    updated: int
