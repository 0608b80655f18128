"""Enrollment domain schemas - Pydantic models for validation"""

import re
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email, validate_sha256_hex
from ...utils.sanitization import sanitize_string

CURRENCY_PATTERN = re.compile(r"^[a-z]{3}$")

# Longest link lifetime the CRM may request (one year)
MAX_EXPIRES_IN_HOURS = 24 * 365


def _normalize_currency(value: Optional[str]) -> str:
    if value is None:
        return "usd"
    value = value.strip().lower()
    if not CURRENCY_PATTERN.match(value):
        raise ValueError("currency must be a 3-letter ISO code")
    return value


class CrmEnrollmentCreate(BaseModel):
    """Enrollment request pushed by the CRM"""

    zoho_record_id: str = Field(min_length=1, max_length=255)
    zoho_module: str = Field(min_length=1, max_length=100)
    patient_name: Optional[str] = None
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    amount_cents: int = Field(gt=0)
    currency: Optional[str] = "usd"
    terms_url: Optional[str] = None
    privacy_url: Optional[str] = None
    terms_version: Optional[str] = None
    terms_sha256: Optional[str] = None
    policy_id: Optional[str] = None
    expires_in_hours: Optional[float] = Field(
        default=None, gt=0, le=MAX_EXPIRES_IN_HOURS, allow_inf_nan=False
    )

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v):
        return _normalize_currency(v)

    @field_validator("patient_email")
    @classmethod
    def validate_patient_email(cls, v):
        return validate_email(v)

    @field_validator("patient_name")
    @classmethod
    def sanitize_patient_name(cls, v):
        return sanitize_string(v)

    @field_validator("terms_sha256")
    @classmethod
    def validate_terms_hash(cls, v):
        return validate_sha256_hex(v)


class AdminEnrollmentCreate(BaseModel):
    """Enrollment created from the admin dashboard"""

    patient_name: str = Field(min_length=1, max_length=255)
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_id: Optional[str] = None
    policy_id: Optional[str] = None
    amount_cents: int = Field(gt=0)
    currency: Optional[str] = "usd"
    expires_at: datetime

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v):
        return _normalize_currency(v)

    @field_validator("patient_email")
    @classmethod
    def validate_patient_email(cls, v):
        return validate_email(v)

    @field_validator("patient_name")
    @classmethod
    def sanitize_patient_name(cls, v):
        cleaned = sanitize_string(v)
        if not cleaned:
            raise ValueError("patient_name is required")
        return cleaned


class RegenerateEnrollmentRequest(BaseModel):
    expires_at: datetime


class TokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class AcceptTermsRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    terms_accepted: bool
    signature_data: Optional[str] = None

    @field_validator("signature_data")
    @classmethod
    def validate_signature(cls, v):
        if v is not None and not v.startswith("data:image/png;base64,"):
            raise ValueError("signature_data must be a base64 PNG data URL")
        return v


class CheckoutSessionRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    payment_method_type: Literal["card", "ach"] = "card"


class CheckoutSessionResponse(BaseModel):
    success: bool = True
    checkout_url: str
    session_id: str


class EnrollmentLinkResponse(BaseModel):
    """Response for create / regenerate - the only place the raw link is ever returned"""

    success: bool = True
    enrollment_id: str
    enrollment_url: str
    expires_at: str
    token_last4: str


class EnrollmentPublicResponse(BaseModel):
    """Patient-safe view of an enrollment"""

    id: str
    patient_first_name: Optional[str]
    patient_name: Optional[str]
    patient_email: Optional[str]
    patient_phone: Optional[str]
    amount_cents: int
    currency: str
    status: str
    expires_at: datetime
    terms_version: str
    terms_url: str
    privacy_url: str
    terms_text: Optional[str]
    privacy_text: Optional[str]
    terms_sha256: str
    opened_at: Optional[datetime]
    terms_accepted_at: Optional[datetime]
    surgeon_name: Optional[str] = None


class AcceptTermsResponse(BaseModel):
    success: bool = True
    enrollment_id: str
    terms_accepted_at: datetime


class EnrollmentAdminResponse(BaseModel):
    id: str
    status: str
    token_last4: str
    zoho_module: str
    zoho_record_id: str
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    amount_cents: int
    currency: str
    expires_at: datetime
    policy_id: Optional[str] = None
    terms_version: str
    opened_at: Optional[datetime] = None
    processing_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    terms_accepted_at: Optional[datetime] = None
    payment_method_type: Optional[str] = None
    payment_session_id: Optional[str] = None
    consent_pdf_path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EnrollmentEventResponse(BaseModel):
    id: int
    enrollment_id: str
    event_type: str
    event_data: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CancelEnrollmentRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, v):
        return sanitize_string(v)
