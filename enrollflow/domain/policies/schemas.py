"""Policy schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...utils.sanitization import sanitize_string


class PolicyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    terms_url: str = Field(min_length=1, max_length=1000)
    privacy_url: str = Field(min_length=1, max_length=1000)
    version: str = Field(min_length=1, max_length=50)
    terms_text: str = Field(min_length=1)
    privacy_text: Optional[str] = None
    is_default: bool = False

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v):
        cleaned = sanitize_string(v)
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("description")
    @classmethod
    def sanitize_description(cls, v):
        return sanitize_string(v)

    @field_validator("terms_url", "privacy_url")
    @classmethod
    def validate_url(cls, v):
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("must be an http(s) URL")
        return v


class PolicyResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    terms_url: str
    privacy_url: str
    version: str
    terms_content_sha256: str
    is_default: bool
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
