"""Shared validation utilities"""

import re
import uuid
from typing import Optional

SHA256_HEX_PATTERN = re.compile(r"^[0-9a-f]{64}$")
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def validate_uuid(value: str) -> bool:
    """Validate UUID format"""
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address, or None for blank input

    Raises:
        ValueError: If email format is invalid
    """
    if not email or not email.strip():
        return None

    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")
    return email


def validate_sha256_hex(value: Optional[str]) -> Optional[str]:
    """Lowercase 64-char hex digest, or None for blank input"""
    if not value or not value.strip():
        return None
    value = value.strip().lower()
    if not SHA256_HEX_PATTERN.match(value):
        raise ValueError("Invalid SHA-256 hex digest")
    return value
