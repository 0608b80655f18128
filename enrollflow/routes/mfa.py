"""
Admin one-time code verification (TOTP).

Failed codes are counted per admin; after MFA_MAX_FAILED_ATTEMPTS failures
within MFA_LOCKOUT_WINDOW_SECONDS further attempts get 429 until the window
passes.
"""

import logging
import re
import time
from typing import Optional

import pyotp
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from pyotp.utils import strings_equal
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .. import config
from ..auth import get_current_admin
from ..database import get_db
from ..models import AdminUser
from ..rate_limiter import (
    clear_failures,
    enforce_not_locked_out,
    register_failure,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/mfa", tags=["MFA"])

CODE_PATTERN = re.compile(r"^\d{6}$")

# Accept codes from one step either side of the server clock
VALID_WINDOW = 1


def matching_time_step(totp: pyotp.TOTP, code: str, now: float) -> Optional[int]:
    """Time step the code was generated for, or None when it matches no step in the window"""
    current = int(now // totp.interval)
    for step in range(current - VALID_WINDOW, current + VALID_WINDOW + 1):
        if strings_equal(totp.generate_otp(step), code):
            return step
    return None


class VerifyCodeRequest(BaseModel):
    code: str


class TOTPSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str


class VerifyCodeResponse(BaseModel):
    success: bool = True
    verified: bool = True


@router.post("/totp/setup", response_model=TOTPSetupResponse)
async def setup_totp(
    admin: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)
):
    """Generate a TOTP secret; it becomes active after the first successful verify"""
    if admin.totp_enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="TOTP is already enabled"
        )

    secret = pyotp.random_base32()
    provisioning_uri = pyotp.TOTP(secret).provisioning_uri(
        name=admin.email, issuer_name=config.MFA_ISSUER_NAME
    )

    # Store secret (not enabled yet)
    admin.totp_secret = secret
    admin.totp_last_used_step = None
    db.commit()
    logger.info(f"🔐 TOTP setup started for admin {admin.email}")

    return TOTPSetupResponse(secret=secret, provisioning_uri=provisioning_uri)


@router.post("/verify", response_model=VerifyCodeResponse)
async def verify_code(
    request: VerifyCodeRequest,
    admin: AdminUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Verify a six-digit one-time code for the signed-in admin"""
    lockout_key = f"admin:{admin.id}"
    enforce_not_locked_out(lockout_key)

    code = request.code.strip()
    if not CODE_PATTERN.match(code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Code must be 6 digits"
        )

    if not admin.totp_secret:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="TOTP setup not initialized. Call /admin/mfa/totp/setup first.",
        )

    step = matching_time_step(pyotp.TOTP(admin.totp_secret), code, time.time())
    if step is None:
        failures = register_failure(lockout_key)
        remaining = max(config.MFA_MAX_FAILED_ATTEMPTS - failures, 0)
        logger.warning(f"🚫 Invalid one-time code for admin {admin.email} ({failures} failures)")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid verification code", "attempts_remaining": remaining},
        )

    # Guarded update: each time step is accepted at most once
    consumed = (
        db.query(AdminUser)
        .filter(
            AdminUser.id == admin.id,
            or_(
                AdminUser.totp_last_used_step.is_(None),
                AdminUser.totp_last_used_step < step,
            ),
        )
        .update(
            {"totp_last_used_step": step, "totp_enabled": True, "mfa_method": "totp"},
            synchronize_session=False,
        )
    )
    if consumed != 1:
        db.rollback()
        logger.warning(f"🚫 Replayed one-time code for admin {admin.email}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Verification code already used"
        )

    was_enabled = admin.totp_enabled
    db.commit()
    clear_failures(lockout_key)
    if not was_enabled:
        logger.info(f"✅ TOTP enabled for admin {admin.email}")

    return VerifyCodeResponse()
