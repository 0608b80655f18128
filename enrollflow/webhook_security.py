"""
Webhook Security Module

Signature verification for every server-to-server entry point:
- CRM enrollment creation (shared secret header or HMAC over timestamp + body)
- Payment provider webhooks (Standard Webhooks: id.timestamp.payload, whsec_ key)
- Scheduler trigger for the expiry sweep (shared secret header)

All secret comparisons are constant-time.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

from . import config

logger = logging.getLogger(__name__)

# Maximum age of a Standard Webhooks delivery in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two strings in constant time; empty values never match"""
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute hex HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def extract_signing_key(secret: str) -> bytes:
    """
    Signing key bytes for a Standard Webhooks secret.

    "whsec_BASE64KEY" is decoded to the raw key; anything that is not valid
    base64 is used as UTF-8 bytes.
    """
    b64_part = secret[6:] if secret.startswith("whsec_") else secret
    try:
        return base64.b64decode(b64_part, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def verify_timestamp(
    timestamp: Optional[str],
    max_age: int = MAX_WEBHOOK_AGE_SECONDS,
    now: Optional[float] = None,
    unit: int = 1,
) -> bool:
    """
    Verify a sender timestamp is within max_age of now.

    unit is the number of timestamp ticks per second (1 for seconds, 1000 for
    epoch milliseconds); max_age is expressed in the same ticks.
    """
    if not timestamp:
        return False

    try:
        sent_at = int(timestamp)
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid timestamp format: {timestamp}")
        return False

    current = int((now if now is not None else time.time()) * unit)
    age = abs(current - sent_at)
    if age > max_age:
        logger.warning(f"🚫 Request timestamp too old: {age} (max: {max_age})")
        return False
    return True


# ============================================================================
# CRM → enrollment creation
# ============================================================================


async def verify_crm_request(request: Request) -> bytes:
    """
    FastAPI dependency authenticating CRM calls.

    Accepts either x-shared-secret equal to ENROLLMENT_SHARED_SECRET, or
    x-hmac-signature = hex HMAC-SHA256("{x-hmac-timestamp}.{raw body}") with a
    millisecond timestamp no older than HMAC_MAX_AGE_MS. Returns the raw body.
    """
    secret = config.ENROLLMENT_SHARED_SECRET
    if not secret:
        logger.error("❌ ENROLLMENT_SHARED_SECRET not configured")
        raise HTTPException(status_code=500, detail="Server misconfigured")

    raw_body = await request.body()

    shared_secret = request.headers.get("x-shared-secret")
    if shared_secret:
        if constant_time_compare(shared_secret, secret):
            return raw_body
        logger.warning("🚫 CRM request rejected: shared secret mismatch")
        raise HTTPException(status_code=401, detail="Unauthorized")

    signature = request.headers.get("x-hmac-signature")
    timestamp = request.headers.get("x-hmac-timestamp")
    if not signature or not timestamp:
        logger.warning("🚫 CRM request rejected: no credentials")
        raise HTTPException(status_code=401, detail="Unauthorized")

    if not verify_timestamp(timestamp, max_age=config.HMAC_MAX_AGE_MS, unit=1000):
        raise HTTPException(status_code=401, detail="Request timestamp expired")

    expected = compute_hmac_sha256(secret, timestamp.encode("utf-8") + b"." + raw_body)
    if not constant_time_compare(expected, signature.lower()):
        logger.warning("🚫 CRM request rejected: HMAC mismatch")
        raise HTTPException(status_code=401, detail="Invalid signature")

    return raw_body


# ============================================================================
# Payment provider webhooks (Standard Webhooks)
# ============================================================================


def sign_standard_webhook(secret: str, webhook_id: str, timestamp: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 over "id.timestamp.body" with the decoded whsec_ key"""
    signed_message = b".".join([webhook_id.encode("utf-8"), timestamp.encode("utf-8"), body])
    return base64.b64encode(
        hmac.new(extract_signing_key(secret), signed_message, hashlib.sha256).digest()
    ).decode("utf-8")


async def verify_payment_webhook(request: Request, secret: Optional[str]) -> bytes:
    """
    Verify a Standard Webhooks delivery and return the raw body.

    The webhook-signature header may carry several space-separated "v1,<sig>"
    entries (key rotation); any match is accepted.
    """
    if not secret:
        logger.error("❌ PAYMENT_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    raw_body = await request.body()

    signature_header = request.headers.get("webhook-signature", "")
    timestamp = request.headers.get("webhook-timestamp", "")
    webhook_id = request.headers.get("webhook-id", "")

    logger.info(f"📥 Payment webhook received: id={webhook_id or 'unknown'}")

    if not webhook_id or not signature_header or not timestamp:
        logger.error("❌ Missing Standard Webhooks headers")
        raise HTTPException(status_code=401, detail="Missing webhook signature headers")

    if not verify_timestamp(timestamp):
        logger.error("❌ Webhook timestamp expired or invalid")
        raise HTTPException(status_code=401, detail="Webhook timestamp expired")

    expected = sign_standard_webhook(secret, webhook_id, timestamp, raw_body)
    for entry in signature_header.split():
        version, _, received = entry.partition(",")
        if version == "v1" and constant_time_compare(expected, received):
            logger.info(f"✅ Payment webhook signature verified: {webhook_id}")
            return raw_body

    logger.error(f"❌ Payment webhook signature mismatch for {webhook_id}")
    raise HTTPException(status_code=401, detail="Invalid webhook signature")


# ============================================================================
# Scheduler
# ============================================================================


async def verify_cron_secret(request: Request) -> None:
    """FastAPI dependency for the external scheduler's x-cron-secret header"""
    if not config.CRON_SECRET:
        logger.error("❌ CRON_SECRET not configured")
        raise HTTPException(status_code=500, detail="Server misconfigured")
    if not constant_time_compare(request.headers.get("x-cron-secret"), config.CRON_SECRET):
        logger.warning("🚫 Sweep trigger rejected: bad cron secret")
        raise HTTPException(status_code=401, detail="Unauthorized")
