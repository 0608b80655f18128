import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./enrollflow.db")

# Public patient-facing app, used to build enrollment links
APP_URL = os.getenv("APP_URL", "http://localhost:5173").rstrip("/")

# Enrollment link lifetime when the CRM does not pass expires_in_hours
DEFAULT_EXPIRES_IN_HOURS = int(os.getenv("DEFAULT_EXPIRES_IN_HOURS", "48"))

# Shared secret for CRM-originated enrollment creation (plain header or HMAC key)
ENROLLMENT_SHARED_SECRET = os.getenv("ENROLLMENT_SHARED_SECRET")
# Max age of x-hmac-timestamp, in milliseconds
HMAC_MAX_AGE_MS = int(os.getenv("HMAC_MAX_AGE_MS", "300000"))

# Secret the external scheduler sends to trigger the expiry sweep
CRON_SECRET = os.getenv("CRON_SECRET")

# Auth platform JWT verification (HS256 project secret)
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
if not SUPABASE_JWT_SECRET:
    warnings.warn(
        "SUPABASE_JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    SUPABASE_JWT_SECRET = "INSECURE-DEV-JWT-SECRET-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# Payment provider webhooks (Standard Webhooks, "whsec_..." secret)
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")

# Zoho CRM OAuth (refresh-token grant)
ZOHO_CLIENT_ID = os.getenv("ZOHO_CLIENT_ID")
ZOHO_CLIENT_SECRET = os.getenv("ZOHO_CLIENT_SECRET")
ZOHO_REFRESH_TOKEN = os.getenv("ZOHO_REFRESH_TOKEN")
ZOHO_ACCOUNTS_URL = os.getenv("ZOHO_ACCOUNTS_URL", "https://accounts.zoho.com").rstrip("/")
ZOHO_API_URL = os.getenv("ZOHO_API_URL", "https://www.zohoapis.com").rstrip("/")
ZOHO_TIMEOUT_SECONDS = float(os.getenv("ZOHO_TIMEOUT_SECONDS", "10"))

# One-time code verification lockout
MFA_MAX_FAILED_ATTEMPTS = int(os.getenv("MFA_MAX_FAILED_ATTEMPTS", "5"))
MFA_LOCKOUT_WINDOW_SECONDS = int(os.getenv("MFA_LOCKOUT_WINDOW_SECONDS", "600"))
MFA_ISSUER_NAME = os.getenv("MFA_ISSUER_NAME", "Enrollment Admin")

# Redis for lockout counters and the arq worker; counters stay in memory when unset
REDIS_URL = os.getenv("REDIS_URL")

# Payment provider checkout API
PAYMENT_API_URL = os.getenv("PAYMENT_API_URL", "").rstrip("/")
PAYMENT_API_KEY = os.getenv("PAYMENT_API_KEY")
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "15"))
CHECKOUT_SESSION_MINUTES = int(os.getenv("CHECKOUT_SESSION_MINUTES", "30"))

# Consent documents generated when an enrollment is paid
CONSENT_PDF_DIR = os.getenv("CONSENT_PDF_DIR", "./consent-documents")
