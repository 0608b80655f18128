"""
Pytest configuration for enrollment API tests.

Environment variables are set at module level because enrollflow.config reads
them at import time, before any test module is collected.
"""

import base64
import os
import tempfile
import time
from datetime import timedelta
from pathlib import Path

_TEST_DIR = tempfile.mkdtemp(prefix="enrollflow-tests-")

os.environ["DATABASE_URL"] = f"sqlite:///{Path(_TEST_DIR) / 'test.db'}"
os.environ["APP_URL"] = "https://enroll.example.test"
os.environ["ENROLLMENT_SHARED_SECRET"] = "crm-shared-secret"
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-enough-length-0123456789"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "whsec_" + base64.b64encode(
    b"payment-webhook-test-key-32bytes"
).decode()
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["CONSENT_PDF_DIR"] = str(Path(_TEST_DIR) / "consent")
for _name in (
    "ZOHO_CLIENT_ID",
    "ZOHO_CLIENT_SECRET",
    "ZOHO_REFRESH_TOKEN",
    "REDIS_URL",
    "PAYMENT_API_URL",
    "PAYMENT_API_KEY",
):
    os.environ.pop(_name, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt as jose_jwt  # noqa: E402

from enrollflow import rate_limiter  # noqa: E402
from enrollflow.database import Base, SessionLocal, engine  # noqa: E402
from enrollflow.domain.enrollments.repository import EnrollmentRepository  # noqa: E402
from enrollflow.domain.enrollments.tokens import issue_token  # noqa: E402
from enrollflow.domain.policies.repository import PolicyRepository  # noqa: E402
from enrollflow.main import app  # noqa: E402
from enrollflow.models import AdminUser, Enrollment  # noqa: E402
from enrollflow.services.crm_sync import CRMError, get_crm_client  # noqa: E402
from enrollflow.services.payment_provider import (  # noqa: E402
    PaymentProviderError,
    get_payment_client,
)
from enrollflow.utils.clock import utcnow  # noqa: E402

Base.metadata.create_all(bind=engine)


class FakeCRM:
    """Records sync calls instead of talking to Zoho"""

    def __init__(self):
        self.calls = []
        self.records = {}
        self.fail_fetch = False

    async def sync_enrollment_status(
        self, enrollment, status_label, note_title=None, note_content=None
    ):
        if not enrollment.is_from_crm:
            return False
        self.calls.append(
            {
                "enrollment_id": enrollment.id,
                "status": status_label,
                "note_title": note_title,
                "note_content": note_content,
            }
        )
        return True

    def statuses_for(self, enrollment_id):
        return [c["status"] for c in self.calls if c["enrollment_id"] == enrollment_id]

    async def fetch_records(self, module, per_page=200):
        if self.fail_fetch:
            raise CRMError("Zoho credentials not configured")
        return list(self.records.get(module, []))


class FakePaymentProvider:
    """Hands out checkout sessions without calling the provider"""

    def __init__(self):
        self.calls = []
        self.is_configured = True
        self.fail = False

    async def create_checkout_session(self, **kwargs):
        if self.fail:
            raise PaymentProviderError("Failed to create checkout session: 500")
        self.calls.append(kwargs)
        number = len(self.calls)
        return {
            "id": f"cs_test_{number}",
            "url": f"https://pay.example.test/c/cs_test_{number}",
            "customer_id": "cus_1",
        }


@pytest.fixture(autouse=True)
def clean_database():
    """Every test starts with empty tables and fresh lockout counters"""
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    rate_limiter.memory_cache.clear()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_crm():
    crm = FakeCRM()
    app.dependency_overrides[get_crm_client] = lambda: crm
    yield crm
    app.dependency_overrides.pop(get_crm_client, None)


@pytest.fixture
def fake_payments():
    provider = FakePaymentProvider()
    app.dependency_overrides[get_payment_client] = lambda: provider
    yield provider
    app.dependency_overrides.pop(get_payment_client, None)


@pytest.fixture
def client(fake_crm, fake_payments):
    return TestClient(app)


def make_access_token(user_id: str, audience: str = "authenticated", expires_in: int = 3600):
    now = int(time.time())
    return jose_jwt.encode(
        {"sub": user_id, "aud": audience, "iat": now, "exp": now + expires_in},
        os.environ["SUPABASE_JWT_SECRET"],
        algorithm="HS256",
    )


@pytest.fixture
def make_admin(db):
    def _make_admin(role="admin", accepted=True, email=None):
        user_id = f"user-{role}-{time.time_ns()}"
        admin = AdminUser(
            user_id=user_id,
            email=email or f"{user_id}@clinic.example",
            role=role,
            accepted_at=utcnow() if accepted else None,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        return admin, {"Authorization": f"Bearer {make_access_token(user_id)}"}

    return _make_admin


@pytest.fixture
def admin_headers(make_admin):
    _, headers = make_admin()
    return headers


@pytest.fixture
def default_policy(db):
    return PolicyRepository.create_policy(
        db,
        name="Standard Terms",
        description=None,
        terms_url="https://clinic.example/terms",
        privacy_url="https://clinic.example/privacy",
        version="2024-01",
        terms_text="Deposit is refundable up to 7 days before surgery.",
        privacy_text="We keep your data private.",
        is_default=True,
    )


@pytest.fixture
def make_enrollment(db, default_policy):
    """Insert an enrollment directly; returns (enrollment, raw_token)"""

    def _make_enrollment(
        status="created",
        expires_in=timedelta(hours=48),
        zoho_module="Deals",
        zoho_record_id="zr-1001",
        amount_cents=50000,
        patient_email="jane@example.com",
        **extra,
    ):
        token = issue_token()
        enrollment = EnrollmentRepository.create_enrollment(
            db,
            event_type="created",
            event_data={"source": "test"},
            token_hash=token.hash,
            token_last4=token.last4,
            zoho_module=zoho_module,
            zoho_record_id=zoho_record_id,
            patient_name="Jane Doe",
            patient_email=patient_email,
            amount_cents=amount_cents,
            currency="usd",
            status=status,
            expires_at=utcnow() + expires_in,
            policy_id=default_policy.id,
            terms_url=default_policy.terms_url,
            privacy_url=default_policy.privacy_url,
            terms_version=default_policy.version,
            terms_sha256=default_policy.terms_content_sha256,
            **extra,
        )
        return enrollment, token.raw

    return _make_enrollment


def reload(db, enrollment_id) -> Enrollment:
    """Fresh copy of a row written by another session"""
    db.expire_all()
    return db.get(Enrollment, enrollment_id)


@pytest.fixture
def fetch():
    return reload
