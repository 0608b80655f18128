"""CRM-originated enrollment creation"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta

from enrollflow.domain.enrollments.tokens import hash_token
from enrollflow.models import Enrollment, EnrollmentEvent
from enrollflow.utils.clock import utcnow

SECRET = "crm-shared-secret"
CRM_HEADERS = {"x-shared-secret": SECRET}


def crm_payload(**overrides):
    payload = {
        "zoho_record_id": "5587000001234",
        "zoho_module": "Deals",
        "patient_name": "Jane Doe",
        "patient_email": "Jane@Example.com",
        "amount_cents": 125000,
    }
    payload.update(overrides)
    return payload


def signed_headers(body: bytes, timestamp_ms=None, secret=SECRET):
    timestamp = str(timestamp_ms if timestamp_ms is not None else int(time.time() * 1000))
    signature = hmac.new(
        secret.encode(), timestamp.encode() + b"." + body, hashlib.sha256
    ).hexdigest()
    return {
        "content-type": "application/json",
        "x-hmac-timestamp": timestamp,
        "x-hmac-signature": signature,
    }


def test_create_with_shared_secret_returns_link(client, db, default_policy):
    response = client.post("/enrollments", json=crm_payload(), headers=CRM_HEADERS)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["enrollment_url"].startswith("https://enroll.example.test/enroll/")
    raw_token = body["enrollment_url"].rsplit("/", 1)[-1]
    assert body["token_last4"] == raw_token[-4:]
    assert body["expires_at"].endswith("Z")

    enrollment = db.get(Enrollment, body["enrollment_id"])
    assert enrollment.token_hash == hash_token(raw_token)
    assert enrollment.status == "created"
    assert enrollment.patient_email == "jane@example.com"
    assert enrollment.policy_id == default_policy.id
    assert enrollment.terms_sha256 == default_policy.terms_content_sha256


def test_raw_token_is_not_persisted(client, db, default_policy):
    body = client.post("/enrollments", json=crm_payload(), headers=CRM_HEADERS).json()
    raw_token = body["enrollment_url"].rsplit("/", 1)[-1]

    enrollment = db.get(Enrollment, body["enrollment_id"])
    stored = {c.name: getattr(enrollment, c.name) for c in Enrollment.__table__.columns}
    assert raw_token not in [v for v in stored.values() if isinstance(v, str)]


def test_default_expiry_is_48_hours(client, db, default_policy):
    body = client.post("/enrollments", json=crm_payload(), headers=CRM_HEADERS).json()
    expires_at = datetime.fromisoformat(body["expires_at"].rstrip("Z"))
    delta = expires_at - utcnow()
    assert timedelta(hours=47, minutes=59) < delta <= timedelta(hours=48)


def test_custom_expiry_hours(client, default_policy):
    body = client.post(
        "/enrollments", json=crm_payload(expires_in_hours=2), headers=CRM_HEADERS
    ).json()
    expires_at = datetime.fromisoformat(body["expires_at"].rstrip("Z"))
    assert expires_at - utcnow() <= timedelta(hours=2)


def test_past_or_zero_expiry_is_rejected(client, default_policy):
    for hours in (0, -5):
        response = client.post(
            "/enrollments", json=crm_payload(expires_in_hours=hours), headers=CRM_HEADERS
        )
        assert response.status_code == 400
        assert "message" in response.json()


def test_created_event_is_logged(client, db, default_policy):
    body = client.post("/enrollments", json=crm_payload(), headers=CRM_HEADERS).json()
    events = db.query(EnrollmentEvent).filter_by(enrollment_id=body["enrollment_id"]).all()
    assert [e.event_type for e in events] == ["created"]
    assert events[0].event_data["source"] == "zoho_crm"
    assert events[0].event_data["policy_name"] == "Standard Terms"


def test_custom_terms_skip_policy_lookup(client, db):
    digest = hashlib.sha256(b"custom terms").hexdigest()
    body = client.post(
        "/enrollments",
        json=crm_payload(
            terms_url="https://clinic.example/custom-terms",
            privacy_url="https://clinic.example/custom-privacy",
            terms_version="v9",
            terms_sha256=digest,
        ),
        headers=CRM_HEADERS,
    ).json()

    enrollment = db.get(Enrollment, body["enrollment_id"])
    assert enrollment.policy_id is None
    assert enrollment.terms_sha256 == digest
    assert enrollment.terms_version == "v9"


def test_missing_default_policy_is_a_validation_error(client):
    response = client.post("/enrollments", json=crm_payload(), headers=CRM_HEADERS)
    assert response.status_code == 400
    assert "No default policy" in response.json()["message"]


def test_unknown_policy_id_is_rejected(client, default_policy):
    response = client.post(
        "/enrollments",
        json=crm_payload(policy_id="00000000-0000-0000-0000-000000000000"),
        headers=CRM_HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Specified policy not found or inactive"


def test_missing_required_fields(client, default_policy):
    response = client.post(
        "/enrollments", json={"zoho_module": "Deals"}, headers=CRM_HEADERS
    )
    assert response.status_code == 400


def test_non_positive_amount_is_rejected(client, default_policy):
    response = client.post(
        "/enrollments", json=crm_payload(amount_cents=0), headers=CRM_HEADERS
    )
    assert response.status_code == 400


def test_wrong_shared_secret_is_unauthorized(client, default_policy):
    response = client.post(
        "/enrollments", json=crm_payload(), headers={"x-shared-secret": "nope"}
    )
    assert response.status_code == 401
    assert response.json() == {"message": "Unauthorized"}


def test_no_credentials_is_unauthorized(client, default_policy):
    response = client.post("/enrollments", json=crm_payload())
    assert response.status_code == 401


def test_hmac_signed_request_is_accepted(client, default_policy):
    body = json.dumps(crm_payload()).encode()
    response = client.post("/enrollments", content=body, headers=signed_headers(body))
    assert response.status_code == 201


def test_hmac_with_tampered_body_is_rejected(client, default_policy):
    body = json.dumps(crm_payload()).encode()
    headers = signed_headers(body)
    tampered = json.dumps(crm_payload(amount_cents=1)).encode()
    response = client.post("/enrollments", content=tampered, headers=headers)
    assert response.status_code == 401


def test_stale_hmac_timestamp_is_rejected(client, default_policy):
    body = json.dumps(crm_payload()).encode()
    stale = int(time.time() * 1000) - 10 * 60 * 1000
    response = client.post("/enrollments", content=body, headers=signed_headers(body, stale))
    assert response.status_code == 401
    assert response.json()["message"] == "Request timestamp expired"


def test_expiry_hours_beyond_one_year_is_rejected(client, db, default_policy):
    for hours in (24 * 365 + 1, 1e12):
        response = client.post(
            "/enrollments", json=crm_payload(expires_in_hours=hours), headers=CRM_HEADERS
        )
        assert response.status_code == 400
        assert response.json()["message"].startswith("expires_in_hours")
    assert db.query(Enrollment).count() == 0


def test_one_year_expiry_is_accepted(client, default_policy):
    response = client.post(
        "/enrollments", json=crm_payload(expires_in_hours=24 * 365), headers=CRM_HEADERS
    )
    assert response.status_code == 201


def test_names_are_stored_as_entered(client, db, default_policy):
    body = client.post(
        "/enrollments",
        json=crm_payload(patient_name="  Smith & Sons <Jr>\x07 "),
        headers=CRM_HEADERS,
    ).json()

    assert db.get(Enrollment, body["enrollment_id"]).patient_name == "Smith & Sons <Jr>"
