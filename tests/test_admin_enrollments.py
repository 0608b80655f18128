"""Admin dashboard enrollment endpoints and admin authentication"""

from datetime import timedelta

from jose import jwt as jose_jwt

from enrollflow.models import Enrollment
from enrollflow.utils.clock import utcnow


def future(hours=24):
    return (utcnow() + timedelta(hours=hours)).isoformat() + "Z"


def admin_payload(**overrides):
    payload = {
        "patient_name": "John Smith",
        "patient_email": "john@example.com",
        "amount_cents": 75000,
        "expires_at": future(),
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Authentication
# ============================================================================


def test_missing_bearer_token_is_unauthorized(client):
    response = client.get("/admin/enrollments")
    assert response.status_code == 401
    assert "Not authenticated" in response.json()["message"]


def test_garbage_token_is_unauthorized(client):
    response = client.get("/admin/enrollments", headers={"Authorization": "Bearer abc"})
    assert response.status_code == 401


def test_token_signed_with_wrong_secret(client, make_admin):
    admin, _ = make_admin()
    token = jose_jwt.encode(
        {"sub": admin.user_id, "aud": "authenticated"}, "other-secret", algorithm="HS256"
    )
    response = client.get("/admin/enrollments", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_unknown_user_is_forbidden(client):
    token = jose_jwt.encode(
        {"sub": "not-an-admin", "aud": "authenticated"},
        "test-jwt-secret-with-enough-length-0123456789",
        algorithm="HS256",
    )
    response = client.get("/admin/enrollments", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


def test_pending_invite_is_forbidden(client, make_admin):
    _, headers = make_admin(accepted=False)
    assert client.get("/admin/enrollments", headers=headers).status_code == 403


def test_viewer_can_read_but_not_write(client, make_admin, default_policy):
    _, headers = make_admin(role="viewer")
    assert client.get("/admin/enrollments", headers=headers).status_code == 200
    response = client.post("/admin/enrollments", json=admin_payload(), headers=headers)
    assert response.status_code == 403
    assert response.json()["message"] == "Insufficient permissions"


# ============================================================================
# Create
# ============================================================================


def test_admin_create_manual_enrollment(client, db, admin_headers, default_policy):
    response = client.post("/admin/enrollments", json=admin_payload(), headers=admin_headers)

    assert response.status_code == 201
    body = response.json()
    enrollment = db.get(Enrollment, body["enrollment_id"])
    assert enrollment.zoho_module == "manual"
    assert enrollment.zoho_record_id.startswith("manual_")
    assert not enrollment.is_from_crm
    assert enrollment.policy_id == default_policy.id
    assert body["token_last4"] == body["enrollment_url"][-4:]


def test_admin_create_rejects_past_expiry(client, admin_headers, default_policy):
    response = client.post(
        "/admin/enrollments",
        json=admin_payload(expires_at=future(hours=-1)),
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Expiration date must be in the future"


def test_admin_create_requires_a_policy(client, admin_headers):
    response = client.post("/admin/enrollments", json=admin_payload(), headers=admin_headers)
    assert response.status_code == 400


def test_admin_create_rejects_unknown_patient(client, admin_headers, default_policy):
    response = client.post(
        "/admin/enrollments",
        json=admin_payload(patient_id="00000000-0000-0000-0000-000000000000"),
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Patient not found"


def test_admin_create_rejects_bad_email(client, admin_headers, default_policy):
    response = client.post(
        "/admin/enrollments",
        json=admin_payload(patient_email="not-an-email"),
        headers=admin_headers,
    )
    assert response.status_code == 400


# ============================================================================
# Read
# ============================================================================


def test_list_and_filter_by_status(client, admin_headers, make_enrollment):
    make_enrollment()
    make_enrollment(status="paid", zoho_record_id="zr-2")

    everything = client.get("/admin/enrollments", headers=admin_headers).json()
    paid = client.get("/admin/enrollments?status=paid", headers=admin_headers).json()

    assert len(everything) == 2
    assert [e["status"] for e in paid] == ["paid"]
    assert "token_hash" not in paid[0]


def test_list_rejects_unknown_status(client, admin_headers):
    response = client.get("/admin/enrollments?status=bogus", headers=admin_headers)
    assert response.status_code == 400


def test_detail_and_events(client, admin_headers, make_enrollment):
    enrollment, token = make_enrollment()
    client.post("/enrollments/lookup", json={"token": token})

    detail = client.get(f"/admin/enrollments/{enrollment.id}", headers=admin_headers).json()
    events = client.get(
        f"/admin/enrollments/{enrollment.id}/events", headers=admin_headers
    ).json()

    assert detail["status"] == "opened"
    assert detail["token_last4"] == token[-4:]
    assert [e["event_type"] for e in events] == ["created", "opened"]
    assert events[1]["event_data"]["from_status"] == "created"


def test_detail_of_unknown_enrollment(client, admin_headers):
    response = client.get("/admin/enrollments/not-a-uuid", headers=admin_headers)
    assert response.status_code == 404


# ============================================================================
# Status actions
# ============================================================================


def test_mark_sent(client, admin_headers, fake_crm, make_enrollment):
    enrollment, _ = make_enrollment()

    response = client.post(
        f"/admin/enrollments/{enrollment.id}/mark-sent", headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["status"] == "sent"
    assert fake_crm.statuses_for(enrollment.id) == ["Sent"]


def test_mark_sent_only_from_created(client, admin_headers, make_enrollment):
    enrollment, _ = make_enrollment(status="opened")
    response = client.post(
        f"/admin/enrollments/{enrollment.id}/mark-sent", headers=admin_headers
    )
    assert response.status_code == 400


def test_cancel_active_enrollment(client, admin_headers, fake_crm, make_enrollment):
    enrollment, token = make_enrollment()

    response = client.post(
        f"/admin/enrollments/{enrollment.id}/cancel",
        json={"reason": "Surgery rescheduled"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "canceled"
    assert response.json()["canceled_at"] is not None
    assert fake_crm.calls[-1]["note_title"] == "Enrollment Canceled"
    assert "Surgery rescheduled" in fake_crm.calls[-1]["note_content"]

    lookup = client.post("/enrollments/lookup", json={"token": token})
    assert lookup.json()["status"] == "canceled"


def test_cancel_paid_enrollment_is_rejected(client, admin_headers, make_enrollment):
    enrollment, _ = make_enrollment(status="paid")
    response = client.post(
        f"/admin/enrollments/{enrollment.id}/cancel", headers=admin_headers
    )
    assert response.status_code == 400
