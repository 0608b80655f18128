"""Link regeneration"""

from datetime import timedelta

import pytest

from enrollflow.utils.clock import utcnow


def regenerate(client, headers, enrollment_id, hours=24):
    expires_at = (utcnow() + timedelta(hours=hours)).isoformat() + "Z"
    return client.post(
        f"/admin/enrollments/{enrollment_id}/regenerate",
        json={"expires_at": expires_at},
        headers=headers,
    )


@pytest.mark.parametrize("status", ["paid", "processing"])
def test_regeneration_rejected_for_paid_and_processing(
    client, db, fetch, admin_headers, make_enrollment, status
):
    enrollment, token = make_enrollment(status=status)

    response = regenerate(client, admin_headers, enrollment.id)

    assert response.status_code == 400
    assert "paid or processing" in response.json()["message"]
    stored = fetch(db, enrollment.id)
    assert stored.status == status
    assert stored.token_last4 == token[-4:]


@pytest.mark.parametrize("status", ["expired", "failed", "canceled"])
def test_regeneration_resets_terminal_enrollment(
    client, db, fetch, admin_headers, fake_crm, make_enrollment, status
):
    enrollment, old_token = make_enrollment(
        status=status,
        payment_method_type="card",
        payment_intent_id="pi_123",
        terms_accepted_at=utcnow(),
        signature_data="data:image/png;base64,AAAA",
        failed_at=utcnow(),
        expired_at=utcnow(),
        canceled_at=utcnow(),
    )

    response = regenerate(client, admin_headers, enrollment.id)

    assert response.status_code == 200
    new_token = response.json()["enrollment_url"].rsplit("/", 1)[-1]
    assert new_token != old_token

    stored = fetch(db, enrollment.id)
    assert stored.status == "created"
    assert stored.token_last4 == new_token[-4:]
    for field in (
        "opened_at",
        "failed_at",
        "expired_at",
        "canceled_at",
        "terms_accepted_at",
        "signature_data",
        "payment_method_type",
        "payment_intent_id",
    ):
        assert getattr(stored, field) is None, field

    assert fake_crm.calls[-1]["status"] == "Created"
    assert fake_crm.calls[-1]["note_title"] == "Enrollment Link Regenerated"


def test_old_token_stops_resolving(client, admin_headers, make_enrollment):
    enrollment, old_token = make_enrollment(status="expired")

    new_token = (
        regenerate(client, admin_headers, enrollment.id)
        .json()["enrollment_url"]
        .rsplit("/", 1)[-1]
    )

    assert client.post("/enrollments/lookup", json={"token": old_token}).status_code == 404
    lookup = client.post("/enrollments/lookup", json={"token": new_token})
    assert lookup.status_code == 200
    assert lookup.json()["status"] == "opened"


def test_regeneration_requires_future_expiry(client, admin_headers, make_enrollment):
    enrollment, _ = make_enrollment(status="expired")
    response = regenerate(client, admin_headers, enrollment.id, hours=-2)
    assert response.status_code == 400
    assert response.json()["message"] == "Expiration date must be in the future"


def test_regeneration_writes_audit_event(client, admin_headers, make_enrollment):
    enrollment, _ = make_enrollment(status="failed")
    regenerate(client, admin_headers, enrollment.id)

    events = client.get(
        f"/admin/enrollments/{enrollment.id}/events", headers=admin_headers
    ).json()
    assert events[-1]["event_type"] == "regenerated"
    assert events[-1]["event_data"]["from_status"] == "failed"


def test_regeneration_of_unknown_enrollment(client, admin_headers):
    response = regenerate(client, admin_headers, "00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404


def test_viewer_cannot_regenerate(client, make_admin, make_enrollment):
    _, headers = make_admin(role="viewer")
    enrollment, _ = make_enrollment(status="expired")
    assert regenerate(client, headers, enrollment.id).status_code == 403
