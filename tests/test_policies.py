"""Policy snapshots"""

import hashlib

from enrollflow.models import Policy


def policy_payload(**overrides):
    payload = {
        "name": "Surgery Deposit Terms",
        "terms_url": "https://clinic.example/terms-v2",
        "privacy_url": "https://clinic.example/privacy-v2",
        "version": "2025-02",
        "terms_text": "Version two of the deposit terms.",
    }
    payload.update(overrides)
    return payload


def test_create_policy_hashes_terms_text(client, admin_headers):
    response = client.post("/admin/policies", json=policy_payload(), headers=admin_headers)

    assert response.status_code == 201
    assert (
        response.json()["terms_content_sha256"]
        == hashlib.sha256(b"Version two of the deposit terms.").hexdigest()
    )


def test_new_default_replaces_previous_default(client, db, admin_headers, default_policy):
    response = client.post(
        "/admin/policies", json=policy_payload(is_default=True), headers=admin_headers
    )

    db.expire_all()
    defaults = db.query(Policy).filter(Policy.is_default.is_(True)).all()
    assert [p.id for p in defaults] == [response.json()["id"]]


def test_enrollments_snapshot_the_default_policy(client, admin_headers, default_policy):
    client.post("/admin/policies", json=policy_payload(is_default=True), headers=admin_headers)
    body = client.post(
        "/enrollments",
        json={"zoho_record_id": "1", "zoho_module": "Deals", "amount_cents": 100},
        headers={"x-shared-secret": "crm-shared-secret"},
    ).json()

    detail = client.get(f"/admin/enrollments/{body['enrollment_id']}", headers=admin_headers)
    assert detail.json()["terms_version"] == "2025-02"


def test_list_policies(client, admin_headers, default_policy):
    body = client.get("/admin/policies", headers=admin_headers).json()
    assert [p["name"] for p in body] == ["Standard Terms"]


def test_policy_urls_must_be_http(client, admin_headers):
    response = client.post(
        "/admin/policies",
        json=policy_payload(terms_url="javascript:alert(1)"),
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_viewer_cannot_create_policy(client, make_admin):
    _, headers = make_admin(role="viewer")
    assert client.post("/admin/policies", json=policy_payload(), headers=headers).status_code == 403
