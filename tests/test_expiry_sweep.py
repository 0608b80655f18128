"""Batch expiry sweep"""

import asyncio
from datetime import timedelta

from sqlalchemy import update

from enrollflow.database import engine
from enrollflow.domain.enrollments.repository import EnrollmentRepository
from enrollflow.models import Enrollment, EnrollmentEvent
from enrollflow.services.expiry_sweeper import expire_overdue_enrollments

CRON_HEADERS = {"x-cron-secret": "cron-secret"}


def test_sweep_requires_cron_secret(client):
    assert client.post("/status/automation/expire").status_code == 401
    response = client.post("/status/automation/expire", headers={"x-cron-secret": "wrong"})
    assert response.status_code == 401


def test_sweep_expires_only_overdue_active_enrollments(
    client, db, fetch, fake_crm, make_enrollment
):
    overdue_created, _ = make_enrollment(expires_in=timedelta(hours=-1), zoho_record_id="a")
    overdue_opened, _ = make_enrollment(
        status="opened", expires_in=timedelta(minutes=-1), zoho_record_id="b"
    )
    overdue_processing, _ = make_enrollment(
        status="processing", expires_in=timedelta(hours=-3), zoho_record_id="c"
    )
    overdue_paid, _ = make_enrollment(
        status="paid", expires_in=timedelta(hours=-3), zoho_record_id="d"
    )
    still_valid, _ = make_enrollment(expires_in=timedelta(hours=5), zoho_record_id="e")

    response = client.post("/status/automation/expire", headers=CRON_HEADERS)

    assert response.status_code == 200
    assert response.json()["expired"] == 2
    assert response.json()["checked"] == 2
    assert fetch(db, overdue_created.id).status == "expired"
    assert fetch(db, overdue_opened.id).status == "expired"
    assert fetch(db, overdue_processing.id).status == "processing"
    assert fetch(db, overdue_paid.id).status == "paid"
    assert fetch(db, still_valid.id).status == "created"

    assert sorted(fake_crm.statuses_for(overdue_created.id)) == ["Expired"]
    note = [c for c in fake_crm.calls if c["enrollment_id"] == overdue_opened.id][0]
    assert note["note_title"] == "Enrollment Expired"
    assert note["note_content"] == (
        "Enrollment link expired without payment. Amount: $500.00"
    )


def test_second_sweep_is_a_no_op(client, db, make_enrollment):
    enrollment, _ = make_enrollment(expires_in=timedelta(hours=-1))

    client.post("/status/automation/expire", headers=CRON_HEADERS)
    second = client.post("/status/automation/expire", headers=CRON_HEADERS).json()

    assert second["expired"] == 0
    events = (
        db.query(EnrollmentEvent)
        .filter_by(enrollment_id=enrollment.id, event_type="auto_expired")
        .count()
    )
    assert events == 1


def test_sweep_skips_rows_moved_by_a_concurrent_writer(
    db, fetch, fake_crm, make_enrollment, monkeypatch
):
    racing, _ = make_enrollment(expires_in=timedelta(hours=-1), zoho_record_id="race")
    plain, _ = make_enrollment(expires_in=timedelta(hours=-1), zoho_record_id="plain")

    original = EnrollmentRepository.get_overdue

    def get_overdue_then_pay(session, statuses, now):
        rows = original(session, statuses, now)
        # A payment lands after the batch was selected but before it is written
        with engine.begin() as conn:
            conn.execute(
                update(Enrollment).where(Enrollment.id == racing.id).values(status="paid")
            )
        return rows

    monkeypatch.setattr(EnrollmentRepository, "get_overdue", staticmethod(get_overdue_then_pay))

    summary = asyncio.run(expire_overdue_enrollments(db, fake_crm))

    assert summary == {"checked": 2, "expired": 1, "skipped": 1, "errors": 0}
    assert fetch(db, racing.id).status == "paid"
    assert fetch(db, racing.id).expired_at is None
    assert fetch(db, plain.id).status == "expired"
    assert fake_crm.statuses_for(racing.id) == []
    assert (
        db.query(EnrollmentEvent)
        .filter_by(enrollment_id=racing.id, event_type="auto_expired")
        .count()
        == 0
    )


def test_sweep_with_nothing_to_do(db, fake_crm):
    summary = asyncio.run(expire_overdue_enrollments(db, fake_crm))
    assert summary == {"checked": 0, "expired": 0, "skipped": 0, "errors": 0}
