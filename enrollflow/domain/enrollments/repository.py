"""Enrollment repository - Database operations for enrollments"""

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Enrollment, EnrollmentEvent, Patient, Policy


class EnrollmentRepository:
    """Repository for enrollment database operations"""

    @staticmethod
    def get_by_id(db: Session, enrollment_id: str) -> Optional[Enrollment]:
        return db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()

    @staticmethod
    def get_by_token_hash(db: Session, token_hash: str) -> Optional[Enrollment]:
        """token_hash is unique, so this is at most one row"""
        return db.query(Enrollment).filter(Enrollment.token_hash == token_hash).one_or_none()

    @staticmethod
    def list_enrollments(
        db: Session,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Enrollment]:
        query = db.query(Enrollment)
        if status:
            query = query.filter(Enrollment.status == status)
        return query.order_by(Enrollment.created_at.desc()).offset(offset).limit(limit).all()

    @staticmethod
    def get_events(db: Session, enrollment_id: str) -> list[EnrollmentEvent]:
        return (
            db.query(EnrollmentEvent)
            .filter(EnrollmentEvent.enrollment_id == enrollment_id)
            .order_by(EnrollmentEvent.id.asc())
            .all()
        )

    @staticmethod
    def create_enrollment(db: Session, event_type: str, event_data: dict, **values) -> Enrollment:
        """Insert an enrollment together with its first audit event"""
        enrollment = Enrollment(**values)
        db.add(enrollment)
        db.flush()
        db.add(
            EnrollmentEvent(
                enrollment_id=enrollment.id, event_type=event_type, event_data=event_data
            )
        )
        db.commit()
        db.refresh(enrollment)
        return enrollment

    @staticmethod
    def add_event(
        db: Session, enrollment_id: str, event_type: str, event_data: Optional[dict] = None
    ) -> EnrollmentEvent:
        event = EnrollmentEvent(
            enrollment_id=enrollment_id, event_type=event_type, event_data=event_data
        )
        db.add(event)
        return event

    @staticmethod
    def update_if_status_in(
        db: Session,
        enrollment_id: str,
        allowed_statuses: Iterable[str],
        values: dict[str, Any],
    ) -> int:
        """
        Atomic conditional update: only touches the row while its status is still
        one of allowed_statuses. Returns the number of rows updated (0 or 1).
        Does not commit.
        """
        return (
            db.query(Enrollment)
            .filter(
                Enrollment.id == enrollment_id,
                Enrollment.status.in_(list(allowed_statuses)),
            )
            .update(values, synchronize_session=False)
        )

    @staticmethod
    def get_overdue(
        db: Session, statuses: Iterable[str], now: datetime
    ) -> list[Enrollment]:
        return (
            db.query(Enrollment)
            .filter(Enrollment.status.in_(list(statuses)), Enrollment.expires_at < now)
            .order_by(Enrollment.expires_at.asc())
            .all()
        )

    @staticmethod
    def count_by_status(db: Session) -> dict[str, int]:
        rows = (
            db.query(Enrollment.status, func.count(Enrollment.id).label("count"))
            .group_by(Enrollment.status)
            .all()
        )
        return {status: count for status, count in rows}

    @staticmethod
    def get_active_policy(db: Session, policy_id: str) -> Optional[Policy]:
        return (
            db.query(Policy).filter(Policy.id == policy_id, Policy.is_active.is_(True)).first()
        )

    @staticmethod
    def get_default_policy(db: Session) -> Optional[Policy]:
        return (
            db.query(Policy)
            .filter(Policy.is_default.is_(True), Policy.is_active.is_(True))
            .first()
        )

    @staticmethod
    def get_patient(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()
