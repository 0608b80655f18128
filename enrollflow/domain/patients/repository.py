"""Patient repository - patient and surgeon directory queries"""

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Enrollment, Patient, Surgeon


class PatientRepository:
    @staticmethod
    def list_patients(
        db: Session, search: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> list[Patient]:
        query = db.query(Patient)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Patient.name.ilike(pattern),
                    Patient.email.ilike(pattern),
                    Patient.phone.ilike(pattern),
                )
            )
        return query.order_by(Patient.name).offset(offset).limit(limit).all()

    @staticmethod
    def get_patient(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def get_by_email(db: Session, email: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.email == email).first()

    @staticmethod
    def get_by_phone(db: Session, phone: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.phone == phone).first()

    @staticmethod
    def get_enrollments(db: Session, patient_id: str) -> list[Enrollment]:
        return (
            db.query(Enrollment)
            .filter(Enrollment.patient_id == patient_id)
            .order_by(Enrollment.created_at.desc())
            .all()
        )

    @staticmethod
    def unlinked_enrollments(db: Session) -> list[Enrollment]:
        """Enrollments with an email that are not attached to a patient yet"""
        return (
            db.query(Enrollment)
            .filter(Enrollment.patient_id.is_(None), Enrollment.patient_email.isnot(None))
            .order_by(Enrollment.created_at)
            .all()
        )


class SurgeonRepository:
    @staticmethod
    def list_surgeons(db: Session, include_inactive: bool = False) -> list[Surgeon]:
        query = db.query(Surgeon)
        if not include_inactive:
            query = query.filter(Surgeon.is_active.is_(True))
        return query.order_by(Surgeon.name).all()

    @staticmethod
    def get_surgeon(db: Session, surgeon_id: str) -> Optional[Surgeon]:
        return db.query(Surgeon).filter(Surgeon.id == surgeon_id).first()

    @staticmethod
    def get_by_zoho_id(db: Session, zoho_id: str) -> Optional[Surgeon]:
        return db.query(Surgeon).filter(Surgeon.zoho_id == zoho_id).first()
