"""Patient service - patient directory, enrollment import and surgeon sync"""

import logging
from typing import Any

import httpx
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import AdminUser, Enrollment, Patient, Surgeon
from ...services.crm_sync import CRMError, ZohoCRMClient
from ...shared.validators import validate_uuid
from ...utils.sanitization import sanitize_string
from .repository import PatientRepository, SurgeonRepository
from .schemas import PatientCreate

logger = logging.getLogger(__name__)

SURGEONS_MODULE = "Surgeons"


class PatientService:
    def __init__(self, db: Session, crm: ZohoCRMClient):
        self.db = db
        self.crm = crm
        self.repo = PatientRepository()
        self.surgeons = SurgeonRepository()

    # ========================================================================
    # PATIENTS
    # ========================================================================

    def list_patients(self, search, limit: int, offset: int) -> list[Patient]:
        search = sanitize_string(search)
        return self.repo.list_patients(self.db, search, limit, offset)

    def get_patient(self, patient_id: str) -> Patient:
        patient = self.repo.get_patient(self.db, patient_id) if validate_uuid(patient_id) else None
        if not patient:
            raise HTTPException(status_code=404, detail="Patient not found")
        return patient

    def get_enrollments(self, patient_id: str) -> list[Enrollment]:
        self.get_patient(patient_id)
        return self.repo.get_enrollments(self.db, patient_id)

    def create_patient(self, data: PatientCreate, admin: AdminUser) -> Patient:
        if data.surgeon_id and (
            not validate_uuid(data.surgeon_id)
            or not self.surgeons.get_surgeon(self.db, data.surgeon_id)
        ):
            raise HTTPException(status_code=400, detail="Surgeon not found")
        if data.email and self.repo.get_by_email(self.db, data.email):
            raise HTTPException(status_code=409, detail="A patient with this email already exists")
        if data.phone and self.repo.get_by_phone(self.db, data.phone):
            raise HTTPException(status_code=409, detail="A patient with this phone already exists")

        patient = Patient(**data.model_dump())
        self.db.add(patient)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise HTTPException(status_code=409, detail="Patient already exists") from e
        self.db.refresh(patient)
        logger.info(f"✅ Admin {admin.email} created patient {patient.id}")
        return patient

    def import_from_enrollments(self, admin: AdminUser) -> dict[str, Any]:
        """
        Create patients for enrollments that carry an email but no patient.

        Enrollments are grouped by lower-cased email. A patient that already
        has the email is reused; a group whose phone is taken by another
        patient is skipped and reported.
        """
        groups: dict[str, list[Enrollment]] = {}
        for enrollment in self.repo.unlinked_enrollments(self.db):
            email = enrollment.patient_email.strip().lower()
            if email:
                groups.setdefault(email, []).append(enrollment)

        created = linked = skipped = 0
        errors: list[str] = []

        for email, enrollments in groups.items():
            patient = self.repo.get_by_email(self.db, email)
            if patient is None:
                name = next((e.patient_name for e in enrollments if e.patient_name), None)
                phone = next((e.patient_phone for e in enrollments if e.patient_phone), None)
                if phone and self.repo.get_by_phone(self.db, phone):
                    errors.append(f"{email}: phone {phone} belongs to another patient")
                    skipped += len(enrollments)
                    continue

                patient = Patient(name=name or "Unknown", email=email, phone=phone)
                self.db.add(patient)
                self.db.flush()
                created += 1

            for enrollment in enrollments:
                enrollment.patient_id = patient.id
                linked += 1

        self.db.commit()
        logger.info(
            f"📥 Admin {admin.email} imported patients: {created} created, "
            f"{linked} enrollments linked, {skipped} skipped"
        )
        return {"created": created, "linked": linked, "skipped": skipped, "errors": errors}

    # ========================================================================
    # SURGEONS
    # ========================================================================

    def list_surgeons(self, include_inactive: bool) -> list[Surgeon]:
        return self.surgeons.list_surgeons(self.db, include_inactive)

    async def sync_surgeons(self, admin: AdminUser) -> dict[str, Any]:
        """Copy the CRM surgeon directory, upserting by CRM record id"""
        try:
            records = await self.crm.fetch_records(SURGEONS_MODULE)
        except (CRMError, httpx.HTTPError) as e:
            logger.error(f"❌ Surgeon sync failed: {e}")
            raise HTTPException(status_code=502, detail="Failed to fetch surgeons from CRM") from e

        created = updated = 0
        for record in records:
            zoho_id = str(record.get("id") or "").strip()
            if not zoho_id:
                continue

            values = {
                "name": sanitize_string(record.get("Full_Name") or record.get("Name"))
                or "Unknown",
                "email": sanitize_string(record.get("Email")),
                "phone": sanitize_string(record.get("Phone")),
                "specialty": sanitize_string(record.get("Specialty")),
                "is_active": True,
            }
            surgeon = self.surgeons.get_by_zoho_id(self.db, zoho_id)
            if surgeon:
                for field, value in values.items():
                    setattr(surgeon, field, value)
                updated += 1
            else:
                self.db.add(Surgeon(zoho_id=zoho_id, **values))
                self.db.flush()
                created += 1

        self.db.commit()
        logger.info(
            f"🔄 Admin {admin.email} synced surgeons: {created} created, {updated} updated"
        )
        return {"success": True, "total": len(records), "created": created, "updated": updated}
