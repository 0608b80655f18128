"""Enrollment service - Business logic for enrollment lifecycle operations"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Optional

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import config
from ...models import AdminUser, Enrollment
from ...services.consent_pdf import consent_pdf_location
from ...services.crm_sync import CRM_NOTE_BUILDERS, ZohoCRMClient
from ...services.payment_provider import PaymentProviderClient, PaymentProviderError
from ...shared.validators import validate_uuid
from ...utils.clock import epoch_seconds, isoformat_utc, to_naive_utc, utcnow
from ...utils.sanitization import mask_token
from .repository import EnrollmentRepository
from .schemas import (
    AcceptTermsRequest,
    AdminEnrollmentCreate,
    CheckoutSessionRequest,
    CrmEnrollmentCreate,
    RegenerateEnrollmentRequest,
)
from .state_machine import (
    ACTIVE_STATUSES,
    CRM_STATUS_LABELS,
    NON_REGENERABLE_STATUSES,
    EnrollmentStatus,
    can_regenerate,
    is_active,
    source_statuses_for,
)
from .tokens import IssuedToken, hash_token, issue_token

logger = logging.getLogger(__name__)

MANUAL_MODULE = "manual"

# Lifecycle timestamp stamped when a row enters each status
TIMESTAMP_FIELDS = {
    EnrollmentStatus.OPENED.value: "opened_at",
    EnrollmentStatus.PROCESSING.value: "processing_at",
    EnrollmentStatus.PAID.value: "paid_at",
    EnrollmentStatus.FAILED.value: "failed_at",
    EnrollmentStatus.EXPIRED.value: "expired_at",
    EnrollmentStatus.CANCELED.value: "canceled_at",
}

# Everything a regenerated link must not inherit from the previous attempt
REGENERATION_RESET_FIELDS = {
    "opened_at": None,
    "processing_at": None,
    "paid_at": None,
    "failed_at": None,
    "expired_at": None,
    "canceled_at": None,
    "terms_accepted_at": None,
    "terms_accept_ip": None,
    "terms_accept_user_agent": None,
    "signature_data": None,
    "payment_method_type": None,
    "payment_session_id": None,
    "payment_intent_id": None,
    "payment_customer_id": None,
    "consent_pdf_path": None,
}


def enrollment_url(raw_token: str) -> str:
    return f"{config.APP_URL}/enroll/{raw_token}"


def _status_value(status) -> str:
    return status.value if isinstance(status, EnrollmentStatus) else status


class EnrollmentService:
    """Service layer for enrollment business logic"""

    def __init__(self, db: Session, crm: ZohoCRMClient):
        self.db = db
        self.crm = crm
        self.repo = EnrollmentRepository()

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    async def transition(
        self,
        enrollment: Enrollment,
        new_status,
        event_type: str,
        event_data: Optional[dict[str, Any]] = None,
        restrict_from: Optional[Iterable] = None,
        values: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Move enrollment to new_status with a single guarded UPDATE.

        The UPDATE only matches while the row is still in a legal source state
        (optionally narrowed by restrict_from). On a match the audit event is
        committed in the same transaction and the CRM is notified. Returns
        False, with no event and no CRM call, when another writer got there
        first; the passed instance is refreshed either way.
        """
        new_status = _status_value(new_status)
        sources = source_statuses_for(new_status, restrict_from)
        previous_status = enrollment.status

        update = {"status": new_status}
        timestamp_field = TIMESTAMP_FIELDS.get(new_status)
        if timestamp_field:
            update[timestamp_field] = utcnow()
        if values:
            update.update(values)

        updated = self.repo.update_if_status_in(self.db, enrollment.id, sources, update)
        if updated != 1:
            self.db.rollback()
            self.db.refresh(enrollment)
            logger.info(
                f"⏭️ Enrollment {enrollment.id} not moved to {new_status}: "
                f"status is now {enrollment.status}"
            )
            return False

        self.repo.add_event(
            self.db,
            enrollment.id,
            event_type,
            {"from_status": previous_status, "to_status": new_status, **(event_data or {})},
        )
        self.db.commit()
        self.db.refresh(enrollment)
        logger.info(f"🔄 Enrollment {enrollment.id}: {previous_status} → {new_status}")

        await self.sync_crm(enrollment, new_status, event_data or {})
        return True

    async def sync_crm(self, enrollment: Enrollment, status: str, context: dict) -> bool:
        """Best-effort status push; never raises"""
        build_note = CRM_NOTE_BUILDERS.get(status)
        title, content = build_note(enrollment, context) if build_note else (None, None)
        return await self.crm.sync_enrollment_status(
            enrollment, CRM_STATUS_LABELS[status], note_title=title, note_content=content
        )

    async def expire_if_overdue(self, enrollment: Enrollment, expired_by: str) -> bool:
        """Lazily expire an active enrollment whose link is past its expiry"""
        if not is_active(enrollment.status) or enrollment.expires_at >= utcnow():
            return False
        return await self.transition(
            enrollment,
            EnrollmentStatus.EXPIRED,
            "expired",
            {"expired_by": expired_by, "expires_at": isoformat_utc(enrollment.expires_at)},
            restrict_from=ACTIVE_STATUSES,
        )

    # ========================================================================
    # CREATION
    # ========================================================================

    def _resolve_policy_id(self, policy_id: str):
        if not validate_uuid(policy_id):
            raise HTTPException(status_code=400, detail="Invalid policy_id")
        policy = self.repo.get_active_policy(self.db, policy_id)
        if not policy:
            raise HTTPException(status_code=400, detail="Specified policy not found or inactive")
        return policy

    def _default_policy(self):
        policy = self.repo.get_default_policy(self.db)
        if not policy:
            raise HTTPException(
                status_code=400,
                detail="No default policy found. Create a policy first, or pass "
                "terms_url, privacy_url, terms_version, and terms_sha256.",
            )
        return policy

    @staticmethod
    def _policy_snapshot(policy) -> dict[str, Any]:
        return {
            "policy_id": policy.id,
            "terms_url": policy.terms_url,
            "privacy_url": policy.privacy_url,
            "terms_version": policy.version,
            "terms_sha256": policy.terms_content_sha256,
        }

    def create_from_crm(self, data: CrmEnrollmentCreate) -> tuple[Enrollment, IssuedToken]:
        """Create an enrollment requested by the CRM"""
        if data.policy_id:
            policy = self._resolve_policy_id(data.policy_id)
            snapshot = self._policy_snapshot(policy)
            policy_name = policy.name
        elif data.terms_url and data.terms_sha256:
            snapshot = {
                "policy_id": None,
                "terms_url": data.terms_url,
                "privacy_url": data.privacy_url or data.terms_url,
                "terms_version": data.terms_version or "custom",
                "terms_sha256": data.terms_sha256,
            }
            policy_name = "custom"
        else:
            policy = self._default_policy()
            snapshot = self._policy_snapshot(policy)
            policy_name = policy.name

        hours = (
            data.expires_in_hours
            if data.expires_in_hours is not None
            else config.DEFAULT_EXPIRES_IN_HOURS
        )
        expires_at = utcnow() + timedelta(hours=hours)
        token = issue_token()

        enrollment = self.repo.create_enrollment(
            self.db,
            event_type="created",
            event_data={
                "source": "zoho_crm",
                "zoho_record_id": data.zoho_record_id,
                "zoho_module": data.zoho_module,
                "amount_cents": data.amount_cents,
                "expires_at": isoformat_utc(expires_at),
                "policy_id": snapshot["policy_id"],
                "policy_name": policy_name,
            },
            token_hash=token.hash,
            token_last4=token.last4,
            zoho_module=data.zoho_module,
            zoho_record_id=data.zoho_record_id,
            patient_name=data.patient_name,
            patient_email=data.patient_email,
            patient_phone=data.patient_phone,
            amount_cents=data.amount_cents,
            currency=data.currency,
            status=EnrollmentStatus.CREATED.value,
            expires_at=expires_at,
            **snapshot,
        )
        logger.info(
            f"✅ Created enrollment {enrollment.id} for Zoho record {data.zoho_record_id}"
        )
        return enrollment, token

    def create_by_admin(
        self, data: AdminEnrollmentCreate, admin: AdminUser
    ) -> tuple[Enrollment, IssuedToken]:
        """Create a manual enrollment from the dashboard"""
        expires_at = to_naive_utc(data.expires_at)
        if expires_at <= utcnow():
            raise HTTPException(status_code=400, detail="Expiration date must be in the future")

        if data.patient_id:
            if not validate_uuid(data.patient_id) or not self.repo.get_patient(
                self.db, data.patient_id
            ):
                raise HTTPException(status_code=400, detail="Patient not found")

        policy = (
            self._resolve_policy_id(data.policy_id) if data.policy_id else self._default_policy()
        )
        token = issue_token()
        record_id = f"manual_{int(epoch_seconds(utcnow()) * 1000)}"

        enrollment = self.repo.create_enrollment(
            self.db,
            event_type="created",
            event_data={
                "source": "admin_dashboard",
                "created_by": admin.email,
                "amount_cents": data.amount_cents,
                "expires_at": isoformat_utc(expires_at),
                "policy_id": policy.id,
                "policy_name": policy.name,
            },
            token_hash=token.hash,
            token_last4=token.last4,
            zoho_module=MANUAL_MODULE,
            zoho_record_id=record_id,
            patient_id=data.patient_id,
            patient_name=data.patient_name,
            patient_email=data.patient_email,
            patient_phone=data.patient_phone,
            amount_cents=data.amount_cents,
            currency=data.currency,
            status=EnrollmentStatus.CREATED.value,
            expires_at=expires_at,
            **self._policy_snapshot(policy),
        )
        logger.info(f"✅ Admin {admin.email} created manual enrollment {enrollment.id}")
        return enrollment, token

    @staticmethod
    def link_response(enrollment: Enrollment, token: IssuedToken) -> dict[str, Any]:
        return {
            "success": True,
            "enrollment_id": enrollment.id,
            "enrollment_url": enrollment_url(token.raw),
            "expires_at": isoformat_utc(enrollment.expires_at),
            "token_last4": token.last4,
        }

    # ========================================================================
    # PATIENT ACCESS
    # ========================================================================

    def _get_by_token(self, raw_token: str) -> Enrollment:
        enrollment = self.repo.get_by_token_hash(self.db, hash_token(raw_token))
        if not enrollment:
            logger.info(f"🔍 No enrollment for token {mask_token(raw_token)}")
            raise HTTPException(status_code=404, detail="Enrollment not found")
        return enrollment

    async def fetch_by_token(self, raw_token: str) -> Enrollment:
        """
        Patient lookup by link token.

        Overdue active enrollments are expired on the spot; the first
        successful view of a created/sent enrollment marks it opened.
        """
        enrollment = self._get_by_token(raw_token)

        await self.expire_if_overdue(enrollment, expired_by="lookup")

        if (
            enrollment.status in (EnrollmentStatus.CREATED.value, EnrollmentStatus.SENT.value)
            and enrollment.opened_at is None
        ):
            await self.transition(
                enrollment,
                EnrollmentStatus.OPENED,
                "opened",
                restrict_from={EnrollmentStatus.CREATED, EnrollmentStatus.SENT},
            )

        return enrollment

    @staticmethod
    def to_public(enrollment: Enrollment) -> dict[str, Any]:
        policy = enrollment.policy
        first_name = enrollment.patient_name.split()[0] if enrollment.patient_name else None
        return {
            "id": enrollment.id,
            "patient_first_name": first_name,
            "patient_name": enrollment.patient_name,
            "patient_email": enrollment.patient_email,
            "patient_phone": enrollment.patient_phone,
            "amount_cents": enrollment.amount_cents,
            "currency": enrollment.currency,
            "status": enrollment.status,
            "expires_at": enrollment.expires_at,
            "terms_version": enrollment.terms_version,
            "terms_url": enrollment.terms_url,
            "privacy_url": enrollment.privacy_url,
            "terms_text": policy.terms_text if policy else None,
            "privacy_text": policy.privacy_text if policy else None,
            "terms_sha256": enrollment.terms_sha256,
            "opened_at": enrollment.opened_at,
            "terms_accepted_at": enrollment.terms_accepted_at,
            "surgeon_name": enrollment.patient.surgeon_name if enrollment.patient else None,
        }

    @staticmethod
    def _ensure_payable(enrollment: Enrollment) -> None:
        """Reject anything but an active enrollment, naming the reason"""
        if enrollment.status == EnrollmentStatus.PAID.value:
            raise HTTPException(status_code=400, detail="Enrollment already paid")
        if enrollment.status == EnrollmentStatus.CANCELED.value:
            raise HTTPException(status_code=400, detail="Enrollment has been canceled")
        if enrollment.status == EnrollmentStatus.EXPIRED.value:
            raise HTTPException(status_code=400, detail="Enrollment has expired")
        if not is_active(enrollment.status):
            raise HTTPException(status_code=400, detail="Enrollment is not active")

    async def accept_terms(
        self,
        data: AcceptTermsRequest,
        client_ip: Optional[str],
        user_agent: Optional[str],
    ) -> Enrollment:
        """Record the patient's acceptance of the snapshotted terms"""
        if not data.terms_accepted:
            raise HTTPException(status_code=400, detail="Terms must be accepted")

        enrollment = self._get_by_token(data.token)
        await self.expire_if_overdue(enrollment, expired_by="accept_terms")
        self._ensure_payable(enrollment)

        accepted_at = utcnow()
        updated = self.repo.update_if_status_in(
            self.db,
            enrollment.id,
            [s.value for s in ACTIVE_STATUSES],
            {
                "terms_accepted_at": accepted_at,
                "terms_accept_ip": client_ip,
                "terms_accept_user_agent": (user_agent or "")[:500] or None,
                "signature_data": data.signature_data,
            },
        )
        if updated != 1:
            self.db.rollback()
            raise HTTPException(status_code=409, detail="Enrollment status changed, please retry")

        self.repo.add_event(
            self.db,
            enrollment.id,
            "terms_accepted",
            {
                "terms_version": enrollment.terms_version,
                "terms_sha256": enrollment.terms_sha256,
                "ip": client_ip,
                "has_signature": data.signature_data is not None,
            },
        )
        self.db.commit()
        self.db.refresh(enrollment)
        logger.info(f"📝 Terms accepted for enrollment {enrollment.id}")
        return enrollment

    async def create_checkout_session(
        self, data: CheckoutSessionRequest, provider: PaymentProviderClient
    ) -> tuple[Enrollment, dict[str, Any]]:
        """
        Start payment for an active enrollment whose terms are accepted.

        The provider session is created first; its id is recorded only while
        the enrollment is still active (guarded update, 409 otherwise).
        """
        enrollment = self._get_by_token(data.token)
        await self.expire_if_overdue(enrollment, expired_by="checkout")
        self._ensure_payable(enrollment)

        if enrollment.terms_accepted_at is None:
            raise HTTPException(status_code=400, detail="Terms must be accepted before payment")
        if not provider.is_configured:
            raise HTTPException(status_code=503, detail="Payment provider not configured")

        link = enrollment_url(data.token)
        try:
            session = await provider.create_checkout_session(
                amount_cents=enrollment.amount_cents,
                currency=enrollment.currency,
                description=f"Enrollment payment for {enrollment.patient_name or 'Patient'}",
                success_url=f"{link}?status=success",
                cancel_url=f"{link}?status=canceled",
                expires_at=utcnow() + timedelta(minutes=config.CHECKOUT_SESSION_MINUTES),
                payment_method_types=[data.payment_method_type],
                customer_email=enrollment.patient_email,
                metadata={
                    "enrollment_id": enrollment.id,
                    "zoho_record_id": enrollment.zoho_record_id,
                    "zoho_module": enrollment.zoho_module,
                    "terms_version": enrollment.terms_version,
                    "terms_sha256": enrollment.terms_sha256,
                },
            )
        except (PaymentProviderError, httpx.HTTPError) as e:
            logger.error(f"❌ Checkout session failed for enrollment {enrollment.id}: {e}")
            raise HTTPException(status_code=502, detail="Payment provider unavailable") from e

        updated = self.repo.update_if_status_in(
            self.db,
            enrollment.id,
            [s.value for s in ACTIVE_STATUSES],
            {
                "payment_session_id": session["id"],
                "payment_method_type": data.payment_method_type,
                "payment_customer_id": session.get("customer_id"),
            },
        )
        if updated != 1:
            self.db.rollback()
            raise HTTPException(status_code=409, detail="Enrollment status changed, please retry")

        self.repo.add_event(
            self.db,
            enrollment.id,
            "checkout_session_created",
            {
                "session_id": session["id"],
                "customer_id": session.get("customer_id"),
                "payment_method_type": data.payment_method_type,
                "amount_cents": enrollment.amount_cents,
            },
        )
        self.db.commit()
        self.db.refresh(enrollment)
        logger.info(f"💳 Created checkout session {session['id']} for enrollment {enrollment.id}")
        return enrollment, session

    # ========================================================================
    # ADMIN OPERATIONS
    # ========================================================================

    def get_enrollment(self, enrollment_id: str) -> Enrollment:
        enrollment = (
            self.repo.get_by_id(self.db, enrollment_id) if validate_uuid(enrollment_id) else None
        )
        if not enrollment:
            raise HTTPException(status_code=404, detail="Enrollment not found")
        return enrollment

    def list_enrollments(self, status: Optional[str], limit: int, offset: int) -> list[Enrollment]:
        if status is not None:
            try:
                EnrollmentStatus(status)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=f"Unknown status: {status}") from e
        return self.repo.list_enrollments(self.db, status, limit, offset)

    def get_events(self, enrollment_id: str):
        self.get_enrollment(enrollment_id)
        return self.repo.get_events(self.db, enrollment_id)

    def consent_pdf_file(self, enrollment_id: str) -> Path:
        enrollment = self.get_enrollment(enrollment_id)
        path = consent_pdf_location(enrollment.consent_pdf_path)
        if path is None or not path.is_file():
            raise HTTPException(status_code=404, detail="Consent document not found")
        return path

    async def regenerate(
        self, enrollment_id: str, data: RegenerateEnrollmentRequest, admin: AdminUser
    ) -> tuple[Enrollment, IssuedToken]:
        """Issue a fresh link and reset the enrollment to created"""
        expires_at = to_naive_utc(data.expires_at)
        if expires_at <= utcnow():
            raise HTTPException(status_code=400, detail="Expiration date must be in the future")

        enrollment = self.get_enrollment(enrollment_id)
        if not can_regenerate(enrollment.status):
            raise HTTPException(
                status_code=400,
                detail="Cannot regenerate an enrollment that is paid or processing",
            )

        previous_status = enrollment.status
        token = issue_token()
        allowed = [s.value for s in EnrollmentStatus if s not in NON_REGENERABLE_STATUSES]
        updated = self.repo.update_if_status_in(
            self.db,
            enrollment.id,
            allowed,
            {
                **REGENERATION_RESET_FIELDS,
                "status": EnrollmentStatus.CREATED.value,
                "token_hash": token.hash,
                "token_last4": token.last4,
                "expires_at": expires_at,
            },
        )
        if updated != 1:
            self.db.rollback()
            raise HTTPException(status_code=409, detail="Enrollment status changed, please retry")

        context = {
            "from_status": previous_status,
            "to_status": EnrollmentStatus.CREATED.value,
            "regenerated_by": admin.email,
            "new_expires_at": isoformat_utc(expires_at),
            "new_token_last4": token.last4,
        }
        self.repo.add_event(self.db, enrollment.id, "regenerated", context)
        self.db.commit()
        self.db.refresh(enrollment)
        logger.info(f"🔁 Enrollment {enrollment.id} regenerated by {admin.email}")

        await self.sync_crm(enrollment, EnrollmentStatus.CREATED.value, context)
        return enrollment, token

    async def mark_sent(self, enrollment_id: str, admin: AdminUser) -> Enrollment:
        enrollment = self.get_enrollment(enrollment_id)
        moved = await self.transition(
            enrollment,
            EnrollmentStatus.SENT,
            "sent",
            {"sent_by": admin.email},
        )
        if not moved:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot mark enrollment as sent from status {enrollment.status}",
            )
        return enrollment

    async def cancel(
        self, enrollment_id: str, admin: AdminUser, reason: Optional[str] = None
    ) -> Enrollment:
        enrollment = self.get_enrollment(enrollment_id)
        moved = await self.transition(
            enrollment,
            EnrollmentStatus.CANCELED,
            "canceled",
            {"canceled_by": admin.email, "reason": reason},
        )
        if not moved:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot cancel enrollment in status {enrollment.status}",
            )
        return enrollment
