"""Payment webhook service - maps provider events onto enrollment transitions"""

import json
import logging
from typing import Any

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...services.consent_pdf import store_consent_pdf
from ...services.crm_sync import ZohoCRMClient
from ..enrollments.service import EnrollmentService
from ..enrollments.state_machine import ACTIVE_STATUSES, EnrollmentStatus
from .repository import PaymentEventRepository
from .schemas import PaymentWebhookEvent

logger = logging.getLogger(__name__)

PRE_PAYMENT_STATUSES = ACTIVE_STATUSES | {EnrollmentStatus.PROCESSING}


class PaymentWebhookService:
    def __init__(self, db: Session, crm: ZohoCRMClient):
        self.db = db
        self.repo = PaymentEventRepository()
        self.enrollments = EnrollmentService(db, crm)

    @staticmethod
    def parse_event(raw_body: bytes) -> PaymentWebhookEvent:
        try:
            return PaymentWebhookEvent.model_validate(json.loads(raw_body))
        except (ValueError, ValidationError) as e:
            logger.error(f"❌ Unparseable payment webhook payload: {e}")
            raise HTTPException(status_code=400, detail="Invalid webhook payload") from e

    async def handle(self, webhook_id: str, raw_body: bytes) -> dict[str, Any]:
        """Apply one verified delivery, at most once per webhook id"""
        event = self.parse_event(raw_body)

        if self.repo.is_processed(self.db, webhook_id):
            logger.info(f"⏭️ Payment webhook {webhook_id} already processed")
            return {"received": True, "duplicate": True, "handled": False}

        handler = {
            "checkout.completed": self._checkout_completed,
            "payment.succeeded": self._payment_succeeded,
            "payment.failed": self._payment_failed,
            "checkout.expired": self._checkout_expired,
        }.get(event.type)

        handled = False
        if handler is None:
            logger.info(f"ℹ️ Ignoring unhandled payment event type: {event.type}")
        elif not event.data.enrollment_id:
            logger.warning(f"⚠️ Payment event {event.type} has no enrollment_id, skipping")
        else:
            enrollment = self.enrollments.repo.get_by_id(self.db, event.data.enrollment_id)
            if enrollment is None:
                logger.warning(
                    f"⚠️ Payment event {event.type} for unknown enrollment "
                    f"{event.data.enrollment_id}"
                )
            else:
                handled = await handler(enrollment, event)
                if handled and enrollment.status == EnrollmentStatus.PAID:
                    store_consent_pdf(self.db, enrollment)

        if not self.repo.mark_processed(self.db, webhook_id, event.type):
            return {"received": True, "duplicate": True, "handled": handled}
        return {"received": True, "duplicate": False, "handled": handled}

    @staticmethod
    def _payment_fields(event: PaymentWebhookEvent) -> dict[str, Any]:
        data = event.data
        fields = {"payment_method_type": data.payment_method_type}
        if data.session_id:
            fields["payment_session_id"] = data.session_id
        if data.payment_intent_id:
            fields["payment_intent_id"] = data.payment_intent_id
        if data.customer_id:
            fields["payment_customer_id"] = data.customer_id
        return fields

    async def _checkout_completed(self, enrollment, event: PaymentWebhookEvent) -> bool:
        # ACH settles asynchronously; cards are final at checkout
        new_status = (
            EnrollmentStatus.PROCESSING
            if event.data.payment_method_type == "ach"
            else EnrollmentStatus.PAID
        )
        return await self.enrollments.transition(
            enrollment,
            new_status,
            "checkout_completed",
            {
                "session_id": event.data.session_id,
                "payment_intent_id": event.data.payment_intent_id,
                "payment_method_type": event.data.payment_method_type,
            },
            restrict_from=ACTIVE_STATUSES,
            values=self._payment_fields(event),
        )

    async def _payment_succeeded(self, enrollment, event: PaymentWebhookEvent) -> bool:
        return await self.enrollments.transition(
            enrollment,
            EnrollmentStatus.PAID,
            "payment_succeeded",
            {"payment_intent_id": event.data.payment_intent_id},
            restrict_from={EnrollmentStatus.PROCESSING},
        )

    async def _payment_failed(self, enrollment, event: PaymentWebhookEvent) -> bool:
        return await self.enrollments.transition(
            enrollment,
            EnrollmentStatus.FAILED,
            "payment_failed",
            {
                "payment_intent_id": event.data.payment_intent_id,
                "failure_reason": event.data.failure_reason,
            },
            restrict_from=PRE_PAYMENT_STATUSES,
        )

    async def _checkout_expired(self, enrollment, event: PaymentWebhookEvent) -> bool:
        return await self.enrollments.transition(
            enrollment,
            EnrollmentStatus.EXPIRED,
            "checkout_expired",
            {"session_id": event.data.session_id},
            restrict_from={EnrollmentStatus.PROCESSING},
        )
