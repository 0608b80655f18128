"""Payment webhook idempotency ledger"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import ProcessedPaymentEvent


class PaymentEventRepository:
    @staticmethod
    def is_processed(db: Session, event_id: str) -> bool:
        return (
            db.query(ProcessedPaymentEvent)
            .filter(ProcessedPaymentEvent.event_id == event_id)
            .first()
            is not None
        )

    @staticmethod
    def mark_processed(db: Session, event_id: str, event_type: Optional[str]) -> bool:
        """Record the delivery; False when a concurrent delivery already did"""
        db.add(ProcessedPaymentEvent(event_id=event_id, event_type=event_type))
        try:
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False
