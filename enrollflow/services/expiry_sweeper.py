"""
Batch expiry of overdue enrollment links.

Selects active enrollments (created, sent, opened) whose expiry has passed and
expires each one through a guarded update, so a row already moved by a
concurrent lookup or payment is skipped rather than counted twice. Runs from
the arq cron job and from the scheduler endpoint.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain.enrollments.service import EnrollmentService
from ..domain.enrollments.state_machine import ACTIVE_STATUSES, EnrollmentStatus
from ..utils.clock import isoformat_utc, utcnow
from .crm_sync import ZohoCRMClient

logger = logging.getLogger(__name__)


async def expire_overdue_enrollments(db: Session, crm: ZohoCRMClient) -> dict:
    """
    Expire every overdue active enrollment.

    Returns:
        dict: {"checked", "expired", "skipped", "errors"} counts
    """
    service = EnrollmentService(db, crm)
    now = utcnow()
    summary = {"checked": 0, "expired": 0, "skipped": 0, "errors": 0}

    overdue = service.repo.get_overdue(db, [s.value for s in ACTIVE_STATUSES], now)
    summary["checked"] = len(overdue)
    if not overdue:
        logger.info("No expired enrollments found")
        return summary

    logger.info(f"⏰ Found {len(overdue)} enrollments to expire")

    for enrollment in overdue:
        try:
            moved = await service.transition(
                enrollment,
                EnrollmentStatus.EXPIRED,
                "auto_expired",
                {
                    "expired_by": "sweeper",
                    "expires_at": isoformat_utc(enrollment.expires_at),
                    "swept_at": isoformat_utc(now),
                },
                restrict_from=ACTIVE_STATUSES,
            )
        except SQLAlchemyError as e:
            db.rollback()
            summary["errors"] += 1
            logger.error(f"❌ Failed to expire enrollment {enrollment.id}: {e}")
            continue

        if moved:
            summary["expired"] += 1
        else:
            summary["skipped"] += 1

    logger.info(
        f"✅ Expiry sweep complete: {summary['expired']} expired, "
        f"{summary['skipped']} skipped, {summary['errors']} errors"
    )
    return summary
