"""
API endpoints for enrollment status automation and analytics
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_admin
from ..database import get_db
from ..domain.enrollments.repository import EnrollmentRepository
from ..domain.enrollments.state_machine import EnrollmentStatus
from ..models import AdminUser
from ..services.crm_sync import ZohoCRMClient, get_crm_client
from ..services.expiry_sweeper import expire_overdue_enrollments
from ..webhook_security import verify_cron_secret

router = APIRouter(prefix="/status", tags=["status"])


class StatusSummary(BaseModel):
    created: int
    sent: int
    opened: int
    processing: int
    paid: int
    failed: int
    expired: int
    canceled: int
    total: int


class SweepResult(BaseModel):
    success: bool = True
    checked: int
    expired: int
    skipped: int
    errors: int


@router.get("/analytics", response_model=StatusSummary)
async def get_status_analytics(
    admin: AdminUser = Depends(get_current_admin), db: Session = Depends(get_db)
):
    """Count of enrollments by status"""
    counts = EnrollmentRepository.count_by_status(db)
    summary = {s.value: counts.get(s.value, 0) for s in EnrollmentStatus}
    return StatusSummary(**summary, total=sum(summary.values()))


@router.post(
    "/automation/expire",
    response_model=SweepResult,
    dependencies=[Depends(verify_cron_secret)],
)
async def run_expiry_sweep(
    db: Session = Depends(get_db),
    crm: ZohoCRMClient = Depends(get_crm_client),
):
    """
    Trigger the expiry sweep from an external scheduler
    (the arq worker runs the same sweep every 15 minutes)
    """
    result = await expire_overdue_enrollments(db, crm)
    return SweepResult(**result)
