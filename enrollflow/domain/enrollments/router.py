"""Enrollment routers - patient, CRM and admin endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ...auth import get_current_admin, require_admin_writer
from ...database import get_db
from ...models import AdminUser
from ...services.crm_sync import ZohoCRMClient, get_crm_client
from ...services.payment_provider import PaymentProviderClient, get_payment_client
from ...webhook_security import verify_crm_request
from .schemas import (
    AcceptTermsRequest,
    AcceptTermsResponse,
    AdminEnrollmentCreate,
    CancelEnrollmentRequest,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CrmEnrollmentCreate,
    EnrollmentAdminResponse,
    EnrollmentEventResponse,
    EnrollmentLinkResponse,
    EnrollmentPublicResponse,
    RegenerateEnrollmentRequest,
    TokenRequest,
)
from .service import EnrollmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enrollments", tags=["Enrollments"])
admin_router = APIRouter(prefix="/admin/enrollments", tags=["Admin Enrollments"])


def get_enrollment_service(
    db: Session = Depends(get_db),
    crm: ZohoCRMClient = Depends(get_crm_client),
) -> EnrollmentService:
    """Dependency injection for EnrollmentService"""
    return EnrollmentService(db, crm)


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# ============================================================================
# CRM (server-to-server)
# ============================================================================


@router.post(
    "",
    response_model=EnrollmentLinkResponse,
    status_code=201,
    dependencies=[Depends(verify_crm_request)],
)
async def create_enrollment(
    data: CrmEnrollmentCreate,
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Create an enrollment link for a CRM record"""
    enrollment, token = service.create_from_crm(data)
    return service.link_response(enrollment, token)


# ============================================================================
# PATIENT (token holders)
# ============================================================================


@router.post("/lookup", response_model=EnrollmentPublicResponse)
async def lookup_enrollment(
    data: TokenRequest,
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Fetch an enrollment by its link token"""
    enrollment = await service.fetch_by_token(data.token)
    return service.to_public(enrollment)


@router.post("/accept-terms", response_model=AcceptTermsResponse)
async def accept_terms(
    data: AcceptTermsRequest,
    request: Request,
    service: EnrollmentService = Depends(get_enrollment_service),
):
    enrollment = await service.accept_terms(
        data, get_client_ip(request), request.headers.get("user-agent")
    )
    return {
        "success": True,
        "enrollment_id": enrollment.id,
        "terms_accepted_at": enrollment.terms_accepted_at,
    }


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    data: CheckoutSessionRequest,
    service: EnrollmentService = Depends(get_enrollment_service),
    provider: PaymentProviderClient = Depends(get_payment_client),
):
    """Start a hosted checkout for an enrollment whose terms are accepted"""
    _, session = await service.create_checkout_session(data, provider)
    return {"success": True, "checkout_url": session["url"], "session_id": session["id"]}


# ============================================================================
# ADMIN
# ============================================================================


@admin_router.post("", response_model=EnrollmentLinkResponse, status_code=201)
async def admin_create_enrollment(
    data: AdminEnrollmentCreate,
    admin: AdminUser = Depends(require_admin_writer),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Create a manual enrollment (not linked to a CRM record)"""
    enrollment, token = service.create_by_admin(data, admin)
    return service.link_response(enrollment, token)


@admin_router.get("", response_model=list[EnrollmentAdminResponse])
async def list_enrollments(
    status: Optional[str] = Query(None, description="Filter by enrollment status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: AdminUser = Depends(get_current_admin),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    return service.list_enrollments(status, limit, offset)


@admin_router.get("/{enrollment_id}", response_model=EnrollmentAdminResponse)
async def get_enrollment(
    enrollment_id: str,
    admin: AdminUser = Depends(get_current_admin),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    return service.get_enrollment(enrollment_id)


@admin_router.get("/{enrollment_id}/events", response_model=list[EnrollmentEventResponse])
async def get_enrollment_events(
    enrollment_id: str,
    admin: AdminUser = Depends(get_current_admin),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Audit log for an enrollment, oldest first"""
    return service.get_events(enrollment_id)


@admin_router.post("/{enrollment_id}/regenerate", response_model=EnrollmentLinkResponse)
async def regenerate_enrollment(
    enrollment_id: str,
    data: RegenerateEnrollmentRequest,
    admin: AdminUser = Depends(require_admin_writer),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """Issue a new link; the previous token stops resolving immediately"""
    enrollment, token = await service.regenerate(enrollment_id, data, admin)
    return service.link_response(enrollment, token)


@admin_router.post("/{enrollment_id}/mark-sent", response_model=EnrollmentAdminResponse)
async def mark_enrollment_sent(
    enrollment_id: str,
    admin: AdminUser = Depends(require_admin_writer),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    return await service.mark_sent(enrollment_id, admin)


@admin_router.post("/{enrollment_id}/cancel", response_model=EnrollmentAdminResponse)
async def cancel_enrollment(
    enrollment_id: str,
    data: Optional[CancelEnrollmentRequest] = None,
    admin: AdminUser = Depends(require_admin_writer),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    return await service.cancel(enrollment_id, admin, data.reason if data else None)


@admin_router.get("/{enrollment_id}/consent-pdf")
async def download_consent_pdf(
    enrollment_id: str,
    admin: AdminUser = Depends(get_current_admin),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    path = service.consent_pdf_file(enrollment_id)
    return FileResponse(
        path, media_type="application/pdf", filename=f"consent-{enrollment_id}.pdf"
    )
