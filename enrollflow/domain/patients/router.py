"""Patient routers - admin patient directory and CRM surgeon directory"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_admin, require_admin_writer
from ...database import get_db
from ...models import AdminUser
from ...services.crm_sync import ZohoCRMClient, get_crm_client
from ..enrollments.schemas import EnrollmentAdminResponse
from .schemas import (
    PatientCreate,
    PatientImportResponse,
    PatientResponse,
    SurgeonResponse,
    SurgeonSyncResponse,
)
from .service import PatientService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/patients", tags=["Patients"])
surgeons_router = APIRouter(prefix="/admin/surgeons", tags=["Surgeons"])


def get_patient_service(
    db: Session = Depends(get_db),
    crm: ZohoCRMClient = Depends(get_crm_client),
) -> PatientService:
    """Dependency injection for PatientService"""
    return PatientService(db, crm)


@router.get("", response_model=list[PatientResponse])
async def list_patients(
    search: Optional[str] = Query(None, max_length=255),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: AdminUser = Depends(get_current_admin),
    service: PatientService = Depends(get_patient_service),
):
    return service.list_patients(search, limit, offset)


@router.post("", response_model=PatientResponse, status_code=201)
async def create_patient(
    data: PatientCreate,
    admin: AdminUser = Depends(require_admin_writer),
    service: PatientService = Depends(get_patient_service),
):
    return service.create_patient(data, admin)


@router.post("/import", response_model=PatientImportResponse)
async def import_patients(
    admin: AdminUser = Depends(require_admin_writer),
    service: PatientService = Depends(get_patient_service),
):
    """Create patients from unlinked enrollments and link them"""
    return service.import_from_enrollments(admin)


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: str,
    admin: AdminUser = Depends(get_current_admin),
    service: PatientService = Depends(get_patient_service),
):
    return service.get_patient(patient_id)


@router.get("/{patient_id}/enrollments", response_model=list[EnrollmentAdminResponse])
async def get_patient_enrollments(
    patient_id: str,
    admin: AdminUser = Depends(get_current_admin),
    service: PatientService = Depends(get_patient_service),
):
    return service.get_enrollments(patient_id)


@surgeons_router.get("", response_model=list[SurgeonResponse])
async def list_surgeons(
    include_inactive: bool = Query(False),
    admin: AdminUser = Depends(get_current_admin),
    service: PatientService = Depends(get_patient_service),
):
    return service.list_surgeons(include_inactive)


@surgeons_router.post("/sync", response_model=SurgeonSyncResponse)
async def sync_surgeons(
    admin: AdminUser = Depends(require_admin_writer),
    service: PatientService = Depends(get_patient_service),
):
    """Pull the surgeon directory from the CRM"""
    return await service.sync_surgeons(admin)
