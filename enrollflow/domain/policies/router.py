"""Policy router - admin management of terms/privacy snapshots"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_admin, require_admin_writer
from ...database import get_db
from ...models import AdminUser
from .repository import PolicyRepository
from .schemas import PolicyCreate, PolicyResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/policies", tags=["Policies"])


@router.get("", response_model=list[PolicyResponse])
async def list_policies(
    include_inactive: bool = Query(False),
    admin: AdminUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return PolicyRepository.list_policies(db, include_inactive)


@router.post("", response_model=PolicyResponse, status_code=201)
async def create_policy(
    data: PolicyCreate,
    admin: AdminUser = Depends(require_admin_writer),
    db: Session = Depends(get_db),
):
    """Create a policy snapshot; enrollments copy its URLs, version and hash at creation"""
    policy = PolicyRepository.create_policy(db, **data.model_dump())
    logger.info(f"📄 Admin {admin.email} created policy {policy.id} (v{policy.version})")
    return policy
