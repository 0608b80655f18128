"""Payment provider webhook endpoint"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...services.crm_sync import ZohoCRMClient, get_crm_client
from ...webhook_security import verify_payment_webhook
from .schemas import WebhookAck
from .service import PaymentWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_payment_webhook_service(
    db: Session = Depends(get_db),
    crm: ZohoCRMClient = Depends(get_crm_client),
) -> PaymentWebhookService:
    return PaymentWebhookService(db, crm)


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    service: PaymentWebhookService = Depends(get_payment_webhook_service),
):
    """Standard Webhooks signed payment events"""
    raw_body = await verify_payment_webhook(request, config.PAYMENT_WEBHOOK_SECRET)
    return await service.handle(request.headers["webhook-id"], raw_body)
