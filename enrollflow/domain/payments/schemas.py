"""Payment webhook schemas"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class PaymentEventData(BaseModel):
    enrollment_id: Optional[str] = None
    payment_method_type: Literal["card", "ach"] = "card"
    session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    customer_id: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentWebhookEvent(BaseModel):
    type: str = Field(min_length=1)
    data: PaymentEventData = Field(default_factory=PaymentEventData)


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False
    handled: bool = False
    details: Optional[dict[str, Any]] = None
