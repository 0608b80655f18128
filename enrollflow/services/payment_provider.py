"""Payment provider client - hosted checkout sessions for enrollment deposits"""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from .. import config
from ..utils.clock import epoch_seconds

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """Raised when the payment provider is misconfigured or rejects a request"""

    pass


class PaymentProviderClient:
    """Service for the payment provider's checkout API"""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = (api_url if api_url is not None else config.PAYMENT_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.PAYMENT_API_KEY
        self.timeout = timeout if timeout is not None else config.PAYMENT_TIMEOUT_SECONDS
        self._transport = transport

        if not self.is_configured:
            logger.warning(
                "PAYMENT_API_URL / PAYMENT_API_KEY not set; checkout will fail until configured"
            )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
        expires_at: datetime,
        payment_method_types: list[str],
        customer_email: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Create a hosted checkout session.

        Returns the provider's answer, which always carries "id" and "url"
        and may carry "customer_id".
        """
        if not self.is_configured:
            raise PaymentProviderError("Payment provider not configured")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.api_url}/v1/checkout/sessions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "mode": "payment",
                    "amount": amount_cents,
                    "currency": currency,
                    "description": description,
                    "customer_email": customer_email,
                    "payment_method_types": payment_method_types,
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "expires_at": int(epoch_seconds(expires_at)),
                    "metadata": metadata or {},
                },
            )

        if response.status_code >= 400:
            logger.error(f"❌ Checkout session request failed: {response.status_code}")
            raise PaymentProviderError(
                f"Failed to create checkout session: {response.status_code} {response.text}"
            )

        session = response.json()
        if not session.get("id") or not session.get("url"):
            raise PaymentProviderError("Checkout session response is missing id or url")
        return session


_default_client: Optional[PaymentProviderClient] = None


def get_payment_client() -> PaymentProviderClient:
    """Process-wide payment provider client"""
    global _default_client
    if _default_client is None:
        _default_client = PaymentProviderClient()
    return _default_client
