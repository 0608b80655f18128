"""
Zoho CRM client and best-effort status sync for enrollments.

Sync failures are logged and swallowed: the local transition has already been
committed when these calls run and is never rolled back.
"""

import logging
import time
from typing import Any, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

# Refresh the access token this many seconds before Zoho says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class CRMError(Exception):
    """Raised when the CRM is misconfigured or rejects a request"""

    pass


def format_amount(amount_cents: int) -> str:
    return f"${amount_cents / 100:.2f}"


# ============================================================================
# Notes attached to the CRM record per status, keyed by status value.
# Each builder takes (enrollment, event context) and returns (title, content).
# ============================================================================


def _regenerated_note(enrollment, context):
    return (
        "Enrollment Link Regenerated",
        f"New enrollment link issued (ending {enrollment.token_last4}), "
        f"expires {context.get('new_expires_at')}. Amount: {format_amount(enrollment.amount_cents)}",
    )


def _processing_note(enrollment, context):
    return (
        "Payment Processing",
        f"ACH payment initiated. Amount: {format_amount(enrollment.amount_cents)}",
    )


def _paid_note(enrollment, context):
    method = (enrollment.payment_method_type or "card").upper()
    return (
        "Payment Received",
        f"Enrollment deposit paid via {method}. Amount: {format_amount(enrollment.amount_cents)}",
    )


def _failed_note(enrollment, context):
    reason = context.get("failure_reason") or "Unknown error"
    return (
        "Payment Failed",
        f"Payment failed: {reason}. Amount: {format_amount(enrollment.amount_cents)}",
    )


def _expired_note(enrollment, context):
    return (
        "Enrollment Expired",
        f"Enrollment link expired without payment. Amount: {format_amount(enrollment.amount_cents)}",
    )


def _canceled_note(enrollment, context):
    content = f"Enrollment canceled by {context.get('canceled_by', 'an administrator')}."
    if context.get("reason"):
        content += f" Reason: {context['reason']}"
    return "Enrollment Canceled", content


CRM_NOTE_BUILDERS = {
    "created": _regenerated_note,
    "processing": _processing_note,
    "paid": _paid_note,
    "failed": _failed_note,
    "expired": _expired_note,
    "canceled": _canceled_note,
}


class ZohoCRMClient:
    """Service for interacting with the Zoho CRM REST API"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        accounts_url: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id if client_id is not None else config.ZOHO_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else config.ZOHO_CLIENT_SECRET
        )
        self.refresh_token = (
            refresh_token if refresh_token is not None else config.ZOHO_REFRESH_TOKEN
        )
        self.accounts_url = (accounts_url or config.ZOHO_ACCOUNTS_URL).rstrip("/")
        self.api_url = (api_url or config.ZOHO_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.ZOHO_TIMEOUT_SECONDS
        self._transport = transport
        self._access_token: Optional[str] = None
        self._access_token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def get_access_token(self) -> str:
        """Exchange the refresh token for an access token, reusing a cached one while valid"""
        if self._access_token and time.time() < self._access_token_expires_at:
            return self._access_token

        if not self.is_configured:
            raise CRMError("Zoho credentials not configured")

        async with self._client() as client:
            response = await client.post(
                f"{self.accounts_url}/oauth/v2/token",
                data={
                    "refresh_token": self.refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "refresh_token",
                },
            )

        if response.status_code != 200:
            logger.error(f"❌ Zoho token refresh failed: {response.status_code}")
            raise CRMError(f"Failed to refresh Zoho token: {response.text}")

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            # Zoho reports bad grants with HTTP 200 and an "error" field
            raise CRMError(f"Failed to refresh Zoho token: {payload.get('error', 'no token')}")

        expires_in = int(payload.get("expires_in", 3600))
        self._access_token = access_token
        self._access_token_expires_at = time.time() + max(
            expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0
        )
        logger.info("🔑 Zoho access token refreshed")
        return access_token

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Zoho-oauthtoken {access_token}"}

    async def update_record(self, module: str, record_id: str, data: dict[str, Any]) -> None:
        """Update fields on a CRM record"""
        access_token = await self.get_access_token()
        async with self._client() as client:
            response = await client.put(
                f"{self.api_url}/crm/v6/{module}/{record_id}",
                headers=self._auth_headers(access_token),
                json={"data": [data]},
            )
        if response.status_code >= 400:
            raise CRMError(
                f"Failed to update Zoho {module}/{record_id}: "
                f"{response.status_code} {response.text}"
            )
        logger.info(f"✅ Updated Zoho {module}/{record_id}")

    async def add_note(self, module: str, record_id: str, title: str, content: str) -> None:
        """Attach a note to a CRM record"""
        access_token = await self.get_access_token()
        async with self._client() as client:
            response = await client.post(
                f"{self.api_url}/crm/v6/Notes",
                headers=self._auth_headers(access_token),
                json={
                    "data": [
                        {
                            "Parent_Id": record_id,
                            "se_module": module,
                            "Note_Title": title,
                            "Note_Content": content,
                        }
                    ]
                },
            )
        if response.status_code >= 400:
            raise CRMError(f"Failed to add Zoho note: {response.status_code} {response.text}")

    async def fetch_records(self, module: str, per_page: int = 200) -> list[dict[str, Any]]:
        """Read every record of a CRM module, following Zoho's page info"""
        access_token = await self.get_access_token()
        records: list[dict[str, Any]] = []
        page = 1
        async with self._client() as client:
            while True:
                response = await client.get(
                    f"{self.api_url}/crm/v6/{module}",
                    headers=self._auth_headers(access_token),
                    params={"page": page, "per_page": per_page},
                )
                if response.status_code == 204:
                    break
                if response.status_code >= 400:
                    raise CRMError(
                        f"Failed to fetch Zoho {module}: {response.status_code} {response.text}"
                    )

                payload = response.json()
                records.extend(payload.get("data") or [])
                if not (payload.get("info") or {}).get("more_records"):
                    break
                page += 1

        logger.info(f"📥 Fetched {len(records)} Zoho {module} records")
        return records

    async def sync_enrollment_status(
        self,
        enrollment,
        status_label: str,
        note_title: Optional[str] = None,
        note_content: Optional[str] = None,
    ) -> bool:
        """
        Push an enrollment's status (and optionally a note) to its CRM record.

        Returns True when the CRM accepted every call. Never raises for CRM or
        network failures.
        """
        if not enrollment.is_from_crm:
            logger.debug(f"Enrollment {enrollment.id} is not linked to a CRM record, skipping sync")
            return False

        if not self.is_configured:
            logger.warning(
                f"⚠️ Zoho credentials not configured, skipping sync for enrollment {enrollment.id}"
            )
            return False

        fields = {"Enrollment_Status": status_label}

        try:
            await self.update_record(enrollment.zoho_module, enrollment.zoho_record_id, fields)
            if note_title:
                await self.add_note(
                    enrollment.zoho_module,
                    enrollment.zoho_record_id,
                    note_title,
                    note_content or "",
                )
            return True
        except (CRMError, httpx.HTTPError) as e:
            logger.error(f"❌ CRM sync failed for enrollment {enrollment.id}: {e}")
            return False


_default_client: Optional[ZohoCRMClient] = None


def get_crm_client() -> ZohoCRMClient:
    """Process-wide CRM client so the access token is shared between requests"""
    global _default_client
    if _default_client is None:
        _default_client = ZohoCRMClient()
    return _default_client
