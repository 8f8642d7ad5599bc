"""
PayPal REST adapter for the payment gateway port.

Provides async methods for:
- OAuth client-credentials tokens (one per region)
- Webhook signature verification
- Capture refunds
"""

import json
import time
from decimal import Decimal
from typing import Mapping, Optional

import httpx
from libs.common.config import GatewayCredentials, get_settings
from libs.common.logging import get_logger
from services.store_service.errors import GatewayError
from services.store_service.gateway.port import PaymentGateway, RefundResult

logger = get_logger(__name__)

# Header names PayPal sends with every webhook delivery
TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}

# Refresh tokens this many seconds before PayPal expires them
TOKEN_EXPIRY_MARGIN = 60


class PayPalGateway(PaymentGateway):
    """Async client for the PayPal REST API."""

    name = "paypal"

    def __init__(self, base_url: str = None, timeout: float = 30.0):
        self.base_url = base_url or get_settings().paypal_base_url
        self.timeout = timeout
        self._tokens: dict[str, tuple[str, float]] = {}

    async def _access_token(self, credentials: GatewayCredentials) -> str:
        cached = self._tokens.get(credentials.region)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        if not credentials.client_id or not credentials.client_secret:
            raise GatewayError(
                f"PayPal credentials not configured for region: {credentials.region}"
            )

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(credentials.client_id, credentials.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
        data = response.json()
        if not response.is_success:
            logger.error(
                "PayPal token error: %s - %s", response.status_code, data
            )
            raise GatewayError(
                data.get("error_description", "PayPal authentication failed"),
                status_code=response.status_code,
                response_data=data,
            )

        token = data["access_token"]
        expires_in = int(data.get("expires_in", 0))
        self._tokens[credentials.region] = (
            token,
            time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0),
        )
        return token

    async def _request(
        self,
        credentials: GatewayCredentials,
        method: str,
        endpoint: str,
        json_data: dict = None,
    ) -> dict:
        """Make an authenticated request to the PayPal API."""
        token = await self._access_token(credentials)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method=method,
                url=f"{self.base_url}{endpoint}",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                json=json_data,
            )

        data = response.json() if response.content else {}
        if not response.is_success:
            logger.error("PayPal API error: %s - %s", response.status_code, data)
            raise GatewayError(
                data.get("message", "Unknown PayPal error"),
                status_code=response.status_code,
                response_data=data,
            )
        return data

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def verify_webhook(
        self,
        credentials: GatewayCredentials,
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        """
        Ask PayPal whether a webhook delivery is authentic.

        Returns False (never raises) for missing headers, an unconfigured
        webhook id, or a non-SUCCESS verification status.
        """
        if not credentials.webhook_id:
            logger.error("PayPal webhook id not configured for %s", credentials.region)
            return False

        lowered = {key.lower(): value for key, value in headers.items()}
        fields = {
            field: lowered.get(header) for field, header in TRANSMISSION_HEADERS.items()
        }
        if not all(fields.values()):
            logger.warning("PayPal webhook missing transmission headers")
            return False

        try:
            event = json.loads(body)
        except ValueError:
            return False

        try:
            data = await self._request(
                credentials,
                "POST",
                "/v1/notifications/verify-webhook-signature",
                json_data={
                    **fields,
                    "webhook_id": credentials.webhook_id,
                    "webhook_event": event,
                },
            )
        except GatewayError as exc:
            logger.warning("PayPal webhook verification call failed: %s", exc.detail)
            return False

        return data.get("verification_status") == "SUCCESS"

    # =========================================================================
    # Refunds
    # =========================================================================

    async def refund_capture(
        self,
        credentials: GatewayCredentials,
        capture_id: str,
        amount: Decimal,
        currency: str,
        reason: Optional[str] = None,
    ) -> RefundResult:
        payload = {"amount": {"value": f"{amount:.2f}", "currency_code": currency}}
        if reason:
            payload["note_to_payer"] = reason[:255]

        data = await self._request(
            credentials,
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            json_data=payload,
        )
        status = data.get("status")
        return RefundResult(
            success=status in ("COMPLETED", "PENDING"),
            gateway_refund_id=data.get("id"),
            gateway_status=status,
            failure_reason=None if status != "FAILED" else data.get("status_details"),
        )
