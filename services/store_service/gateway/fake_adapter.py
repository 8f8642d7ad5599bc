"""Signing fake payment gateway for development and testing.

Webhooks are authenticated with an HMAC-SHA256 of the raw body, keyed per
region, sent in the ``X-Fake-Signature`` header. Refunds succeed or fail
as configured. Every call is recorded in ``calls``.
"""

import hashlib
import hmac
from decimal import Decimal
from typing import Mapping, Optional
from uuid import uuid4

from libs.common.config import GatewayCredentials
from services.store_service.gateway.port import PaymentGateway, RefundResult

SIGNATURE_HEADER = "x-fake-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self, secret: str) -> None:
        self.secret = secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Refund declined"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Refund declined") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def sign(self, body: bytes, region: str) -> str:
        """Signature a genuine delivery for ``region`` would carry."""
        key = f"{self.secret}:{region}".encode()
        return hmac.new(key, body, hashlib.sha256).hexdigest()

    async def verify_webhook(
        self,
        credentials: GatewayCredentials,
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        self.calls.append({"method": "verify_webhook", "region": credentials.region})
        lowered = {key.lower(): value for key, value in headers.items()}
        signature = lowered.get(SIGNATURE_HEADER)
        if not signature:
            return False
        return hmac.compare_digest(signature, self.sign(body, credentials.region))

    async def refund_capture(
        self,
        credentials: GatewayCredentials,
        capture_id: str,
        amount: Decimal,
        currency: str,
        reason: Optional[str] = None,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "refund_capture",
                "region": credentials.region,
                "capture_id": capture_id,
                "amount": amount,
                "currency": currency,
                "reason": reason,
            }
        )
        if self.should_succeed:
            return RefundResult(
                success=True,
                gateway_refund_id=f"fake_ref_{uuid4().hex[:12]}",
                gateway_status="COMPLETED",
            )
        return RefundResult(
            success=False,
            gateway_status="FAILED",
            failure_reason=self.failure_reason,
        )
