"""Payment gateway port.

The store never talks to a payment provider directly; adapters implement
this interface (PayPal in production, a signing fake in development/tests).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional

from libs.common.config import GatewayCredentials


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund request."""

    success: bool
    gateway_refund_id: Optional[str] = None
    gateway_status: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = "gateway"

    @abstractmethod
    async def verify_webhook(
        self,
        credentials: GatewayCredentials,
        headers: Mapping[str, str],
        body: bytes,
    ) -> bool:
        """Verify that a webhook body was sent by the gateway for this region."""
        ...

    @abstractmethod
    async def refund_capture(
        self,
        credentials: GatewayCredentials,
        capture_id: str,
        amount: Decimal,
        currency: str,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """Refund (part of) a captured payment."""
        ...
