"""Payment gateway port and adapters."""

from functools import lru_cache

from libs.common.config import get_settings
from services.store_service.gateway.fake_adapter import FakeGateway
from services.store_service.gateway.paypal_client import PayPalGateway
from services.store_service.gateway.port import PaymentGateway, RefundResult


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Return the configured gateway adapter (FastAPI dependency)."""
    settings = get_settings()
    if settings.PAYMENT_GATEWAY == "fake":
        return FakeGateway(settings.FAKE_GATEWAY_SECRET)
    return PayPalGateway()


__all__ = [
    "FakeGateway",
    "PayPalGateway",
    "PaymentGateway",
    "RefundResult",
    "get_payment_gateway",
]
