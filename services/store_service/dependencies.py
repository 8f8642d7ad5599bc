"""FastAPI dependencies specific to the store service."""

from fastapi import Depends
from libs.db.session import SessionFactory, get_session_factory
from services.store_service.gateway import PaymentGateway, get_payment_gateway
from services.store_service.services.webhook_processor import WebhookProcessor


def get_webhook_processor(
    session_factory: SessionFactory = Depends(get_session_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> WebhookProcessor:
    return WebhookProcessor(session_factory, gateway)
