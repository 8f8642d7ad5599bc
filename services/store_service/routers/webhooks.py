"""Payment gateway webhook receiver."""

from fastapi import APIRouter, Depends, Request
from libs.common.logging import get_logger
from services.store_service.dependencies import get_webhook_processor
from services.store_service.schemas import WebhookAck
from services.store_service.services.webhook_processor import WebhookProcessor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Payment gateway webhook endpoint (no auth; verified through the gateway).

    Acknowledged with 200 whenever the event was recorded, including
    duplicates, ignored types and conflicting transitions. 401 when the
    delivery cannot be verified, 503 when contention outlasted the retries
    (the gateway redelivers).
    """
    raw = await request.body()
    result = await processor.handle_delivery(request.headers, raw)

    logger.info(
        "Webhook %s handled: %s",
        result.event_id,
        result.outcome.value,
        extra={"extra_fields": {"duplicate": result.duplicate}},
    )
    return WebhookAck(
        event_id=result.event_id,
        outcome=result.outcome,
        duplicate=result.duplicate,
    )
