"""Admin order fulfillment and refund router."""

import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.dependencies import get_webhook_processor
from services.store_service.schemas import (
    FulfillmentRequest,
    OrderResponse,
    RefundRequest,
)
from services.store_service.services import compensator
from services.store_service.services import orders as order_service
from services.store_service.services.webhook_processor import WebhookProcessor
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-store"])
logger = get_logger(__name__)


@router.post("/orders/{order_id}/ship", response_model=OrderResponse)
async def ship_order(
    order_id: uuid.UUID,
    payload: Optional[FulfillmentRequest] = Body(None),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    await order_service.mark_shipped(
        db,
        order_id,
        current_user.email or current_user.user_id,
        payload.note if payload else None,
    )
    await db.commit()
    return await order_service.get_order(db, order_id)


@router.post("/orders/{order_id}/deliver", response_model=OrderResponse)
async def deliver_order(
    order_id: uuid.UUID,
    payload: Optional[FulfillmentRequest] = Body(None),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    await order_service.mark_delivered(
        db,
        order_id,
        current_user.email or current_user.user_id,
        payload.note if payload else None,
    )
    await db.commit()
    return await order_service.get_order(db, order_id)


@router.post("/orders/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: uuid.UUID,
    payload: RefundRequest,
    current_user: AuthUser = Depends(require_admin),
    processor: WebhookProcessor = Depends(get_webhook_processor),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Refund a paid order and put its stock back.

    Goes through the same transition path as a gateway refund webhook.
    """
    await compensator.refund_order(
        db,
        processor,
        order_id,
        payload.amount,
        payload.reason,
        current_user.email or current_user.user_id,
        gateway_refund_id=payload.gateway_refund_id,
    )
    await db.commit()
    return await order_service.get_order(db, order_id)
