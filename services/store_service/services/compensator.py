"""Refund and cancellation compensation.

Support-initiated refunds go through the same transition path as gateway
refund webhooks: a trusted ``capture_refunded`` event is built here and
handed to the webhook processor.
"""

import uuid
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import minutes_ago
from libs.common.logging import get_logger
from libs.db.session import SessionFactory, unit_of_work
from services.store_service.errors import (
    GatewayError,
    InvalidRequest,
    InvalidTransition,
)
from services.store_service.models import (
    Order,
    OrderEvent,
    OrderStatus,
    Payment,
    PaymentStatus,
    WebhookOutcome,
)
from services.store_service.schemas import GatewayEvent, GatewayEventResource
from services.store_service.services.orders import (
    get_order,
    lock_order,
    transition_order,
)
from services.store_service.services.state_machine import resolve
from services.store_service.services.webhook_processor import (
    WebhookProcessor,
    holds_orphan_capture,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

EXPIRY_ACTOR = "reservation-expiry"


def _refund_amount(order: Order, amount: Optional[Decimal]) -> Decimal:
    """Validate a refund of ``order`` and return the amount to refund."""
    if not holds_orphan_capture(order):
        # Raises InvalidTransition unless the order is paid, shipped or delivered
        resolve(order.status, OrderEvent.CAPTURE_REFUNDED)

    outstanding = order.total - (order.refunded_total or Decimal("0"))
    amount = amount if amount is not None else outstanding
    if amount <= 0 or amount > outstanding:
        raise InvalidRequest(
            f"Refund amount must be between 0 and {outstanding} {order.currency}"
        )
    return amount


async def refund_order(
    db: AsyncSession,
    processor: WebhookProcessor,
    order_id: uuid.UUID,
    amount: Optional[Decimal],
    reason: Optional[str],
    actor: str,
    gateway_refund_id: Optional[str] = None,
) -> Order:
    """Refund a paid order and restore its stock.

    A closed order whose capture arrived late is refunded the same way,
    without any stock effect.

    When no ``gateway_refund_id`` is given and the capture is known, the
    refund is first requested from the gateway. That call happens before the
    order row is locked; the state is checked again under the lock.
    """
    order = await get_order(db, order_id)
    amount = _refund_amount(order, amount)

    if gateway_refund_id is None:
        result = await db.execute(
            select(Payment).where(
                Payment.order_id == order.id,
                Payment.status == PaymentStatus.COMPLETED,
            )
        )
        payment = result.scalars().first()
        if payment is not None and payment.transaction_id:
            credentials = get_settings().gateway_credentials(order.region)
            refund = await processor.gateway.refund_capture(
                credentials, payment.transaction_id, amount, order.currency, reason
            )
            if not refund.success:
                raise GatewayError(refund.failure_reason or "Gateway refund failed")
            gateway_refund_id = refund.gateway_refund_id

    order = await lock_order(db, order_id)
    _refund_amount(order, amount)

    event = GatewayEvent(
        id=f"manual-refund-{uuid.uuid4().hex}",
        event_type=OrderEvent.CAPTURE_REFUNDED.value,
        resource=GatewayEventResource(
            id=gateway_refund_id,
            custom_id=str(order.id),
            amount=amount,
            currency=order.currency,
            reason_code=reason,
        ),
    )
    outcome = await processor.apply_event(db, event, actor)
    if outcome.outcome != WebhookOutcome.PROCESSED:
        raise InvalidTransition(
            outcome.detail or f"Refund not applied to order {order.order_number}",
            current_status=order.status,
            event=OrderEvent.CAPTURE_REFUNDED,
        )

    logger.info(
        "Refunded %s %s on order %s by %s",
        amount,
        order.currency,
        order.order_number,
        actor,
    )
    return order


async def expire_stale_orders(
    session_factory: SessionFactory,
    older_than: Optional[int] = None,
) -> list[str]:
    """Cancel pending orders older than the reservation TTL, releasing stock.

    Each order is expired in its own transaction so one failure does not
    hold back the rest. Returns the expired order numbers.
    """
    minutes = older_than if older_than is not None else get_settings().RESERVATION_TTL_MINUTES
    cutoff = minutes_ago(minutes)

    async with session_factory() as db:
        result = await db.execute(
            select(Order.id)
            .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
            .order_by(Order.created_at)
        )
        stale_ids = list(result.scalars().all())

    expired: list[str] = []
    for order_id in stale_ids:
        try:
            async with unit_of_work(session_factory) as db:
                order = await lock_order(db, order_id)
                if order.status != OrderStatus.PENDING:
                    continue
                await transition_order(
                    db,
                    order,
                    OrderEvent.EXPIRE,
                    EXPIRY_ACTOR,
                    note=f"Reservation expired after {minutes} minutes",
                )
                expired.append(order.order_number)
        except InvalidTransition as exc:
            # Lost a race with a webhook; the order moved on
            logger.info("Skipped expiry of order %s: %s", order_id, exc.detail)

    if expired:
        logger.info("Expired %d stale orders", len(expired))
    return expired
