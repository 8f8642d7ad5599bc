"""Order aggregate: checkout, state transitions and fulfillment actions."""

import uuid
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.store_service.errors import InvalidRequest, InvalidTransition, NotFound
from services.store_service.models import (
    AuditEntityType,
    Order,
    OrderEvent,
    OrderItem,
    OrderStatus,
    Payment,
    Product,
    Region,
    StockEffect,
)
from services.store_service.schemas import CheckoutRequest
from services.store_service.services import stock_ledger
from services.store_service.services.audit import log_audit
from services.store_service.services.state_machine import Transition, resolve
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

REGION_CURRENCY = {Region.US: "USD", Region.EU: "EUR"}

# Timestamp column stamped when an order enters a status
STATUS_TIMESTAMPS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.PAYMENT_FAILED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}

CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound(f"Order {order_id} not found")
    return order


async def get_order_by_number(db: AsyncSession, order_number: str) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.order_number == order_number)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound(f"Order {order_number} not found")
    return order


async def lock_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    """Load an order with a row lock held until the transaction ends."""
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound(f"Order {order_id} not found")
    return order


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


async def _load_products(
    db: AsyncSession, request: CheckoutRequest
) -> dict[uuid.UUID, Product]:
    product_ids = {item.product_id for item in request.items}
    result = await db.execute(
        select(Product).where(
            Product.id.in_(product_ids), Product.deleted_at.is_(None)
        )
    )
    products = {product.id: product for product in result.scalars().all()}

    missing = product_ids - products.keys()
    if missing:
        raise NotFound(
            f"Product(s) not found: {', '.join(sorted(str(p) for p in missing))}"
        )
    for product in products.values():
        if product.region != request.region:
            raise InvalidRequest(
                f"Product {product.sku} is sold in region {product.region.value}, "
                f"not {request.region.value}"
            )
    return products


async def create_order(
    db: AsyncSession,
    request: CheckoutRequest,
    member_auth_id: Optional[str] = None,
) -> Order:
    """Create a pending order and reserve its stock in the caller's transaction.

    1. Validate products exist and belong to the checkout region
    2. Freeze unit prices (product price + option adjustments)
    3. Create order, items and a pending payment
    4. Reserve stock for every line (OutOfStock aborts the whole checkout)
    """
    products = await _load_products(db, request)

    items: list[OrderItem] = []
    selections: list[tuple[Product, list[uuid.UUID], int]] = []
    subtotal = Decimal("0")
    for line in request.items:
        product = products[line.product_id]
        selected = await stock_ledger.load_selected_options(
            db, product, line.option_ids
        )
        unit_price = product.price + sum(
            (option.price_adjustment for option, _ in selected), Decimal("0")
        )
        line_total = (unit_price * line.quantity).quantize(CENT)
        subtotal += line_total
        items.append(
            OrderItem(
                product_id=product.id,
                option_ids=[str(option_id) for option_id in line.option_ids],
                product_name=product.name,
                sku=product.sku,
                option_names=", ".join(option.name for option, _ in selected) or None,
                quantity=line.quantity,
                unit_price=unit_price.quantize(CENT),
                line_total=line_total,
            )
        )
        selections.append((product, line.option_ids, line.quantity))

    total = subtotal + request.tax_amount + request.shipping_amount
    total -= request.discount_amount
    if total < 0:
        raise InvalidRequest("Discount exceeds order value")

    currency = REGION_CURRENCY[request.region]
    order = Order(
        order_number=Order.generate_order_number(),
        region=request.region,
        member_auth_id=member_auth_id,
        customer_email=request.customer_email,
        customer_name=request.customer_name,
        customer_phone=request.customer_phone,
        shipping_address=(
            request.shipping_address.model_dump() if request.shipping_address else None
        ),
        currency=currency,
        subtotal=subtotal,
        tax_amount=request.tax_amount,
        shipping_amount=request.shipping_amount,
        discount_amount=request.discount_amount,
        total=total.quantize(CENT),
        coupon_code=request.coupon_code,
        status=OrderStatus.PENDING,
        items=items,
    )
    db.add(order)
    await db.flush()

    db.add(Payment(order_id=order.id, amount=order.total, currency=currency))

    for item, (product, option_ids, quantity) in zip(items, selections):
        await stock_ledger.reserve(
            db, order, product, option_ids, quantity, order_item=item
        )

    log_audit(
        db,
        AuditEntityType.ORDER,
        order.id,
        "created",
        member_auth_id or order.customer_email,
        new_value={"status": order.status.value, "total": str(order.total)},
    )
    await db.flush()

    logger.info(
        "Created order %s (%d items, total=%s %s)",
        order.order_number,
        len(items),
        order.total,
        currency,
    )
    return order


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def transition_order(
    db: AsyncSession,
    order: Order,
    event: OrderEvent,
    actor: str,
    note: Optional[str] = None,
) -> Transition:
    """Apply ``event`` to ``order`` under a row lock.

    Raises InvalidTransition (nothing applied) when the table has no entry
    for the order's current status.
    """
    order = await lock_order(db, order.id)
    try:
        transition = resolve(order.status, event)
    except InvalidTransition:
        logger.warning(
            "Rejected %s for order %s in status %s",
            event.value,
            order.order_number,
            order.status.value,
        )
        raise

    if transition.effect == StockEffect.CONFIRM:
        await stock_ledger.confirm(db, order)
    elif transition.effect == StockEffect.RELEASE:
        await stock_ledger.release(db, order)
    elif transition.effect == StockEffect.RESTORE:
        await stock_ledger.restore(db, order)

    old_status = order.status
    order.status = transition.target
    timestamp_field = STATUS_TIMESTAMPS.get(transition.target)
    if timestamp_field:
        setattr(order, timestamp_field, utc_now())

    log_audit(
        db,
        AuditEntityType.ORDER,
        order.id,
        "status_changed",
        actor,
        old_value={"status": old_status.value},
        new_value={"status": transition.target.value, "event": event.value},
        notes=note,
    )
    await db.flush()

    logger.info(
        "Order %s: %s -> %s (%s)",
        order.order_number,
        old_status.value,
        transition.target.value,
        event.value,
    )
    return transition


async def cancel_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    actor: str,
    note: Optional[str] = None,
) -> Order:
    order = await lock_order(db, order_id)
    await transition_order(db, order, OrderEvent.USER_CANCEL, actor, note)
    return order


async def mark_shipped(
    db: AsyncSession, order_id: uuid.UUID, actor: str, note: Optional[str] = None
) -> Order:
    order = await lock_order(db, order_id)
    await transition_order(db, order, OrderEvent.SHIP, actor, note)
    return order


async def mark_delivered(
    db: AsyncSession, order_id: uuid.UUID, actor: str, note: Optional[str] = None
) -> Order:
    order = await lock_order(db, order_id)
    await transition_order(db, order, OrderEvent.DELIVER, actor, note)
    return order
