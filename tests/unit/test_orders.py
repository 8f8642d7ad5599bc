"""Unit tests for checkout and order transitions."""

import uuid
from decimal import Decimal

import pytest
from services.store_service.errors import InvalidRequest, InvalidTransition, NotFound
from services.store_service.models import (
    LedgerStage,
    Order,
    OrderEvent,
    OrderStatus,
    Payment,
    PaymentStatus,
    Region,
    StoreAuditLog,
    VariationOption,
)
from services.store_service.services import orders as order_service
from sqlalchemy import select
from tests.factories import (
    ProductFactory,
    VariationOptionFactory,
    VariationFactory,
    checkout_request,
    fetch,
    persist,
    tracked_product,
)

# ---------------------------------------------------------------------------
# create_order
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_prices_lines_and_totals(db_session):
    """Unit price = product price + option adjustments; totals add up."""
    large = VariationOptionFactory.create(name="L", price_adjustment=Decimal("2.50"))
    product = ProductFactory.create(
        price=Decimal("20.00"),
        variations=[VariationFactory.create(options=[large])],
    )
    await persist(db_session, product)

    order = await order_service.create_order(
        db_session,
        checkout_request(
            [(product, [large], 2)],
            tax_amount=Decimal("3.00"),
            shipping_amount=Decimal("5.00"),
            discount_amount=Decimal("1.00"),
        ),
        member_auth_id="member-1",
    )
    await db_session.commit()

    assert order.status == OrderStatus.PENDING
    assert order.currency == "USD"
    assert order.subtotal == Decimal("45.00")
    assert order.total == Decimal("52.00")
    assert order.order_number.startswith("SF-")
    assert order.member_auth_id == "member-1"

    item = order.items[0]
    assert item.unit_price == Decimal("22.50")
    assert item.line_total == Decimal("45.00")
    assert item.option_names == "L"
    assert item.option_ids == [str(large.id)]

    payment = (
        await db_session.execute(select(Payment).where(Payment.order_id == order.id))
    ).scalar_one()
    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == Decimal("52.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_eu_uses_euro(db_session):
    product = ProductFactory.create(region=Region.EU, stock=4)
    await persist(db_session, product)

    order = await order_service.create_order(
        db_session, checkout_request([(product, [], 1)], region=Region.EU)
    )
    assert order.currency == "EUR"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_rejects_other_region_product(db_session):
    product = ProductFactory.create(region=Region.EU, stock=4)
    await persist(db_session, product)

    with pytest.raises(InvalidRequest):
        await order_service.create_order(
            db_session, checkout_request([(product, [], 1)], region=Region.US)
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_unknown_or_deleted_product(db_session):
    from libs.common.datetime_utils import utc_now

    deleted = ProductFactory.create(stock=4, deleted_at=utc_now())
    await persist(db_session, deleted)

    with pytest.raises(NotFound):
        await order_service.create_order(
            db_session, checkout_request([(deleted, [], 1)])
        )
    with pytest.raises(NotFound):
        await order_service.create_order(
            db_session, checkout_request([(ProductFactory.create(), [], 1)])
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_order_discount_cannot_exceed_value(db_session):
    product = ProductFactory.create(stock=4, price=Decimal("5.00"))
    await persist(db_session, product)

    with pytest.raises(InvalidRequest):
        await order_service.create_order(
            db_session,
            checkout_request([(product, [], 1)], discount_amount=Decimal("6.00")),
        )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def _pending_order(db, qty=2, stock=5):
    product, options = tracked_product({"M": stock})
    await persist(db, product)
    order = await order_service.create_order(
        db, checkout_request([(product, [options["M"]], qty)])
    )
    await db.commit()
    return order, options["M"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_pending_order_releases_stock(db_session):
    order, option = await _pending_order(db_session)

    await order_service.cancel_order(db_session, order.id, "customer@test.com")
    await db_session.commit()

    order = await fetch(db_session, Order, order.id)
    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_at is not None
    assert order.ledger_stage == LedgerStage.RELEASED

    option = await fetch(db_session, VariationOption, option.id)
    assert option.reserved_quantity == 0
    assert option.stock_quantity == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_full_fulfillment_path(db_session):
    order, option = await _pending_order(db_session)

    await order_service.transition_order(
        db_session, order, OrderEvent.CAPTURE_COMPLETED, "payment-webhook"
    )
    await order_service.mark_shipped(db_session, order.id, "admin@store.test")
    await order_service.mark_delivered(db_session, order.id, "admin@store.test")
    await db_session.commit()

    order = await fetch(db_session, Order, order.id)
    assert order.status == OrderStatus.DELIVERED
    assert order.paid_at is not None
    assert order.shipped_at is not None
    assert order.delivered_at is not None

    option = await fetch(db_session, VariationOption, option.id)
    assert (option.stock_quantity, option.reserved_quantity) == (3, 0)

    audit = (
        await db_session.execute(
            select(StoreAuditLog).where(
                StoreAuditLog.entity_id == order.id,
                StoreAuditLog.action == "status_changed",
            )
        )
    ).scalars().all()
    assert len(audit) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalid_transition_changes_nothing(db_session):
    order, option = await _pending_order(db_session)

    with pytest.raises(InvalidTransition):
        await order_service.mark_shipped(db_session, order.id, "admin@store.test")

    order = await fetch(db_session, Order, order.id)
    assert order.status == OrderStatus.PENDING
    assert order.ledger_stage == LedgerStage.RESERVED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_after_payment_is_rejected(db_session):
    order, _ = await _pending_order(db_session)
    await order_service.transition_order(
        db_session, order, OrderEvent.CAPTURE_COMPLETED, "payment-webhook"
    )
    await db_session.commit()

    with pytest.raises(InvalidTransition):
        await order_service.cancel_order(db_session, order.id, "customer@test.com")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_totals_locked_once_paid(db_session):
    order, _ = await _pending_order(db_session)
    await order_service.transition_order(
        db_session, order, OrderEvent.CAPTURE_COMPLETED, "payment-webhook"
    )

    with pytest.raises(InvalidRequest):
        order.total = Decimal("1.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_get_order_not_found(db_session):
    with pytest.raises(NotFound):
        await order_service.get_order(db_session, uuid.uuid4())
    with pytest.raises(NotFound):
        await order_service.get_order_by_number(db_session, "SF-00000000-XXXXX")
