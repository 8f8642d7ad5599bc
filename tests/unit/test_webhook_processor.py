"""Unit tests for the idempotent payment webhook processor.

Each test commits its fixtures first: the processor works in its own
sessions (one unit of work per event), like it does in production.
"""

import uuid
from decimal import Decimal

import pytest
from services.store_service.errors import (
    ConcurrencyConflict,
    InvalidRequest,
    SignatureVerificationFailed,
)
from services.store_service.gateway.fake_adapter import SIGNATURE_HEADER
from services.store_service.models import (
    LedgerStage,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    Refund,
    Region,
    VariationOption,
    WebhookEvent,
    WebhookOutcome,
)
from services.store_service.services.orders import create_order
from services.store_service.services.webhook_processor import (
    WebhookProcessor,
    map_event_type,
    parse_event,
)
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from tests.factories import (
    checkout_request,
    fetch,
    gateway_event,
    persist,
    tracked_product,
    webhook_body,
)

COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
DENIED = "PAYMENT.CAPTURE.DENIED"
PENDING = "PAYMENT.CAPTURE.PENDING"
REFUNDED = "PAYMENT.CAPTURE.REFUNDED"


async def _pending_order(db, stocks=None, quantities=None, region=Region.US):
    """Commit a pending order; returns (order, {option name: option})."""
    stocks = stocks or {"M": 5}
    quantities = quantities or {"M": 2}
    product, options = tracked_product(stocks, region=region)
    await persist(db, product)
    order = await create_order(
        db,
        checkout_request(
            [(product, [options[name]], qty) for name, qty in quantities.items()],
            region=region,
        ),
    )
    await db.commit()
    return order, options


async def _option(db, option):
    return await fetch(db, VariationOption, option.id)


async def _record(db, event_id):
    result = await db.execute(
        select(WebhookEvent)
        .where(WebhookEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_parse_event_unwraps_amount():
    event = parse_event(
        b'{"id": "WH-1", "event_type": "PAYMENT.CAPTURE.REFUNDED",'
        b' "resource": {"id": "R-1", "amount": {"value": "12.50", "currency_code": "USD"}}}'
    )
    assert event.resource.amount == Decimal("12.50")
    assert map_event_type(event.event_type) is not None
    assert map_event_type("capture_completed") is not None
    assert map_event_type("CHECKOUT.ORDER.APPROVED") is None


@pytest.mark.unit
def test_parse_event_malformed():
    with pytest.raises(InvalidRequest):
        parse_event(b"not json")
    with pytest.raises(InvalidRequest):
        parse_event(b'{"event_type": "PAYMENT.CAPTURE.COMPLETED"}')


# ---------------------------------------------------------------------------
# Capture events
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_capture_completed_pays_order(db_session, processor):
    order, options = await _pending_order(db_session)

    result = await processor.process(gateway_event(COMPLETED, order, id="CAP-1"))

    assert result.outcome == WebhookOutcome.PROCESSED
    assert not result.duplicate
    paid = await fetch(db_session, Order, order.id)
    assert paid.status == OrderStatus.PAID
    assert paid.payment_status == PaymentStatus.COMPLETED
    assert paid.ledger_stage == LedgerStage.CONFIRMED

    option = await _option(db_session, options["M"])
    assert (option.stock_quantity, option.reserved_quantity) == (3, 0)

    payment = (
        await db_session.execute(
            select(Payment)
            .where(Payment.order_id == order.id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.transaction_id == "CAP-1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_duplicate_capture_applies_once(db_session, processor):
    """The same event delivered twice decrements stock once."""
    order, options = await _pending_order(db_session)
    event = gateway_event(COMPLETED, order, id="CAP-1")

    first = await processor.process(event)
    second = await processor.process(event)

    assert first.outcome == WebhookOutcome.PROCESSED
    assert second.duplicate
    assert second.outcome == WebhookOutcome.PROCESSED

    option = await _option(db_session, options["M"])
    assert option.stock_quantity == 3
    record = await _record(db_session, event.id)
    assert record.attempts == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_second_capture_with_new_id_is_conflict(db_session, processor):
    """A different capture for an already paid order is acknowledged, not applied."""
    order, options = await _pending_order(db_session)
    await processor.process(gateway_event(COMPLETED, order, id="CAP-1"))

    result = await processor.process(gateway_event(COMPLETED, order, id="CAP-2"))

    assert result.outcome == WebhookOutcome.CONFLICT
    option = await _option(db_session, options["M"])
    assert option.stock_quantity == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_denied_on_pending_cancels_and_releases(db_session, processor):
    order, options = await _pending_order(db_session)

    result = await processor.process(
        gateway_event(DENIED, order, id="CAP-1", reason_code="INSUFFICIENT_FUNDS")
    )

    assert result.outcome == WebhookOutcome.PROCESSED
    cancelled = await fetch(db_session, Order, order.id)
    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.FAILED

    option = await _option(db_session, options["M"])
    assert (option.stock_quantity, option.reserved_quantity) == (5, 0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_denied_after_pending_capture_is_payment_failed(db_session, processor):
    order, options = await _pending_order(db_session)

    await processor.process(gateway_event(PENDING, order, id="CAP-1"))
    awaiting = await fetch(db_session, Order, order.id)
    assert awaiting.status == OrderStatus.AWAITING_CAPTURE
    assert awaiting.payment_status == PaymentStatus.PROCESSING

    await processor.process(gateway_event(DENIED, order, id="CAP-1"))

    failed = await fetch(db_session, Order, order.id)
    assert failed.status == OrderStatus.PAYMENT_FAILED
    option = await _option(db_session, options["M"])
    assert option.reserved_quantity == 0


# ---------------------------------------------------------------------------
# Refund events
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_restores_every_line(db_session, processor):
    """Refunding an order of 2 x M and 1 x L puts all three units back."""
    order, options = await _pending_order(
        db_session, stocks={"M": 5, "L": 4}, quantities={"M": 2, "L": 1}
    )
    await processor.process(gateway_event(COMPLETED, order, id="CAP-1"))

    medium = await _option(db_session, options["M"])
    large = await _option(db_session, options["L"])
    assert (medium.stock_quantity, large.stock_quantity) == (3, 3)

    result = await processor.process(
        gateway_event(REFUNDED, order, id="REF-1", amount={"value": "20.00"})
    )

    assert result.outcome == WebhookOutcome.PROCESSED
    refunded = await fetch(db_session, Order, order.id)
    assert refunded.status == OrderStatus.REFUNDED
    assert refunded.ledger_stage == LedgerStage.RESTORED
    assert refunded.refunded_total == Decimal("20.00")

    medium = await _option(db_session, options["M"])
    large = await _option(db_session, options["L"])
    assert (medium.stock_quantity, medium.reserved_quantity) == (5, 0)
    assert (large.stock_quantity, large.reserved_quantity) == (4, 0)

    refund = (await db_session.execute(select(Refund))).scalar_one()
    assert refund.gateway_refund_id == "REF-1"
    assert refund.amount == Decimal("20.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_before_capture_is_deferred_then_applied(db_session, processor):
    """An early refund is held and applied right after the capture lands."""
    order, options = await _pending_order(db_session)

    early = await processor.process(
        gateway_event(REFUNDED, order, event_id="WH-REF-1", id="REF-1")
    )
    assert early.outcome == WebhookOutcome.DEFERRED
    held = await fetch(db_session, Order, order.id)
    assert held.status == OrderStatus.PENDING

    await processor.process(gateway_event(COMPLETED, order, id="CAP-1"))

    refunded = await fetch(db_session, Order, order.id)
    assert refunded.status == OrderStatus.REFUNDED
    option = await _option(db_session, options["M"])
    assert (option.stock_quantity, option.reserved_quantity) == (5, 0)

    record = await _record(db_session, "WH-REF-1")
    assert record.outcome == WebhookOutcome.PROCESSED
    assert record.attempts == 2
    assert record.processed_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_deferred_event_redelivery_is_not_duplicate(db_session, processor):
    order, _ = await _pending_order(db_session)
    event = gateway_event(REFUNDED, order, id="REF-1")

    await processor.process(event)
    again = await processor.process(event)

    assert not again.duplicate
    assert again.outcome == WebhookOutcome.DEFERRED
    record = await _record(db_session, event.id)
    assert record.attempts == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_on_cancelled_order_is_conflict(db_session, processor):
    order, options = await _pending_order(db_session)
    await processor.process(gateway_event(DENIED, order, id="CAP-1"))

    result = await processor.process(gateway_event(REFUNDED, order, id="REF-1"))

    assert result.outcome == WebhookOutcome.CONFLICT
    option = await _option(db_session, options["M"])
    assert option.stock_quantity == 5


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("value", ["9999.00", "0.00", "-5.00"])
async def test_refund_amount_outside_order_total_is_conflict(
    db_session, processor, value
):
    order, options = await _pending_order(db_session)
    await processor.process(gateway_event(COMPLETED, order, id="CAP-1"))

    result = await processor.process(
        gateway_event(REFUNDED, order, id="REF-1", amount={"value": value})
    )

    assert result.outcome == WebhookOutcome.CONFLICT
    paid = await fetch(db_session, Order, order.id)
    assert paid.status == OrderStatus.PAID
    assert (paid.refunded_total or Decimal("0")) == Decimal("0")
    option = await _option(db_session, options["M"])
    assert option.stock_quantity == 3
    assert (await db_session.execute(select(Refund))).first() is None


# ---------------------------------------------------------------------------
# Unmapped input
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unhandled_type_and_unknown_order_are_ignored(db_session, processor):
    order, _ = await _pending_order(db_session)

    unhandled = await processor.process(
        gateway_event("CHECKOUT.ORDER.APPROVED", order, id="X-1")
    )
    unknown = await processor.process(
        gateway_event(COMPLETED, custom_id=str(uuid.uuid4()), id="CAP-9")
    )

    assert unhandled.outcome == WebhookOutcome.IGNORED
    assert unknown.outcome == WebhookOutcome.IGNORED
    untouched = await fetch(db_session, Order, order.id)
    assert untouched.status == OrderStatus.PENDING


# ---------------------------------------------------------------------------
# Verification and retries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_handle_delivery_verifies_with_order_region(
    db_session, processor, fake_gateway
):
    order, _ = await _pending_order(db_session, region=Region.EU)
    event = gateway_event(COMPLETED, order, id="CAP-1")
    body = webhook_body(event)

    # Signed with the other region's credentials
    with pytest.raises(SignatureVerificationFailed):
        await processor.handle_delivery(
            {SIGNATURE_HEADER: fake_gateway.sign(body, "us")}, body
        )

    result = await processor.handle_delivery(
        {"X-Fake-Signature": fake_gateway.sign(body, "eu")}, body
    )
    assert result.outcome == WebhookOutcome.PROCESSED
    assert fake_gateway.calls[-1] == {"method": "verify_webhook", "region": "eu"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transient_failures_are_retried(db_session, processor, monkeypatch):
    order, _ = await _pending_order(db_session)
    original = WebhookProcessor.apply_event
    calls = {"count": 0}

    async def flaky(self, db, event, actor="payment-webhook"):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("UPDATE", {}, Exception("database is locked"))
        return await original(self, db, event, actor)

    monkeypatch.setattr(WebhookProcessor, "apply_event", flaky)

    result = await processor.process(gateway_event(COMPLETED, order, id="CAP-1"))

    assert calls["count"] == 2
    assert result.outcome == WebhookOutcome.PROCESSED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retries_exhausted_raise_concurrency_conflict(processor, monkeypatch):
    async def always_locked(self, db, event, actor="payment-webhook"):
        raise ConcurrencyConflict("drift")

    monkeypatch.setattr(WebhookProcessor, "apply_event", always_locked)

    with pytest.raises(ConcurrencyConflict):
        await processor.process(gateway_event(COMPLETED, custom_id=None, id="CAP-1"))
