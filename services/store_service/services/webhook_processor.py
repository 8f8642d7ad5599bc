"""Idempotent processing of payment gateway webhook events.

Flow for a delivery:

1. Parse the body into a ``GatewayEvent``
2. Resolve the sales region from the referenced order (default region if unknown)
3. Verify the delivery through the gateway port with that region's credentials
4. In one unit of work: dedupe by event id, map the event type onto the order
   state machine, apply the transition with its payment and stock effects,
   then re-check events held as deferred for the same order
5. Retry the whole unit on transient database contention

Premature events (e.g. a refund that arrives before its capture) are stored
``deferred`` and re-applied once the order reaches a state that accepts them.
"""

import json
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional

from libs.common.config import Settings, get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import SessionFactory, unit_of_work
from pydantic import ValidationError
from services.store_service.errors import (
    ConcurrencyConflict,
    DuplicateEvent,
    InvalidRequest,
    InvalidTransition,
    SignatureVerificationFailed,
)
from services.store_service.gateway.port import PaymentGateway
from services.store_service.models import (
    AuditEntityType,
    Order,
    OrderEvent,
    OrderStatus,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    Region,
    WebhookEvent,
    WebhookOutcome,
)
from services.store_service.schemas import GatewayEvent
from services.store_service.services.audit import log_audit
from services.store_service.services.orders import transition_order
from services.store_service.services.state_machine import may_become_valid
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

EVENT_TYPE_MAP: dict[str, OrderEvent] = {
    "PAYMENT.CAPTURE.COMPLETED": OrderEvent.CAPTURE_COMPLETED,
    "PAYMENT.CAPTURE.DENIED": OrderEvent.CAPTURE_DENIED,
    "PAYMENT.CAPTURE.PENDING": OrderEvent.CAPTURE_PENDING,
    "PAYMENT.CAPTURE.REFUNDED": OrderEvent.CAPTURE_REFUNDED,
}
# Short names are accepted as well
EVENT_TYPE_MAP.update(
    {event.value: event for event in EVENT_TYPE_MAP.values()}
)

WEBHOOK_ACTOR = "payment-webhook"


@dataclass
class ProcessingResult:
    event_id: str
    outcome: WebhookOutcome
    order_id: Optional[uuid.UUID] = None
    duplicate: bool = False
    detail: Optional[str] = None


def parse_event(body: bytes) -> GatewayEvent:
    """Parse a raw webhook body; malformed input raises InvalidRequest."""
    try:
        return GatewayEvent.model_validate(json.loads(body))
    except (ValueError, ValidationError) as exc:
        raise InvalidRequest(f"Malformed webhook body: {exc}") from exc


def map_event_type(event_type: str) -> Optional[OrderEvent]:
    return EVENT_TYPE_MAP.get(event_type)


def referenced_order_id(event: GatewayEvent) -> Optional[uuid.UUID]:
    custom_id = event.resource.custom_id
    if not custom_id:
        return None
    try:
        return uuid.UUID(custom_id)
    except ValueError:
        return None


# Statuses an order can close in without ever having been paid
CLOSED_UNPAID = frozenset({OrderStatus.CANCELLED, OrderStatus.PAYMENT_FAILED})


def holds_orphan_capture(order: Order) -> bool:
    """A capture landed after the order closed unpaid; the money must go back."""
    return (
        order.status in CLOSED_UNPAID
        and order.payment_status == PaymentStatus.COMPLETED
    )


def refund_amount_problem(order: Order, amount: Optional[Decimal]) -> Optional[str]:
    """Why a refund of ``amount`` cannot apply to ``order``, or None."""
    if amount is None:
        return None
    outstanding = order.total - (order.refunded_total or Decimal("0"))
    if amount <= 0 or amount > outstanding:
        return (
            f"Refund amount {amount} outside 0..{outstanding} {order.currency} "
            f"for order {order.order_number}"
        )
    return None


class WebhookProcessor:
    """Applies gateway events to orders exactly once per event id."""

    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: PaymentGateway,
        settings: Settings = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings or get_settings()

    # =========================================================================
    # Entry points
    # =========================================================================

    async def handle_delivery(
        self, headers: Mapping[str, str], body: bytes
    ) -> ProcessingResult:
        """Verify and process one webhook delivery."""
        event = parse_event(body)
        region = await self.resolve_region(referenced_order_id(event))
        credentials = self.settings.gateway_credentials(region)

        if not await self.gateway.verify_webhook(credentials, headers, body):
            logger.warning(
                "Webhook signature verification failed for event %s",
                event.id,
                extra={"extra_fields": {"event_type": event.event_type, "region": region.value}},
            )
            raise SignatureVerificationFailed("Invalid webhook signature")

        return await self.process(event)

    async def process(
        self, event: GatewayEvent, actor: str = WEBHOOK_ACTOR
    ) -> ProcessingResult:
        """Process a trusted event in its own unit of work, retrying contention."""
        max_attempts = max(self.settings.LEDGER_MAX_RETRIES, 1)
        for attempt in range(1, max_attempts + 1):
            try:
                async with unit_of_work(self.session_factory) as db:
                    return await self.apply_event(db, event, actor)
            except DuplicateEvent as exc:
                logger.info("Duplicate webhook event %s ignored", event.id)
                return ProcessingResult(
                    event_id=event.id,
                    outcome=exc.context["outcome"],
                    order_id=exc.context.get("order_id"),
                    duplicate=True,
                    detail=exc.detail,
                )
            except (OperationalError, IntegrityError, ConcurrencyConflict) as exc:
                if attempt == max_attempts:
                    logger.error(
                        "Webhook event %s failed after %d attempts: %s",
                        event.id,
                        attempt,
                        exc,
                    )
                    raise ConcurrencyConflict(
                        f"Could not process event {event.id}; retry later"
                    ) from exc
                logger.warning(
                    "Retrying webhook event %s after transient failure (attempt %d): %s",
                    event.id,
                    attempt,
                    exc,
                )
        raise ConcurrencyConflict(f"Could not process event {event.id}")

    async def resolve_region(self, order_id: Optional[uuid.UUID]) -> Region:
        """Region of the referenced order, falling back to the default region."""
        if order_id is not None:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Order.region).where(Order.id == order_id)
                )
                region = result.scalar_one_or_none()
            if region is not None:
                return region
        return Region(self.settings.DEFAULT_REGION)

    # =========================================================================
    # Unit of work
    # =========================================================================

    async def apply_event(
        self, db: AsyncSession, event: GatewayEvent, actor: str = WEBHOOK_ACTOR
    ) -> ProcessingResult:
        """Record and apply ``event`` inside the caller's transaction.

        Raises DuplicateEvent when the event id already has a final outcome.
        """
        result = await db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.event_id == event.id)
            .with_for_update()
        )
        record = result.scalar_one_or_none()
        if record is not None and record.outcome.is_final:
            raise DuplicateEvent(
                f"Event {event.id} already handled",
                outcome=record.outcome,
                order_id=record.order_id,
            )

        if record is None:
            record = WebhookEvent(
                event_id=event.id,
                event_type=event.event_type,
                payload=event.model_dump(mode="json"),
                outcome=WebhookOutcome.RECEIVED,
                attempts=0,
            )
            db.add(record)
            # A concurrent insert of the same id fails here and is retried
            await db.flush()

        record.attempts += 1

        order_event = map_event_type(event.event_type)
        if order_event is None:
            self._finish(record, WebhookOutcome.IGNORED, "Unhandled event type")
            logger.info("Ignoring unhandled webhook event type %s", event.event_type)
            return self._result(record)

        order = None
        order_id = referenced_order_id(event)
        if order_id is not None:
            order = await db.get(Order, order_id)
        if order is None:
            self._finish(record, WebhookOutcome.IGNORED, "Unknown order reference")
            logger.warning(
                "Webhook event %s references unknown order %r",
                event.id,
                event.resource.custom_id,
            )
            return self._result(record)

        record.order_id = order.id
        outcome = await self._apply(db, order, order_event, event, record, actor)
        if outcome == WebhookOutcome.PROCESSED:
            await self._recheck_deferred(db, order, actor, exclude_id=record.id)

        await db.flush()
        return self._result(record)

    async def _apply(
        self,
        db: AsyncSession,
        order: Order,
        order_event: OrderEvent,
        event: GatewayEvent,
        record: WebhookEvent,
        actor: str,
    ) -> WebhookOutcome:
        if order_event == OrderEvent.CAPTURE_REFUNDED:
            problem = refund_amount_problem(order, event.resource.amount)
            if problem:
                self._finish(record, WebhookOutcome.CONFLICT, problem)
                logger.warning("Rejected refund event %s: %s", event.id, problem)
                return record.outcome

        try:
            await transition_order(
                db, order, order_event, actor, note=f"Gateway event {event.id}"
            )
        except InvalidTransition as exc:
            current = exc.current_status or order.status
            if current in CLOSED_UNPAID:
                if order_event == OrderEvent.CAPTURE_COMPLETED:
                    await self._record_orphan_capture(db, order, event, record, actor)
                    return record.outcome
                if order_event == OrderEvent.CAPTURE_REFUNDED and holds_orphan_capture(
                    order
                ):
                    await self._apply_payment_effects(db, order, order_event, event)
                    self._finish(record, WebhookOutcome.PROCESSED)
                    logger.info(
                        "Refunded late capture on closed order %s", order.order_number
                    )
                    return record.outcome
            if may_become_valid(current, order_event):
                self._finish(record, WebhookOutcome.DEFERRED, exc.detail)
                logger.info(
                    "Deferred %s for order %s (status %s)",
                    event.event_type,
                    order.order_number,
                    current.value,
                )
            else:
                self._finish(record, WebhookOutcome.CONFLICT, exc.detail)
                logger.warning(
                    "Conflicting %s for order %s (status %s); acknowledged without effect",
                    event.event_type,
                    order.order_number,
                    current.value,
                )
            return record.outcome

        await self._apply_payment_effects(db, order, order_event, event)
        self._finish(record, WebhookOutcome.PROCESSED)
        return record.outcome

    async def _recheck_deferred(
        self,
        db: AsyncSession,
        order: Order,
        actor: str,
        exclude_id: uuid.UUID,
    ) -> None:
        """Re-attempt held events now that the order has moved on."""
        progressed = True
        while progressed:
            progressed = False
            result = await db.execute(
                select(WebhookEvent)
                .where(
                    WebhookEvent.order_id == order.id,
                    WebhookEvent.outcome == WebhookOutcome.DEFERRED,
                    WebhookEvent.id != exclude_id,
                )
                .order_by(WebhookEvent.received_at)
            )
            for record in result.scalars().all():
                order_event = map_event_type(record.event_type)
                event = GatewayEvent.model_validate(record.payload)
                record.attempts += 1
                outcome = await self._apply(db, order, order_event, event, record, actor)
                if outcome == WebhookOutcome.PROCESSED:
                    logger.info(
                        "Applied deferred event %s to order %s",
                        record.event_id,
                        order.order_number,
                    )
                    # The order moved again; re-read what is still held
                    progressed = True
                    break

    # =========================================================================
    # Payment side effects
    # =========================================================================

    async def _apply_payment_effects(
        self,
        db: AsyncSession,
        order: Order,
        order_event: OrderEvent,
        event: GatewayEvent,
    ) -> None:
        payment = await self._current_payment(db, order)

        resource = event.resource
        if order_event == OrderEvent.CAPTURE_COMPLETED:
            self._mark_captured(order, payment, event)

        elif order_event == OrderEvent.CAPTURE_DENIED:
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = resource.reason_code or "Payment denied"
            order.payment_status = PaymentStatus.FAILED

        elif order_event == OrderEvent.CAPTURE_PENDING:
            payment.status = PaymentStatus.PROCESSING
            order.payment_status = PaymentStatus.PROCESSING

        elif order_event == OrderEvent.CAPTURE_REFUNDED:
            amount = resource.amount
            if amount is None:
                amount = order.total - (order.refunded_total or Decimal("0"))
            await db.flush()
            db.add(
                Refund(
                    payment_id=payment.id,
                    order_id=order.id,
                    gateway_refund_id=resource.id,
                    amount=amount,
                    reason=resource.reason_code,
                    status=RefundStatus.COMPLETED,
                )
            )
            payment.status = PaymentStatus.REFUNDED
            order.payment_status = PaymentStatus.REFUNDED
            order.refunded_total = (order.refunded_total or Decimal("0")) + amount

        await db.flush()

    async def _record_orphan_capture(
        self,
        db: AsyncSession,
        order: Order,
        event: GatewayEvent,
        record: WebhookEvent,
        actor: str,
    ) -> None:
        """Keep the money trail of a capture that arrived after the order closed.

        The order stays closed and its released stock is not taken again; the
        capture is stored on the payment so support can refund it.
        """
        payment = await self._current_payment(db, order)
        self._mark_captured(order, payment, event)
        log_audit(
            db,
            AuditEntityType.ORDER,
            order.id,
            "captured_after_close",
            actor,
            new_value={
                "status": order.status.value,
                "transaction_id": payment.transaction_id,
                "amount": str(event.resource.amount or payment.amount),
            },
            notes="Refund required",
        )
        await db.flush()

        self._finish(
            record,
            WebhookOutcome.CONFLICT,
            f"Captured after order closed as {order.status.value}; refund required",
        )
        logger.error(
            "Payment captured for closed order %s (status %s, capture %s); refund required",
            order.order_number,
            order.status.value,
            payment.transaction_id,
            extra={"extra_fields": {"order_id": str(order.id), "event_id": event.id}},
        )

    @staticmethod
    async def _current_payment(db: AsyncSession, order: Order) -> Payment:
        result = await db.execute(
            select(Payment)
            .where(Payment.order_id == order.id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            payment = Payment(
                order_id=order.id, amount=order.total, currency=order.currency
            )
            db.add(payment)
        return payment

    @staticmethod
    def _mark_captured(order: Order, payment: Payment, event: GatewayEvent) -> None:
        payment.status = PaymentStatus.COMPLETED
        payment.completed_at = utc_now()
        if event.resource.id and not payment.transaction_id:
            payment.transaction_id = event.resource.id
        order.payment_status = PaymentStatus.COMPLETED

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _finish(
        record: WebhookEvent, outcome: WebhookOutcome, detail: Optional[str] = None
    ) -> None:
        record.outcome = outcome
        record.detail = detail
        record.processed_at = utc_now() if outcome.is_final else None

    @staticmethod
    def _result(record: WebhookEvent) -> ProcessingResult:
        return ProcessingResult(
            event_id=record.event_id,
            outcome=record.outcome,
            order_id=record.order_id,
            detail=record.detail,
        )
