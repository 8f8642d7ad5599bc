"""Order state machine: the transition table and reachability queries.

Pure functions only; applying a transition (locking, stock effects, audit)
lives in ``orders.transition_order``.
"""

from collections import deque
from typing import NamedTuple

from services.store_service.errors import InvalidTransition
from services.store_service.models.enums import OrderEvent, OrderStatus, StockEffect


class Transition(NamedTuple):
    source: OrderStatus
    event: OrderEvent
    target: OrderStatus
    effect: StockEffect


_S = OrderStatus
_E = OrderEvent

TRANSITIONS: dict[tuple[OrderStatus, OrderEvent], Transition] = {
    (t.source, t.event): t
    for t in (
        Transition(_S.PENDING, _E.CAPTURE_COMPLETED, _S.PAID, StockEffect.CONFIRM),
        Transition(_S.PENDING, _E.CAPTURE_DENIED, _S.CANCELLED, StockEffect.RELEASE),
        Transition(
            _S.PENDING, _E.CAPTURE_PENDING, _S.AWAITING_CAPTURE, StockEffect.NONE
        ),
        Transition(
            _S.AWAITING_CAPTURE, _E.CAPTURE_COMPLETED, _S.PAID, StockEffect.CONFIRM
        ),
        Transition(
            _S.AWAITING_CAPTURE,
            _E.CAPTURE_DENIED,
            _S.PAYMENT_FAILED,
            StockEffect.RELEASE,
        ),
        Transition(_S.PAID, _E.CAPTURE_REFUNDED, _S.REFUNDED, StockEffect.RESTORE),
        Transition(_S.SHIPPED, _E.CAPTURE_REFUNDED, _S.REFUNDED, StockEffect.RESTORE),
        Transition(
            _S.DELIVERED, _E.CAPTURE_REFUNDED, _S.REFUNDED, StockEffect.RESTORE
        ),
        Transition(_S.PENDING, _E.USER_CANCEL, _S.CANCELLED, StockEffect.RELEASE),
        Transition(
            _S.AWAITING_CAPTURE, _E.USER_CANCEL, _S.CANCELLED, StockEffect.RELEASE
        ),
        Transition(_S.PENDING, _E.EXPIRE, _S.CANCELLED, StockEffect.RELEASE),
        Transition(_S.AWAITING_CAPTURE, _E.EXPIRE, _S.CANCELLED, StockEffect.RELEASE),
        Transition(_S.PAID, _E.SHIP, _S.SHIPPED, StockEffect.NONE),
        Transition(_S.SHIPPED, _E.DELIVER, _S.DELIVERED, StockEffect.NONE),
    )
}

def resolve(current: OrderStatus, event: OrderEvent) -> Transition:
    """Return the transition for ``(current, event)`` or raise InvalidTransition."""
    transition = TRANSITIONS.get((current, event))
    if transition is None:
        raise InvalidTransition(
            f"Event {event.value} is not allowed in status {current.value}",
            current_status=current,
            event=event,
        )
    return transition


def can_transition(current: OrderStatus, event: OrderEvent) -> bool:
    return (current, event) in TRANSITIONS


def reachable_statuses(current: OrderStatus) -> set[OrderStatus]:
    """Statuses reachable from ``current`` in one or more transitions."""
    seen: set[OrderStatus] = set()
    queue = deque([current])
    while queue:
        status = queue.popleft()
        for (source, _), transition in TRANSITIONS.items():
            if source == status and transition.target not in seen:
                seen.add(transition.target)
                queue.append(transition.target)
    return seen


def may_become_valid(current: OrderStatus, event: OrderEvent) -> bool:
    """Whether ``event`` is premature rather than impossible for ``current``.

    True when the event is rejected now but accepted from some status the
    order can still reach; such events are held and re-checked later.
    """
    if can_transition(current, event):
        return False
    return any(can_transition(status, event) for status in reachable_statuses(current))
