"""Stock ledger: reservation, confirmation, release and restoration of stock.

Option-level counters are changed only through guarded UPDATE statements
(compare-and-swap on the row), never read-then-write. Each order carries a
``ledger_stage`` so every ledger operation is idempotent per order.

None of these functions commit; callers own the transaction.
"""

import uuid
from collections import Counter
from typing import Iterable, Optional

from libs.common.logging import get_logger
from services.store_service.errors import (
    ConcurrencyConflict,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    OutOfStock,
)
from services.store_service.models import (
    AuditEntityType,
    InventoryMovement,
    InventoryMovementType,
    LedgerStage,
    Order,
    OrderItem,
    Product,
    ProductVariation,
    ReservationStatus,
    StockReservation,
    VariationOption,
)
from services.store_service.schemas import ProductAvailability
from services.store_service.services.audit import log_audit
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _movement(
    db: AsyncSession,
    movement_type: InventoryMovementType,
    quantity: int,
    *,
    option_id: Optional[uuid.UUID] = None,
    product_id: Optional[uuid.UUID] = None,
    order: Optional[Order] = None,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
) -> None:
    db.add(
        InventoryMovement(
            option_id=option_id,
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            reference_type="order" if order is not None else "manual",
            reference_id=order.id if order is not None else None,
            notes=notes,
            performed_by=performed_by,
        )
    )


async def _guarded_update(db: AsyncSession, stmt) -> bool:
    """Run a conditional UPDATE and report whether it matched exactly one row."""
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount == 1


async def _refresh_all(db: AsyncSession, instances: Iterable) -> None:
    # Guarded updates bypass the identity map; reload what the caller may hold
    for instance in instances:
        if instance in db:
            await db.refresh(instance)


async def load_selected_options(
    db: AsyncSession, product: Product, option_ids: list[uuid.UUID]
) -> list[tuple[VariationOption, ProductVariation]]:
    """Load the selected options of ``product`` with their variations.

    Every stock-tracked variation of the product needs exactly one selected
    option, otherwise the line would bypass the option counters.
    """
    if not option_ids:
        await _require_tracked_selection(db, product, [])
        return []
    result = await db.execute(
        select(VariationOption, ProductVariation)
        .join(ProductVariation, VariationOption.variation_id == ProductVariation.id)
        .where(VariationOption.id.in_(option_ids))
        .execution_options(populate_existing=True)
    )
    rows = list(result.all())
    found = {option.id for option, _ in rows}
    missing = [str(option_id) for option_id in option_ids if option_id not in found]
    if missing:
        raise NotFound(f"Variation option(s) not found: {', '.join(missing)}")
    for option, variation in rows:
        if variation.product_id != product.id:
            raise InvalidRequest(
                f"Option {option.id} does not belong to product {product.id}"
            )
    await _require_tracked_selection(db, product, rows)
    return rows


async def _require_tracked_selection(
    db: AsyncSession,
    product: Product,
    rows: list[tuple[VariationOption, ProductVariation]],
) -> None:
    result = await db.execute(
        select(ProductVariation.id, ProductVariation.name).where(
            ProductVariation.product_id == product.id,
            ProductVariation.tracks_stock.is_(True),
            ProductVariation.options.any(VariationOption.stock_quantity.is_not(None)),
        )
    )
    selected = Counter(variation.id for _, variation in rows)
    for variation_id, name in result.all():
        if selected[variation_id] != 1:
            raise InvalidRequest(
                f"Select exactly one {name} option for {product.name}"
            )


async def _reservations(
    db: AsyncSession,
    order: Order,
    status: ReservationStatus,
    items: Optional[list[OrderItem]] = None,
) -> list[StockReservation]:
    query = select(StockReservation).where(
        StockReservation.order_id == order.id, StockReservation.status == status
    )
    if items is not None:
        query = query.where(
            StockReservation.order_item_id.in_([item.id for item in items])
        )
    result = await db.execute(query.order_by(StockReservation.created_at))
    return list(result.scalars().all())


def _check_stage(order: Order, operation: str, *, expected: LedgerStage) -> None:
    if order.ledger_stage != expected:
        raise InvalidTransition(
            f"Cannot {operation} stock for order {order.order_number} "
            f"at ledger stage {order.ledger_stage.value}",
            current_status=order.status,
        )


# ---------------------------------------------------------------------------
# Order lifecycle operations
# ---------------------------------------------------------------------------


async def reserve(
    db: AsyncSession,
    order: Order,
    product: Product,
    option_ids: list[uuid.UUID],
    qty: int,
    *,
    order_item: Optional[OrderItem] = None,
) -> list[StockReservation]:
    """Hold ``qty`` units of an order line.

    Each stock-tracked selected option is reserved with a compare-and-swap
    update; a line with no stock-tracked option decrements the product's
    top-level counter directly (negative only with backorders allowed).
    """
    if qty <= 0:
        raise InvalidRequest("Quantity must be positive")
    if order.ledger_stage not in (LedgerStage.NONE, LedgerStage.RESERVED):
        _check_stage(order, "reserve", expected=LedgerStage.RESERVED)

    rows = await load_selected_options(db, product, option_ids)
    tracked = [
        option
        for option, variation in rows
        if variation.tracks_stock and option.stock_quantity is not None
    ]

    reservations: list[StockReservation] = []
    order_item_id = order_item.id if order_item is not None else None

    if tracked:
        for option in tracked:
            reserved = await _guarded_update(
                db,
                update(VariationOption)
                .where(
                    VariationOption.id == option.id,
                    VariationOption.stock_quantity.is_not(None),
                    VariationOption.stock_quantity - VariationOption.reserved_quantity
                    >= qty,
                )
                .values(reserved_quantity=VariationOption.reserved_quantity + qty),
            )
            if not reserved:
                raise OutOfStock(
                    f"Insufficient stock for {product.name} ({option.name})",
                    option_id=option.id,
                    requested=qty,
                )
            reservations.append(
                StockReservation(
                    order_id=order.id,
                    order_item_id=order_item_id,
                    option_id=option.id,
                    quantity=qty,
                )
            )
            _movement(
                db,
                InventoryMovementType.RESERVATION,
                -qty,
                option_id=option.id,
                product_id=product.id,
                order=order,
            )
        await _refresh_all(db, tracked)
    else:
        decremented = await _guarded_update(
            db,
            update(Product)
            .where(
                Product.id == product.id,
                or_(Product.stock >= qty, Product.backorders_allowed.is_(True)),
            )
            .values(stock=Product.stock - qty),
        )
        if not decremented:
            raise OutOfStock(
                f"Insufficient stock for {product.name}",
                product_id=product.id,
                requested=qty,
            )
        reservations.append(
            StockReservation(
                order_id=order.id,
                order_item_id=order_item_id,
                product_id=product.id,
                quantity=qty,
            )
        )
        _movement(
            db,
            InventoryMovementType.RESERVATION,
            -qty,
            product_id=product.id,
            order=order,
        )
        await _refresh_all(db, [product])

    db.add_all(reservations)
    order.ledger_stage = LedgerStage.RESERVED
    await db.flush()
    return reservations


async def confirm(db: AsyncSession, order: Order) -> None:
    """Turn an order's pending reservations into permanent decrements."""
    if order.ledger_stage == LedgerStage.CONFIRMED:
        logger.info("Stock already confirmed for order %s", order.order_number)
        return
    _check_stage(order, "confirm", expected=LedgerStage.RESERVED)

    touched = []
    for reservation in await _reservations(db, order, ReservationStatus.PENDING):
        if reservation.is_option_level:
            ok = await _guarded_update(
                db,
                update(VariationOption)
                .where(
                    VariationOption.id == reservation.option_id,
                    VariationOption.reserved_quantity >= reservation.quantity,
                )
                .values(
                    stock_quantity=VariationOption.stock_quantity
                    - reservation.quantity,
                    reserved_quantity=VariationOption.reserved_quantity
                    - reservation.quantity,
                ),
            )
            if not ok:
                raise ConcurrencyConflict(
                    f"Reserved quantity drifted for option {reservation.option_id}"
                )
            touched.append(reservation.option_id)
            _movement(
                db,
                InventoryMovementType.SALE,
                -reservation.quantity,
                option_id=reservation.option_id,
                order=order,
            )
        # Product-level holds were decremented at reservation time
        reservation.status = ReservationStatus.CONFIRMED

    order.ledger_stage = LedgerStage.CONFIRMED
    await db.flush()
    await _refresh_options(db, touched)
    logger.info("Confirmed stock for order %s", order.order_number)


async def release(db: AsyncSession, order: Order) -> None:
    """Give back everything an unconfirmed order holds."""
    if order.ledger_stage == LedgerStage.RELEASED:
        logger.info("Stock already released for order %s", order.order_number)
        return
    _check_stage(order, "release", expected=LedgerStage.RESERVED)

    touched = []
    products = []
    for reservation in await _reservations(db, order, ReservationStatus.PENDING):
        if reservation.is_option_level:
            ok = await _guarded_update(
                db,
                update(VariationOption)
                .where(
                    VariationOption.id == reservation.option_id,
                    VariationOption.reserved_quantity >= reservation.quantity,
                )
                .values(
                    reserved_quantity=VariationOption.reserved_quantity
                    - reservation.quantity
                ),
            )
            if not ok:
                raise ConcurrencyConflict(
                    f"Reserved quantity drifted for option {reservation.option_id}"
                )
            touched.append(reservation.option_id)
        else:
            await db.execute(
                update(Product)
                .where(Product.id == reservation.product_id)
                .values(stock=Product.stock + reservation.quantity)
                .execution_options(synchronize_session=False)
            )
            products.append(reservation.product_id)
        _movement(
            db,
            InventoryMovementType.RELEASE,
            reservation.quantity,
            option_id=reservation.option_id,
            product_id=reservation.product_id,
            order=order,
        )
        reservation.status = ReservationStatus.RELEASED

    order.ledger_stage = LedgerStage.RELEASED
    await db.flush()
    await _refresh_options(db, touched)
    await _refresh_products(db, products)
    logger.info("Released stock for order %s", order.order_number)


async def restore(
    db: AsyncSession, order: Order, items: Optional[list[OrderItem]] = None
) -> None:
    """Return confirmed stock to the shelf after a refund or return.

    ``items`` restricts the restore to those order lines; the order's stage
    only moves to ``restored`` once nothing confirmed remains.
    """
    if order.ledger_stage == LedgerStage.RESTORED:
        logger.info("Stock already restored for order %s", order.order_number)
        return
    _check_stage(order, "restore", expected=LedgerStage.CONFIRMED)

    touched = []
    products = []
    for reservation in await _reservations(
        db, order, ReservationStatus.CONFIRMED, items
    ):
        if reservation.is_option_level:
            await db.execute(
                update(VariationOption)
                .where(
                    VariationOption.id == reservation.option_id,
                    VariationOption.stock_quantity.is_not(None),
                )
                .values(
                    stock_quantity=VariationOption.stock_quantity
                    + reservation.quantity
                )
                .execution_options(synchronize_session=False)
            )
            touched.append(reservation.option_id)
        else:
            await db.execute(
                update(Product)
                .where(Product.id == reservation.product_id)
                .values(stock=Product.stock + reservation.quantity)
                .execution_options(synchronize_session=False)
            )
            products.append(reservation.product_id)
        _movement(
            db,
            InventoryMovementType.RETURN,
            reservation.quantity,
            option_id=reservation.option_id,
            product_id=reservation.product_id,
            order=order,
        )
        reservation.status = ReservationStatus.RESTORED

    await db.flush()
    if not await _reservations(db, order, ReservationStatus.CONFIRMED):
        order.ledger_stage = LedgerStage.RESTORED
        await db.flush()
    await _refresh_options(db, touched)
    await _refresh_products(db, products)
    logger.info("Restored stock for order %s", order.order_number)


async def _refresh_options(db: AsyncSession, option_ids: list[uuid.UUID]) -> None:
    for option_id in option_ids:
        option = await db.get(VariationOption, option_id)
        if option is not None:
            await db.refresh(option)


async def _refresh_products(db: AsyncSession, product_ids: list[uuid.UUID]) -> None:
    for product_id in product_ids:
        product = await db.get(Product, product_id)
        if product is not None:
            await db.refresh(product)


# ---------------------------------------------------------------------------
# Administrative corrections
# ---------------------------------------------------------------------------


async def _lock_option(db: AsyncSession, option_id: uuid.UUID) -> VariationOption:
    result = await db.execute(
        select(VariationOption)
        .where(VariationOption.id == option_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    option = result.scalar_one_or_none()
    if not option:
        raise NotFound(f"Variation option {option_id} not found")
    return option


async def adjust_manual(
    db: AsyncSession,
    option_id: uuid.UUID,
    delta: int,
    reason: str,
    performed_by: str,
) -> VariationOption:
    """Apply an audited stock correction to a tracked option.

    The resulting stock may not drop below what open orders have reserved.
    """
    if delta == 0:
        raise InvalidRequest("Adjustment must be non-zero")

    option = await _lock_option(db, option_id)
    if option.stock_quantity is None:
        raise InvalidRequest(
            f"Option {option.name} is not stock-tracked; set its stock first"
        )

    old_quantity = option.stock_quantity
    new_quantity = old_quantity + delta
    if new_quantity < option.reserved_quantity:
        raise InvalidRequest(
            f"Cannot reduce stock below reserved quantity ({option.reserved_quantity})"
        )

    option.stock_quantity = new_quantity
    movement_type = (
        InventoryMovementType.RESTOCK if delta > 0 else InventoryMovementType.ADJUSTMENT
    )
    _movement(
        db,
        movement_type,
        delta,
        option_id=option.id,
        notes=reason,
        performed_by=performed_by,
    )
    log_audit(
        db,
        AuditEntityType.INVENTORY,
        option.id,
        "stock_adjusted",
        performed_by,
        old_value={"stock_quantity": old_quantity},
        new_value={"stock_quantity": new_quantity},
        notes=reason,
    )
    await db.flush()

    logger.info(
        "Adjusted stock for option %s by %d (%d -> %d)",
        option.id,
        delta,
        old_quantity,
        new_quantity,
    )
    return option


async def set_option_stock(
    db: AsyncSession,
    option_id: uuid.UUID,
    quantity: int,
    threshold: Optional[int],
    performed_by: str,
) -> VariationOption:
    """Overwrite an option's stock counter (and optionally its threshold)."""
    if quantity < 0:
        raise InvalidRequest("Stock quantity cannot be negative")

    option = await _lock_option(db, option_id)
    if quantity < option.reserved_quantity:
        raise InvalidRequest(
            f"Cannot set stock below reserved quantity ({option.reserved_quantity})"
        )

    old_value = {
        "stock_quantity": option.stock_quantity,
        "low_stock_threshold": option.low_stock_threshold,
    }
    delta = quantity - (option.stock_quantity or 0)

    option.stock_quantity = quantity
    if threshold is not None:
        option.low_stock_threshold = threshold

    if delta:
        _movement(
            db,
            InventoryMovementType.ADJUSTMENT,
            delta,
            option_id=option.id,
            notes="Stock set",
            performed_by=performed_by,
        )
    log_audit(
        db,
        AuditEntityType.INVENTORY,
        option.id,
        "stock_set",
        performed_by,
        old_value=old_value,
        new_value={
            "stock_quantity": option.stock_quantity,
            "low_stock_threshold": option.low_stock_threshold,
        },
    )
    await db.flush()
    return option


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


async def check_availability(
    db: AsyncSession,
    product_id: uuid.UUID,
    option_ids: list[uuid.UUID],
    quantity: int = 1,
) -> ProductAvailability:
    """Available units for a product configuration, net of open reservations.

    The smallest ``stock_quantity - reserved_quantity`` among the selected
    stock-tracked options, or the product counter when none is tracked.
    Selection rules are the same as at checkout.
    """
    if quantity <= 0:
        raise InvalidRequest("Quantity must be positive")
    result = await db.execute(
        select(Product).where(Product.id == product_id, Product.deleted_at.is_(None))
    )
    product = result.scalar_one_or_none()
    if not product:
        raise NotFound(f"Product {product_id} not found")

    rows = await load_selected_options(db, product, option_ids)
    tracked = [
        option
        for option, variation in rows
        if variation.tracks_stock and option.stock_quantity is not None
    ]

    if tracked:
        available = min(
            option.stock_quantity - option.reserved_quantity for option in tracked
        )
        can_fulfill = available >= quantity
    else:
        available = product.stock
        can_fulfill = product.backorders_allowed or available >= quantity

    return ProductAvailability(
        product_id=product.id,
        option_ids=option_ids,
        tracked_by_option=bool(tracked),
        available=available,
        backorders_allowed=product.backorders_allowed and not tracked,
        requested=quantity,
        can_fulfill=can_fulfill,
    )
