"""Customer checkout and order router."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_optional_user
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.errors import NotFound
from services.store_service.models import Order
from services.store_service.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    OrderResponse,
    ProductAvailability,
)
from services.store_service.services import orders as order_service
from services.store_service.services import stock_ledger
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])
logger = get_logger(__name__)


def _ensure_can_view(
    order: Order, current_user: Optional[AuthUser], email: Optional[str]
) -> None:
    """Owners, admins, and guests who know the order email may see an order."""
    if current_user is not None:
        if current_user.is_admin or order.member_auth_id == current_user.user_id:
            return
    if email and email.strip().lower() == order.customer_email.lower():
        return
    # Same response as a missing order so order numbers cannot be guessed
    raise NotFound(f"Order {order.order_number} not found")


@router.post(
    "/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED
)
async def checkout(
    payload: CheckoutRequest,
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Create a pending order and reserve its stock.

    Payment is captured by the gateway afterwards; the webhook moves the
    order on. Stock is held until then or until the reservation expires.
    """
    order = await order_service.create_order(
        db, payload, member_auth_id=current_user.user_id if current_user else None
    )
    await db.commit()

    return CheckoutResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        total=order.total,
    )


@router.get("/orders/{order_number}", response_model=OrderResponse)
async def get_order(
    order_number: str,
    email: Optional[str] = Query(None, description="Order email, for guest lookups"),
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Get an order by its public order number."""
    order = await order_service.get_order_by_number(db, order_number)
    _ensure_can_view(order, current_user, email)
    return order


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    email: Optional[str] = Query(None, description="Order email, for guest orders"),
    current_user: Optional[AuthUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Cancel an unpaid order and release its reserved stock."""
    order = await order_service.get_order(db, order_id)
    _ensure_can_view(order, current_user, email)

    actor = current_user.user_id if current_user else order.customer_email
    await order_service.cancel_order(db, order_id, actor)
    await db.commit()

    return await order_service.get_order(db, order_id)


@router.get(
    "/products/{product_id}/availability", response_model=ProductAvailability
)
async def get_availability(
    product_id: uuid.UUID,
    option_ids: list[uuid.UUID] = Query([], description="Selected option ids"),
    quantity: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_async_db),
):
    """How many units of this configuration can be bought right now."""
    return await stock_ledger.check_availability(db, product_id, option_ids, quantity)
