"""Admin store inventory router."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.schemas import (
    OptionStockAdjust,
    OptionStockSet,
    StockSummary,
    VariationOptionResponse,
)
from services.store_service.services import diagnostics, stock_ledger
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-store"])
logger = get_logger(__name__)


def _actor(user: AuthUser) -> str:
    return user.email or user.user_id


# ============================================================================
# DIAGNOSTICS
# ============================================================================


@router.get("/products/stock-mismatches", response_model=dict[uuid.UUID, int])
async def list_stock_mismatches(
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Products whose tracked option stock does not add up to their counter."""
    return await diagnostics.find_stock_mismatches(db)


@router.get("/products/{product_id}/stock-summary", response_model=StockSummary)
async def get_stock_summary(
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await diagnostics.compute_variation_stock_sum(db, product_id)


# ============================================================================
# OPTION STOCK
# ============================================================================


@router.put(
    "/variation-options/{option_id}/stock", response_model=VariationOptionResponse
)
async def set_option_stock(
    option_id: uuid.UUID,
    payload: OptionStockSet,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Overwrite an option's stock; never below what open orders hold."""
    option = await stock_ledger.set_option_stock(
        db,
        option_id,
        payload.quantity,
        payload.low_stock_threshold,
        _actor(current_user),
    )
    await db.commit()
    return option


@router.post(
    "/variation-options/{option_id}/stock/adjust",
    response_model=VariationOptionResponse,
)
async def adjust_option_stock(
    option_id: uuid.UUID,
    payload: OptionStockAdjust,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Restock or correct an option's stock with an audited reason."""
    option = await stock_ledger.adjust_manual(
        db, option_id, payload.delta, payload.reason, _actor(current_user)
    )
    await db.commit()
    return option
