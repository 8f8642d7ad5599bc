"""Admin store catalog router: product edits and region pairing."""

import uuid

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.schemas import (
    PairingResponse,
    PairRequest,
    ProductPatch,
    ProductResponse,
)
from services.store_service.services import pairing
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-store"])
logger = get_logger(__name__)


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: uuid.UUID,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await pairing.load_product(db, product_id)


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: uuid.UUID,
    patch: ProductPatch,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Update a product.

    Shared catalog fields (name, description, price, images, variation
    definitions) are copied to the paired twin in the same transaction.
    """
    actor = current_user.email or current_user.user_id
    await pairing.update_product(db, product_id, patch, actor)
    await db.commit()
    return await pairing.load_product(db, product_id)


@router.post("/products/{product_id}/pair", response_model=PairingResponse)
async def pair_product(
    product_id: uuid.UUID,
    payload: PairRequest,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Link a product with its twin in the other region."""
    pairing_id = await pairing.pair_products(
        db,
        product_id,
        payload.twin_product_id,
        current_user.email or current_user.user_id,
    )
    await db.commit()
    return PairingResponse(
        pairing_id=pairing_id, product_ids=[product_id, payload.twin_product_id]
    )


@router.delete("/pairings/{pairing_id}", response_model=PairingResponse)
async def break_pairing(
    pairing_id: uuid.UUID,
    confirm: bool = Query(False, description="Must be true; unpairing is permanent"),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    product_ids = await pairing.break_pairing(
        db, pairing_id, confirm, current_user.email or current_user.user_id
    )
    await db.commit()
    return PairingResponse(pairing_id=pairing_id, product_ids=product_ids)
