"""Stock mismatch diagnostic.

Compares the sum of option-level stock against a product's top-level
counter. Read-only: reconciliation is a manual admin action.
"""

import uuid

from libs.common.logging import get_logger
from services.store_service.errors import NotFound
from services.store_service.models import Product, ProductVariation, VariationOption
from services.store_service.schemas import OptionStockSummary, StockSummary
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


async def compute_variation_stock_sum(
    db: AsyncSession, product_id: uuid.UUID
) -> StockSummary:
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .options(selectinload(Product.variations).selectinload(ProductVariation.options))
    )
    product = result.scalar_one_or_none()
    if not product:
        raise NotFound(f"Product {product_id} not found")

    options: list[OptionStockSummary] = []
    tracked_count = 0
    stock_sum = 0
    for variation in product.variations:
        for option in variation.options:
            tracked = variation.tracks_stock and option.stock_quantity is not None
            if tracked:
                tracked_count += 1
                stock_sum += option.stock_quantity
            options.append(
                OptionStockSummary(
                    option_id=option.id,
                    variation_name=variation.name,
                    option_name=option.name,
                    stock_quantity=option.stock_quantity,
                    reserved_quantity=option.reserved_quantity,
                    available=option.available,
                    low_stock_threshold=option.low_stock_threshold,
                    status=option.stock_status(variation.tracks_stock),
                )
            )

    mismatch = tracked_count > 0 and stock_sum != product.stock
    if mismatch:
        logger.warning(
            "Stock mismatch on product %s: product stock %d, option sum %d",
            product.sku,
            product.stock,
            stock_sum,
        )

    return StockSummary(
        product_id=product.id,
        product_stock=product.stock,
        variation_stock_sum=stock_sum,
        tracked_option_count=tracked_count,
        mismatch=mismatch,
        options=options,
    )


async def find_stock_mismatches(db: AsyncSession) -> dict[uuid.UUID, int]:
    """Products whose tracked option stock does not add up to their counter.

    Returns ``{product_id: variation_stock_sum}`` for every mismatched product.
    """
    stock_sum = func.coalesce(func.sum(VariationOption.stock_quantity), 0)
    result = await db.execute(
        select(Product.id, stock_sum)
        .join(
            ProductVariation,
            (ProductVariation.product_id == Product.id)
            & ProductVariation.tracks_stock.is_(True),
        )
        .join(VariationOption, VariationOption.variation_id == ProductVariation.id)
        .where(
            Product.deleted_at.is_(None), VariationOption.stock_quantity.is_not(None)
        )
        .group_by(Product.id, Product.stock)
        .having(stock_sum != Product.stock)
    )
    return {product_id: int(total) for product_id, total in result.all()}
