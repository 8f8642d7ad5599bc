"""Unit tests for the stock mismatch diagnostic."""

import uuid

import pytest
from services.store_service.errors import NotFound
from services.store_service.models import StockStatus
from services.store_service.services.diagnostics import (
    compute_variation_stock_sum,
    find_stock_mismatches,
)
from tests.factories import (
    ProductFactory,
    VariationFactory,
    VariationOptionFactory,
    persist,
    tracked_product,
)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_matching_product_reports_no_mismatch(db_session):
    product, _ = tracked_product({"S": 3, "M": 4})
    await persist(db_session, product)

    summary = await compute_variation_stock_sum(db_session, product.id)

    assert summary.product_stock == 7
    assert summary.variation_stock_sum == 7
    assert summary.tracked_option_count == 2
    assert summary.mismatch is False
    assert await find_stock_mismatches(db_session) == {}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mismatch_is_reported(db_session):
    product, _ = tracked_product({"S": 3, "M": 4}, stock=10)
    await persist(db_session, product)

    summary = await compute_variation_stock_sum(db_session, product.id)

    assert summary.mismatch is True
    assert summary.variation_stock_sum == 7
    assert await find_stock_mismatches(db_session) == {product.id: 7}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_untracked_product_never_mismatches(db_session):
    option = VariationOptionFactory.create(name="Blue", stock_quantity=None)
    product = ProductFactory.create(
        stock=12,
        variations=[VariationFactory.create(name="Color", tracks_stock=False, options=[option])],
    )
    await persist(db_session, product)

    summary = await compute_variation_stock_sum(db_session, product.id)

    assert summary.tracked_option_count == 0
    assert summary.mismatch is False
    assert summary.options[0].status == StockStatus.UNLIMITED
    assert await find_stock_mismatches(db_session) == {}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_option_stock_status(db_session):
    product, _ = tracked_product({"S": 0, "M": 2, "L": 9})
    await persist(db_session, product)

    summary = await compute_variation_stock_sum(db_session, product.id)
    statuses = {option.option_name: option.status for option in summary.options}

    assert statuses == {
        "S": StockStatus.OUT_OF_STOCK,
        "M": StockStatus.LOW_STOCK,
        "L": StockStatus.IN_STOCK,
    }


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_product(db_session):
    with pytest.raises(NotFound):
        await compute_variation_stock_sum(db_session, uuid.uuid4())
