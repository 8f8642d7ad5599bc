"""Unit tests for the paired-region product synchronizer."""

import uuid
from decimal import Decimal

import pytest
from services.store_service.errors import InvalidPairing, InvalidRequest, NotFound
from services.store_service.models import Product, Region, StoreAuditLog
from services.store_service.schemas import ProductPatch
from services.store_service.services import pairing
from services.store_service.services.orders import create_order
from sqlalchemy import select, update
from tests.factories import (
    ProductFactory,
    checkout_request,
    fetch,
    persist,
    tracked_product,
)

ACTOR = "admin@store.test"


async def _twins(db, us_stock=None, eu_stock=None):
    """Commit a US/EU product pair with a tracked Size variation each."""
    us, us_options = tracked_product(us_stock or {"M": 5}, region=Region.US, sku="CAP-1")
    eu, eu_options = tracked_product(eu_stock or {"M": 9}, region=Region.EU, sku="CAP-1")
    await persist(db, us, eu)
    await pairing.pair_products(db, us.id, eu.id, ACTOR)
    await db.commit()
    return us, us_options, eu, eu_options


# ---------------------------------------------------------------------------
# Pairing lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pair_products_links_twins(db_session):
    us, _, eu, _ = await _twins(db_session)

    us = await fetch(db_session, Product, us.id)
    eu = await fetch(db_session, Product, eu.id)
    assert us.pairing_id is not None
    assert us.pairing_id == eu.pairing_id

    twin = await pairing.get_twin(db_session, us)
    assert twin.id == eu.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pair_products_rejects_same_region_and_repairing(db_session):
    first = ProductFactory.create(region=Region.US)
    second = ProductFactory.create(region=Region.US)
    third = ProductFactory.create(region=Region.EU)
    fourth = ProductFactory.create(region=Region.EU)
    await persist(db_session, first, second, third, fourth)

    with pytest.raises(InvalidPairing):
        await pairing.pair_products(db_session, first.id, second.id, ACTOR)
    with pytest.raises(InvalidPairing):
        await pairing.pair_products(db_session, first.id, first.id, ACTOR)

    await pairing.pair_products(db_session, first.id, third.id, ACTOR)
    with pytest.raises(InvalidPairing):
        await pairing.pair_products(db_session, second.id, third.id, ACTOR)
    with pytest.raises(NotFound):
        await pairing.pair_products(db_session, fourth.id, uuid.uuid4(), ACTOR)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_get_twin_detects_broken_pairing(db_session):
    shared = uuid.uuid4()
    lonely = ProductFactory.create(region=Region.US, pairing_id=shared)
    await persist(db_session, lonely)

    with pytest.raises(InvalidPairing):
        await pairing.get_twin(db_session, lonely)


# ---------------------------------------------------------------------------
# Shared field sync
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_edit_syncs_to_twin_without_touching_stock(db_session):
    us, us_options, eu, eu_options = await _twins(db_session)

    await pairing.update_product(
        db_session,
        us.id,
        ProductPatch(price=Decimal("29.99"), name="Team Cap"),
        ACTOR,
    )
    await db_session.commit()

    twin = await pairing.load_product(db_session, eu.id)
    assert twin.price == Decimal("29.99")
    assert twin.name == "Team Cap"
    assert twin.region == Region.EU
    assert twin.stock == 9
    assert twin.variations[0].options[0].stock_quantity == 9

    source = await pairing.load_product(db_session, us.id)
    assert source.variations[0].options[0].stock_quantity == 5

    synced = (
        await db_session.execute(
            select(StoreAuditLog).where(
                StoreAuditLog.entity_id == eu.id,
                StoreAuditLog.action == "synced_from_twin",
            )
        )
    ).scalar_one()
    assert synced.performed_by == ACTOR


@pytest.mark.asyncio
@pytest.mark.unit
async def test_region_fields_are_not_synced(db_session):
    us, _, eu, _ = await _twins(db_session)

    await pairing.update_product(
        db_session,
        us.id,
        ProductPatch(stock=42, low_stock_threshold=1, backorders_allowed=True),
        ACTOR,
    )
    await db_session.commit()

    twin = await fetch(db_session, Product, eu.id)
    assert twin.stock == 9
    assert twin.low_stock_threshold == 5
    assert twin.backorders_allowed is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_no_sync_after_pairing_broken(db_session):
    us, _, eu, _ = await _twins(db_session)
    pairing_id = (await fetch(db_session, Product, us.id)).pairing_id

    with pytest.raises(InvalidRequest):
        await pairing.break_pairing(db_session, pairing_id, False, ACTOR)

    unlinked = await pairing.break_pairing(db_session, pairing_id, True, ACTOR)
    await db_session.commit()
    assert set(unlinked) == {us.id, eu.id}

    await pairing.update_product(
        db_session, us.id, ProductPatch(price=Decimal("11.00")), ACTOR
    )
    await db_session.commit()

    twin = await fetch(db_session, Product, eu.id)
    assert twin.pairing_id is None
    assert twin.price == Decimal("20.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_edits_stay_local_when_twin_is_deleted(db_session):
    from libs.common.datetime_utils import utc_now

    us, _, eu, _ = await _twins(db_session)
    await db_session.execute(
        update(Product).where(Product.id == eu.id).values(deleted_at=utc_now())
    )
    await db_session.commit()

    survivor = await fetch(db_session, Product, us.id)
    assert await pairing.get_twin(db_session, survivor) is None

    updated = await pairing.update_product(
        db_session, us.id, ProductPatch(price=Decimal("5.00")), ACTOR
    )
    await db_session.commit()

    assert updated.price == Decimal("5.00")
    deleted = await fetch(db_session, Product, eu.id)
    assert deleted.price == Decimal("20.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_variation_definitions_sync_without_stock(db_session):
    us, _, eu, _ = await _twins(db_session)

    patch = ProductPatch.model_validate(
        {
            "variations": [
                {
                    "name": "Size",
                    "tracks_stock": True,
                    "options": [
                        {"name": "M", "sort_order": 0},
                        {"name": "XL", "price_adjustment": "3.00", "sort_order": 1},
                    ],
                }
            ]
        }
    )
    await pairing.update_product(db_session, us.id, patch, ACTOR)
    await db_session.commit()

    twin = await pairing.load_product(db_session, eu.id)
    options = {option.name: option for option in twin.variations[0].options}
    assert set(options) == {"M", "XL"}
    assert options["M"].stock_quantity == 9
    assert options["XL"].stock_quantity == 0
    assert options["XL"].price_adjustment == Decimal("3.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_option_with_reservations_cannot_be_removed(db_session):
    us, us_options, _, _ = await _twins(db_session)
    await create_order(db_session, checkout_request([(us, [us_options["M"]], 1)]))
    await db_session.commit()

    patch = ProductPatch.model_validate(
        {"variations": [{"name": "Size", "tracks_stock": True, "options": [{"name": "L"}]}]}
    )
    with pytest.raises(InvalidRequest):
        await pairing.update_product(db_session, us.id, patch, ACTOR)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_product_rejects_sku_clash_and_null_name(db_session):
    us, _, _, _ = await _twins(db_session)
    other = ProductFactory.create(region=Region.US, sku="OTHER-1")
    await persist(db_session, other)

    with pytest.raises(InvalidRequest):
        await pairing.update_product(db_session, us.id, ProductPatch(sku="OTHER-1"), ACTOR)
    with pytest.raises(InvalidRequest):
        await pairing.update_product(db_session, us.id, ProductPatch(name=None), ACTOR)
