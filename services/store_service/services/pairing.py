"""Paired-region product synchronizer.

A product sold in both regions exists as two rows (twins) linked by a shared
``pairing_id``. Catalog edits to the shared fields are copied to the twin;
stock, SKU, region, thresholds and the backorder flag stay per region.
"""

import uuid
from typing import Iterable, Optional

from fastapi.encoders import jsonable_encoder
from libs.common.logging import get_logger
from services.store_service.errors import InvalidPairing, InvalidRequest, NotFound
from services.store_service.models import (
    AuditEntityType,
    Product,
    ProductVariation,
    StockReservation,
    VariationOption,
)
from services.store_service.schemas import (
    ProductPatch,
    VariationDefinition,
    VariationOptionDefinition,
)
from services.store_service.services.audit import log_audit
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

SHARED_FIELDS = frozenset({"name", "description", "price", "images", "variations"})
SHARED_SCALAR_FIELDS = ("name", "description", "price", "images")


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


async def load_product(
    db: AsyncSession, product_id: uuid.UUID, *, for_update: bool = False
) -> Product:
    """Load a live product with its variations and options."""
    query = (
        select(Product)
        .where(Product.id == product_id, Product.deleted_at.is_(None))
        .options(selectinload(Product.variations).selectinload(ProductVariation.options))
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    product = result.scalar_one_or_none()
    if not product:
        raise NotFound(f"Product {product_id} not found")
    return product


async def get_twin(db: AsyncSession, product: Product) -> Optional[Product]:
    """Return the paired twin of ``product`` or None when it is unpaired.

    A twin that has been deleted counts as no twin: the survivor keeps
    selling and edits stay local to it. Raises InvalidPairing when the
    pairing does not resolve to exactly one product of the other region.
    """
    if product.pairing_id is None:
        return None

    result = await db.execute(
        select(Product.id, Product.deleted_at).where(
            Product.pairing_id == product.pairing_id, Product.id != product.id
        )
    )
    rows = list(result.all())
    twin_ids = [twin_id for twin_id, deleted_at in rows if deleted_at is None]
    if rows and not twin_ids:
        logger.warning(
            "Twin of product %s in pairing %s is deleted; skipping sync",
            product.id,
            product.pairing_id,
        )
        return None
    if len(twin_ids) != 1:
        raise InvalidPairing(
            f"Pairing {product.pairing_id} resolves to {len(twin_ids)} twins"
        )

    twin = await load_product(db, twin_ids[0], for_update=True)
    if twin.region == product.region:
        raise InvalidPairing(
            f"Pairing {product.pairing_id} links two {product.region.value} products"
        )
    return twin


# ---------------------------------------------------------------------------
# Pairing lifecycle
# ---------------------------------------------------------------------------


async def pair_products(
    db: AsyncSession,
    product_id: uuid.UUID,
    twin_id: uuid.UUID,
    actor: str,
) -> uuid.UUID:
    """Link two products of different regions under a new pairing id."""
    if product_id == twin_id:
        raise InvalidPairing("A product cannot be paired with itself")

    product = await load_product(db, product_id, for_update=True)
    twin = await load_product(db, twin_id, for_update=True)

    if product.region == twin.region:
        raise InvalidPairing(
            f"Both products are in region {product.region.value}; twins must differ"
        )
    for candidate in (product, twin):
        if candidate.pairing_id is not None:
            raise InvalidPairing(f"Product {candidate.sku} is already paired")

    pairing_id = uuid.uuid4()
    for candidate, other in ((product, twin), (twin, product)):
        candidate.pairing_id = pairing_id
        log_audit(
            db,
            AuditEntityType.PRODUCT,
            candidate.id,
            "paired",
            actor,
            new_value={"pairing_id": str(pairing_id), "twin_id": str(other.id)},
        )
    await db.flush()

    logger.info("Paired products %s and %s (%s)", product.id, twin.id, pairing_id)
    return pairing_id


async def break_pairing(
    db: AsyncSession,
    pairing_id: uuid.UUID,
    confirm: bool,
    actor: str,
) -> list[uuid.UUID]:
    """Permanently unlink the twins of ``pairing_id``."""
    if not confirm:
        raise InvalidRequest("Breaking a pairing is permanent; pass confirm=true")

    result = await db.execute(
        select(Product).where(Product.pairing_id == pairing_id).with_for_update()
    )
    products = list(result.scalars().all())
    if not products:
        raise NotFound(f"Pairing {pairing_id} not found")

    for product in products:
        product.pairing_id = None
        log_audit(
            db,
            AuditEntityType.PRODUCT,
            product.id,
            "unpaired",
            actor,
            old_value={"pairing_id": str(pairing_id)},
        )
    await db.flush()

    logger.info("Broke pairing %s (%d products)", pairing_id, len(products))
    return [product.id for product in products]


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


async def update_product(
    db: AsyncSession,
    product_id: uuid.UUID,
    patch: ProductPatch,
    actor: str,
) -> Product:
    """Apply a partial update, then copy shared changes to the twin."""
    product = await load_product(db, product_id, for_update=True)
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        return product

    if "sku" in changes and changes["sku"] != product.sku:
        clash = await db.execute(
            select(Product.id).where(
                Product.sku == changes["sku"],
                Product.region == product.region,
                Product.id != product.id,
            )
        )
        if clash.first():
            raise InvalidRequest(
                f"SKU {changes['sku']} already exists in region {product.region.value}"
            )

    old_value = {}
    for field, value in changes.items():
        if field == "variations":
            old_value[field] = _definitions_of(product)
            await apply_variation_definitions(
                db, product, patch.variations or [], strict=True
            )
            continue
        if field == "images" and value is None:
            value = []
        if value is None and field != "description":
            raise InvalidRequest(f"{field} cannot be null")
        old_value[field] = getattr(product, field)
        setattr(product, field, value)

    log_audit(
        db,
        AuditEntityType.PRODUCT,
        product.id,
        "updated",
        actor,
        old_value=jsonable_encoder(old_value),
        new_value=jsonable_encoder(changes),
    )
    await db.flush()

    shared = SHARED_FIELDS.intersection(changes)
    if shared and product.pairing_id is not None:
        await sync_shared_fields(db, product.id, shared, actor=actor)

    return await load_product(db, product.id)


async def sync_shared_fields(
    db: AsyncSession,
    product_id: uuid.UUID,
    changed_fields: Iterable[str],
    actor: str = "pairing-sync",
) -> Optional[Product]:
    """Copy the shared subset of ``changed_fields`` from a product to its twin.

    Returns the updated twin, or None when the product is not paired.
    """
    product = await load_product(db, product_id)
    twin = await get_twin(db, product)
    if twin is None:
        return None

    fields = SHARED_FIELDS.intersection(changed_fields)
    synced = {}
    for field in SHARED_SCALAR_FIELDS:
        if field in fields:
            value = getattr(product, field)
            setattr(twin, field, list(value) if field == "images" else value)
            synced[field] = value
    if "variations" in fields:
        await sync_variation_definitions(db, product, twin)
        synced["variations"] = _definitions_of(product)

    if synced:
        log_audit(
            db,
            AuditEntityType.PRODUCT,
            twin.id,
            "synced_from_twin",
            actor,
            new_value=jsonable_encoder({"source_id": product.id, **synced}),
        )
    await db.flush()

    logger.info(
        "Synced %s from product %s to twin %s",
        ", ".join(sorted(synced)) or "nothing",
        product.id,
        twin.id,
    )
    return twin


# ---------------------------------------------------------------------------
# Variation definitions
# ---------------------------------------------------------------------------


def _definitions_of(product: Product) -> list[dict]:
    return [
        VariationDefinition(
            name=variation.name,
            tracks_stock=variation.tracks_stock,
            sort_order=variation.sort_order,
            options=[
                VariationOptionDefinition(
                    name=option.name,
                    price_adjustment=option.price_adjustment,
                    sort_order=option.sort_order,
                )
                for option in variation.options
            ],
        ).model_dump(mode="json")
        for variation in product.variations
    ]


async def _holds_reservations(db: AsyncSession, option_ids: list[uuid.UUID]) -> bool:
    if not option_ids:
        return False
    result = await db.execute(
        select(StockReservation.id)
        .where(StockReservation.option_id.in_(option_ids))
        .limit(1)
    )
    return result.first() is not None


async def apply_variation_definitions(
    db: AsyncSession,
    product: Product,
    definitions: list[VariationDefinition],
    *,
    strict: bool,
) -> None:
    """Make ``product``'s variations match ``definitions`` by name.

    Options keep their own stock; options created here start at 0 when
    tracked. Definitions referenced by reservations are kept: ``strict``
    turns that into an error instead of a warning.
    """
    existing = {variation.name: variation for variation in product.variations}
    wanted = {definition.name for definition in definitions}

    for definition in definitions:
        variation = existing.get(definition.name)
        if variation is None:
            variation = ProductVariation(name=definition.name, options=[])
            product.variations.append(variation)
        variation.tracks_stock = definition.tracks_stock
        variation.sort_order = definition.sort_order
        await _apply_option_definitions(db, product, variation, definition, strict=strict)

    for name, variation in existing.items():
        if name in wanted:
            continue
        if await _holds_reservations(db, [option.id for option in variation.options]):
            _blocked(product, f"variation {name}", strict)
            continue
        product.variations.remove(variation)


async def _apply_option_definitions(
    db: AsyncSession,
    product: Product,
    variation: ProductVariation,
    definition: VariationDefinition,
    *,
    strict: bool,
) -> None:
    existing = {option.name: option for option in variation.options}
    wanted = {option.name for option in definition.options}

    for option_definition in definition.options:
        option = existing.get(option_definition.name)
        if option is None:
            option = VariationOption(name=option_definition.name, reserved_quantity=0)
            variation.options.append(option)
        option.price_adjustment = option_definition.price_adjustment
        option.sort_order = option_definition.sort_order
        if variation.tracks_stock and option.stock_quantity is None:
            option.stock_quantity = 0

    for name, option in existing.items():
        if name in wanted or option.id is None:
            continue
        if await _holds_reservations(db, [option.id]):
            _blocked(product, f"option {variation.name}/{name}", strict)
            continue
        variation.options.remove(option)


def _blocked(product: Product, what: str, strict: bool) -> None:
    message = f"Cannot remove {what} from product {product.sku}: it is referenced by orders"
    if strict:
        raise InvalidRequest(message)
    logger.warning(message)


async def sync_variation_definitions(
    db: AsyncSession, source: Product, twin: Product
) -> None:
    """Copy variation and option definitions (never stock) to the twin."""
    definitions = [
        VariationDefinition.model_validate(definition)
        for definition in _definitions_of(source)
    ]
    await apply_variation_definitions(db, twin, definitions, strict=False)
