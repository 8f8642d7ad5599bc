"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance.
Override any field via kwargs.

Usage:
    product = ProductFactory.create(price=Decimal("12.50"))
    db_session.add(product)
    await db_session.commit()
"""

import json
import uuid
from contextlib import contextmanager
from decimal import Decimal

from sqlalchemy import select

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _unique_sku() -> str:
    return f"SKU-{uuid.uuid4().hex[:8].upper()}"


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex[:8]}@test.com"


async def persist(db, *instances):
    """Add and commit; instances keep their loaded state (expire_on_commit=False)."""
    db.add_all(instances)
    await db.commit()
    return instances[0] if len(instances) == 1 else instances


async def fetch(db, model, instance_id):
    """Re-read a row, overwriting whatever the identity map holds."""
    result = await db.execute(
        select(model)
        .where(model.id == instance_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def make_admin_user(user_id: str = "admin-1", email: str = "admin@store.test"):
    from libs.auth.models import AuthUser

    return AuthUser(user_id=user_id, email=email, role="admin")


def make_member_user(user_id: str = None, email: str = None):
    from libs.auth.models import AuthUser

    return AuthUser(
        user_id=user_id or f"member-{uuid.uuid4().hex[:8]}",
        email=email or _unique_email(),
        role="authenticated",
    )


@contextmanager
def override_auth(app, user, dependency=None):
    """Temporarily resolve ``dependency`` (default get_optional_user) to ``user``."""
    from libs.auth.dependencies import get_optional_user

    dependency = dependency or get_optional_user
    previous = app.dependency_overrides.get(dependency)
    app.dependency_overrides[dependency] = lambda: user
    try:
        yield
    finally:
        if previous is None:
            app.dependency_overrides.pop(dependency, None)
        else:
            app.dependency_overrides[dependency] = previous


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ProductFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import Product, Region

        defaults = {
            "id": _uuid(),
            "sku": _unique_sku(),
            "name": "Training Kickboard",
            "description": "Foam kickboard",
            "price": Decimal("20.00"),
            "images": [],
            "region": Region.US,
            "stock": 0,
            "low_stock_threshold": 5,
            "backorders_allowed": False,
            "variations": [],
        }
        defaults.update(overrides)
        return Product(**defaults)


class VariationFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import ProductVariation

        defaults = {
            "id": _uuid(),
            "name": "Size",
            "tracks_stock": True,
            "sort_order": 0,
            "options": [],
        }
        defaults.update(overrides)
        return ProductVariation(**defaults)


class VariationOptionFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import VariationOption

        defaults = {
            "id": _uuid(),
            "name": "M",
            "price_adjustment": Decimal("0"),
            "sort_order": 0,
            "stock_quantity": 10,
            "reserved_quantity": 0,
            "low_stock_threshold": 2,
        }
        defaults.update(overrides)
        return VariationOption(**defaults)


def tracked_product(stocks: dict, **overrides):
    """A product with one stock-tracked 'Size' variation.

    ``stocks`` maps option name to stock quantity. Returns
    ``(product, {name: option})``.
    """
    options = {
        name: VariationOptionFactory.create(name=name, stock_quantity=qty, sort_order=i)
        for i, (name, qty) in enumerate(stocks.items())
    }
    variation = VariationFactory.create(options=list(options.values()))
    fields = {"stock": sum(stocks.values())}
    fields.update(overrides)
    product = ProductFactory.create(variations=[variation], **fields)
    return product, options


# ---------------------------------------------------------------------------
# Checkout / webhooks
# ---------------------------------------------------------------------------


def checkout_request(lines, region=None, **overrides):
    """Build a CheckoutRequest from ``[(product, [options], qty), ...]``."""
    from services.store_service.models import Region
    from services.store_service.schemas import CheckoutRequest

    payload = {
        "region": region or Region.US,
        "items": [
            {
                "product_id": product.id,
                "option_ids": [option.id for option in options],
                "quantity": qty,
            }
            for product, options, qty in lines
        ],
        "customer_email": _unique_email(),
        "customer_name": "Test Customer",
    }
    payload.update(overrides)
    return CheckoutRequest.model_validate(payload)


def gateway_event(event_type, order=None, event_id=None, **resource):
    """Build a GatewayEvent referencing ``order``."""
    from services.store_service.schemas import GatewayEvent

    if order is not None:
        resource.setdefault("custom_id", str(order.id))
    return GatewayEvent.model_validate(
        {
            "id": event_id or f"WH-{uuid.uuid4().hex[:12].upper()}",
            "event_type": event_type,
            "resource": resource,
        }
    )


def webhook_body(event) -> bytes:
    return json.dumps(event.model_dump(mode="json")).encode()
