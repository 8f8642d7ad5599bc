"""Store service routers package."""

from services.store_service.routers.admin_catalog import router as admin_catalog_router
from services.store_service.routers.admin_inventory import (
    router as admin_inventory_router,
)
from services.store_service.routers.admin_orders import router as admin_orders_router
from services.store_service.routers.checkout import router as checkout_router
from services.store_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_catalog_router",
    "admin_inventory_router",
    "admin_orders_router",
    "checkout_router",
    "webhooks_router",
]
