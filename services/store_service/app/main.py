"""FastAPI application for the Store Service."""

from fastapi import FastAPI
from libs.common.middleware import add_observability_middleware
from services.store_service.errors import add_exception_handlers
from services.store_service.routers import (
    admin_catalog_router,
    admin_inventory_router,
    admin_orders_router,
    checkout_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Store Service FastAPI app."""
    app = FastAPI(
        title="Storefront Store Service",
        version="0.1.0",
        description="Inventory reservation, order fulfillment and payment webhooks.",
    )

    add_observability_middleware(app)
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "store"}

    # Public store routes (checkout, order lookup, cancellation)
    app.include_router(checkout_router, prefix="/store")

    # Gateway callbacks
    app.include_router(webhooks_router)

    # Admin routes (inventory before catalog: its static paths share a prefix)
    app.include_router(admin_inventory_router, prefix="/admin/store")
    app.include_router(admin_catalog_router, prefix="/admin/store")
    app.include_router(admin_orders_router, prefix="/admin/store")

    return app


app = create_app()
