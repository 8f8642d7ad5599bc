"""Store Service models package."""

from services.store_service.models.catalog import (
    Product,
    ProductVariation,
    VariationOption,
)
from services.store_service.models.commerce import Order, OrderItem, StoreAuditLog
from services.store_service.models.enums import (
    AuditEntityType,
    InventoryMovementType,
    LedgerStage,
    OrderEvent,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    Region,
    ReservationStatus,
    StockEffect,
    StockStatus,
    WebhookOutcome,
)
from services.store_service.models.inventory import InventoryMovement, StockReservation
from services.store_service.models.payments import Payment, Refund, WebhookEvent

__all__ = [
    "AuditEntityType",
    "InventoryMovement",
    "InventoryMovementType",
    "LedgerStage",
    "Order",
    "OrderEvent",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Product",
    "ProductVariation",
    "Refund",
    "RefundStatus",
    "Region",
    "ReservationStatus",
    "StockEffect",
    "StockReservation",
    "StockStatus",
    "StoreAuditLog",
    "VariationOption",
    "WebhookEvent",
    "WebhookOutcome",
]
