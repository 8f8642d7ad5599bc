"""Enum definitions for store service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class Region(str, enum.Enum):
    US = "us"
    EU = "eu"

    @property
    def other(self) -> "Region":
        return Region.EU if self is Region.US else Region.US


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    AWAITING_CAPTURE = "awaiting_capture"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderEvent(str, enum.Enum):
    """Inputs to the order state machine."""

    CAPTURE_COMPLETED = "capture_completed"
    CAPTURE_DENIED = "capture_denied"
    CAPTURE_PENDING = "capture_pending"
    CAPTURE_REFUNDED = "capture_refunded"
    USER_CANCEL = "user_cancel"
    EXPIRE = "expire"
    SHIP = "ship"
    DELIVER = "deliver"


class StockEffect(str, enum.Enum):
    NONE = "none"
    CONFIRM = "confirm"
    RELEASE = "release"
    RESTORE = "restore"


class LedgerStage(str, enum.Enum):
    """Last stock ledger operation applied to an order."""

    NONE = "none"
    RESERVED = "reserved"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    RESTORED = "restored"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    RESTORED = "restored"


class InventoryMovementType(str, enum.Enum):
    RESTOCK = "restock"
    SALE = "sale"
    RESERVATION = "reservation"
    RELEASE = "release"
    ADJUSTMENT = "adjustment"
    RETURN = "return"


class WebhookOutcome(str, enum.Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    CONFLICT = "conflict"
    DEFERRED = "deferred"

    @property
    def is_final(self) -> bool:
        return self in (
            WebhookOutcome.PROCESSED,
            WebhookOutcome.IGNORED,
            WebhookOutcome.CONFLICT,
        )


class StockStatus(str, enum.Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    UNLIMITED = "unlimited"


class AuditEntityType(str, enum.Enum):
    PRODUCT = "product"
    INVENTORY = "inventory"
    ORDER = "order"
