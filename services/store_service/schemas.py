"""Pydantic schemas for store service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from services.store_service.models import (
    LedgerStage,
    OrderStatus,
    PaymentStatus,
    Region,
    StockStatus,
    WebhookOutcome,
)

# ============================================================================
# CATALOG SCHEMAS
# ============================================================================


class VariationOptionDefinition(BaseModel):
    """Shared definition of an option; stock fields are per region."""

    name: str = Field(..., max_length=100)
    price_adjustment: Decimal = Decimal("0")
    sort_order: int = 0


class VariationDefinition(BaseModel):
    name: str = Field(..., max_length=100)
    tracks_stock: bool = False
    sort_order: int = 0
    options: list[VariationOptionDefinition] = []


class ProductPatch(BaseModel):
    """Partial product update; only fields explicitly sent are applied."""

    model_config = ConfigDict(extra="forbid")

    # Shared with the paired twin
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    images: Optional[list[str]] = None
    variations: Optional[list[VariationDefinition]] = None

    # Region specific
    sku: Optional[str] = Field(None, max_length=100)
    stock: Optional[int] = None
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    backorders_allowed: Optional[bool] = None


class VariationOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    price_adjustment: Decimal
    sort_order: int
    stock_quantity: Optional[int]
    reserved_quantity: int
    available: Optional[int]
    low_stock_threshold: int


class ProductVariationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    tracks_stock: bool
    sort_order: int
    options: list[VariationOptionResponse] = []


class ProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sku: str
    name: str
    description: Optional[str]
    price: Decimal
    images: list
    region: Region
    stock: int
    low_stock_threshold: int
    backorders_allowed: bool
    pairing_id: Optional[uuid.UUID]
    updated_at: datetime
    variations: list[ProductVariationResponse] = []


class PairRequest(BaseModel):
    twin_product_id: uuid.UUID


class PairingResponse(BaseModel):
    pairing_id: uuid.UUID
    product_ids: list[uuid.UUID]


# ============================================================================
# INVENTORY SCHEMAS
# ============================================================================


class OptionStockSet(BaseModel):
    """Overwrite an option's stock counter."""

    quantity: int = Field(..., ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)


class OptionStockAdjust(BaseModel):
    """Adjust option stock (restock, correction, etc.)."""

    delta: int = Field(..., description="Positive to add, negative to subtract")
    reason: str = Field(..., min_length=1, max_length=500)


class OptionStockSummary(BaseModel):
    option_id: uuid.UUID
    variation_name: str
    option_name: str
    stock_quantity: Optional[int]
    reserved_quantity: int
    available: Optional[int]
    low_stock_threshold: int
    status: StockStatus


class StockSummary(BaseModel):
    """Option-level stock compared with the product's top-level counter."""

    product_id: uuid.UUID
    product_stock: int
    variation_stock_sum: int
    tracked_option_count: int
    mismatch: bool
    options: list[OptionStockSummary] = []


# ============================================================================
# CHECKOUT SCHEMAS
# ============================================================================


class ShippingAddress(BaseModel):
    line1: str = Field(..., max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(..., max_length=20)
    country: str = Field(..., min_length=2, max_length=2)


class CheckoutItem(BaseModel):
    product_id: uuid.UUID
    option_ids: list[uuid.UUID] = []
    quantity: int = Field(..., ge=1)


class CheckoutRequest(BaseModel):
    """Create an order and reserve its stock.

    Tax, shipping and discount are computed by their owning collaborators
    and passed in as amounts.
    """

    region: Region
    items: list[CheckoutItem] = Field(..., min_length=1)
    customer_email: EmailStr
    customer_name: str = Field(..., max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=50)
    shipping_address: Optional[ShippingAddress] = None
    tax_amount: Decimal = Field(Decimal("0"), ge=0)
    shipping_amount: Decimal = Field(Decimal("0"), ge=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    coupon_code: Optional[str] = Field(None, max_length=50)


class CheckoutResponse(BaseModel):
    order_id: uuid.UUID
    order_number: str
    status: OrderStatus
    total: Decimal


class ProductAvailability(BaseModel):
    """Units a checkout could hold right now for one product configuration."""

    product_id: uuid.UUID
    option_ids: list[uuid.UUID] = []
    # From the selected options when any is stock-tracked, else the product counter
    tracked_by_option: bool
    available: int
    backorders_allowed: bool = False
    requested: int = 1
    can_fulfill: bool


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    option_ids: list
    product_name: str
    option_names: Optional[str]
    sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    region: Region
    status: OrderStatus
    payment_status: PaymentStatus
    ledger_stage: LedgerStage

    customer_email: str
    customer_name: str
    customer_phone: Optional[str]
    shipping_address: Optional[dict]

    currency: str
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    refunded_total: Decimal
    coupon_code: Optional[str]

    paid_at: Optional[datetime]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    refunded_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemResponse] = []


class FulfillmentRequest(BaseModel):
    note: Optional[str] = None


class RefundRequest(BaseModel):
    """Refund an order; amount defaults to the outstanding total."""

    amount: Optional[Decimal] = Field(None, gt=0)
    reason: Optional[str] = None
    gateway_refund_id: Optional[str] = Field(None, max_length=128)


# ============================================================================
# WEBHOOK SCHEMAS
# ============================================================================


class GatewayEventResource(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    custom_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reason_code: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def unwrap_amount(cls, v: Any) -> Any:
        # Gateways send {"value": "10.00", "currency_code": "USD"}
        if isinstance(v, dict):
            return v.get("value")
        return v


class GatewayEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=128)
    event_type: str = Field(..., min_length=1, max_length=64)
    resource: GatewayEventResource = GatewayEventResource()


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str
    outcome: WebhookOutcome
    duplicate: bool = False
