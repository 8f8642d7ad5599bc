"""Store catalog models: region products, variations and variation options."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.store_service.models.enums import Region, StockStatus, enum_values
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# PRODUCT MODELS
# ============================================================================


class Product(Base):
    """A sellable product in one sales region.

    Two products of different regions may be linked as twins through
    ``pairing_id``; they share catalog fields but never stock.
    """

    __tablename__ = "store_products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    images: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    region: Mapped[Region] = mapped_column(
        SAEnum(Region, values_callable=enum_values, name="store_region_enum"),
        nullable=False,
    )

    # Top-level counter, used when an item has no stock-tracked option.
    # May go negative when backorders are allowed.
    stock: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    low_stock_threshold: Mapped[int] = mapped_column(
        Integer, default=5, server_default="5"
    )
    backorders_allowed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    pairing_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, index=True, nullable=True
    )

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (UniqueConstraint("sku", "region", name="unique_sku_region"),)

    # Relationships
    variations = relationship(
        "ProductVariation",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariation.sort_order",
    )

    def __repr__(self):
        return f"<Product {self.sku} region={self.region}>"


class ProductVariation(Base):
    """A variation axis of a product, e.g. 'Color' or 'Size'."""

    __tablename__ = "store_product_variations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tracks_stock: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    # Relationships
    product = relationship("Product", back_populates="variations")
    options = relationship(
        "VariationOption",
        back_populates="variation",
        cascade="all, delete-orphan",
        order_by="VariationOption.sort_order",
    )

    def __repr__(self):
        return f"<ProductVariation {self.name}>"


class VariationOption(Base):
    """One value of a variation, optionally carrying its own stock counter."""

    __tablename__ = "store_variation_options"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    variation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_product_variations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price_adjustment: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), server_default="0"
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, server_default="0")

    # NULL means the option is not stock-tracked (unlimited)
    stock_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reserved_quantity: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    low_stock_threshold: Mapped[int] = mapped_column(
        Integer, default=5, server_default="5"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("reserved_quantity >= 0", name="option_reserved_non_negative"),
        CheckConstraint(
            "stock_quantity IS NULL OR reserved_quantity <= stock_quantity",
            name="option_reserved_within_stock",
        ),
    )

    # Relationships
    variation = relationship("ProductVariation", back_populates="options")

    @property
    def available(self) -> Optional[int]:
        """Stock not held by open orders; None when the option is untracked."""
        if self.stock_quantity is None:
            return None
        return self.stock_quantity - self.reserved_quantity

    def stock_status(self, tracks_stock: bool = True) -> StockStatus:
        if not tracks_stock or self.stock_quantity is None:
            return StockStatus.UNLIMITED
        if self.available <= 0:
            return StockStatus.OUT_OF_STOCK
        if self.stock_quantity <= self.low_stock_threshold:
            return StockStatus.LOW_STOCK
        return StockStatus.IN_STOCK

    def __repr__(self):
        return f"<VariationOption {self.name} stock={self.stock_quantity}>"
