from __future__ import annotations
from decimal import Decimal
from typing import Optional, List
from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, String, Integer, UniqueConstraint, Index, func, Numeric, ForeignKey, Text, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from catalog_hub.db.base import Base


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests); None is stored as SQL NULL
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


"""
  Canonical product: one row per merchant vendor code, shared by every storefront that lists it.
"""
class CanonicalProduct(Base):

    __tablename__ = "canonical_products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    vendor_code: Mapped[str]           = mapped_column(String(255), unique=True, index=True, nullable=False)
    name:        Mapped[str]           = mapped_column(String(1024), nullable=False, default="")
    # name came from an identifier fallback; a real name replaces it on a later sync
    name_is_placeholder: Mapped[bool]  = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    images:      Mapped[Optional[List[str]]] = mapped_column(JSONType)
    category:    Mapped[Optional[str]] = mapped_column(String(512))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    links: Mapped[List["StorefrontLink"]] = relationship(back_populates="product", cascade="all, delete-orphan")


"""
  Per-storefront listing of a canonical product.
  At most one link per (product, storefront) and one per (storefront, offer_id).
"""
class StorefrontLink(Base):

    __tablename__ = "storefront_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("canonical_products.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    storefront_code: Mapped[str]           = mapped_column(String(64), nullable=False)
    offer_id:        Mapped[str]           = mapped_column(String(255), nullable=False)
    primary_id:      Mapped[Optional[str]] = mapped_column(String(255))   # storefront-internal product id
    sku:             Mapped[Optional[str]] = mapped_column(String(255))   # marketplace-assigned id

    # storefront-local facts, always overwritten with the latest fetch
    price:           Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    old_price:       Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    currency:        Mapped[Optional[str]]     = mapped_column(String(8))
    stock_available: Mapped[Optional[int]]     = mapped_column(Integer)   # NULL = stock facet not fetched
    stock_reserved:  Mapped[Optional[int]]     = mapped_column(Integer)
    has_stock:       Mapped[bool]              = mapped_column(Boolean, nullable=False, default=False)
    status:          Mapped[Optional[str]]     = mapped_column(String(64))
    last_sync_at:    Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    product: Mapped[CanonicalProduct] = relationship(back_populates="links")

    __table_args__ = (
        UniqueConstraint("product_id", "storefront_code", name="uq_storefront_links_product_storefront"),
        UniqueConstraint("storefront_code", "offer_id", name="uq_storefront_links_storefront_offer"),
        Index("idx_storefront_links_storefront_stock", "storefront_code", "stock_available"),
    )
