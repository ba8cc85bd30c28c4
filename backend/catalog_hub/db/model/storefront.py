from __future__ import annotations
from typing import Optional
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Integer, func
from sqlalchemy.orm import Mapped, mapped_column
from catalog_hub.db.base import Base


"""
  Storefront configuration: one seller account / catalog scope on a marketplace.
  marketplace selects the adapter ('ozon' | 'market').
"""
class Storefront(Base):

    __tablename__ = "storefronts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    code:        Mapped[str]           = mapped_column(String(64), unique=True, index=True, nullable=False)
    marketplace: Mapped[str]           = mapped_column(String(32), nullable=False)
    name:        Mapped[Optional[str]] = mapped_column(String(255))
    enabled:     Mapped[bool]          = mapped_column(Boolean, nullable=False, default=True)

    # credentials; which ones are required depends on the marketplace
    client_id:   Mapped[Optional[str]] = mapped_column(String(255))
    api_key:     Mapped[Optional[str]] = mapped_column(String(512))
    business_id: Mapped[Optional[str]] = mapped_column(String(64))
    campaign_id: Mapped[Optional[str]] = mapped_column(String(64))

    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at:   Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at:   Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
