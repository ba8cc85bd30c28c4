from __future__ import annotations
import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime

from sqlalchemy import DateTime, String, Integer, Index, func, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from catalog_hub.db.base import Base
from catalog_hub.db.model.catalog import JSONType


"""
  Catalog sync run history
  One row per job; the in-memory job registry serves live progress, this table keeps the audit trail
  and backs the cross-process single-flight check.
"""
class CatalogSyncRun(Base):

    __tablename__ = "catalog_sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    trigger: Mapped[Optional[str]] = mapped_column(String(32))                  # 'api' | 'beat' | 'script'
    status:  Mapped[str]           = mapped_column(String(32), default="running")
    # running / completed / completed_with_errors / error / cancelled

    total:                 Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    synced:                Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors:                Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_batches:        Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storefronts_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_storefronts:    Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    error:                 Mapped[Optional[str]] = mapped_column(Text)

    started_at:  Mapped[datetime]           = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at:  Mapped[datetime]           = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at:  Mapped[datetime]           = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (Index("idx_catalog_sync_run_status", "status", "created_at"),)
