from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from catalog_hub.db.model.sync_run import CatalogSyncRun
from catalog_hub.db.session import get_db
from catalog_hub.repository.sync_run_repo import fetch_runs_page


router = APIRouter(prefix="/sync", tags=["catalog-sync"])


class CatalogSyncRunOut(BaseModel):
    id: UUID
    trigger: Optional[str] = None
    status: str
    total: int
    synced: int
    errors: int
    failed_batches: int
    storefronts_processed: int
    failed_storefronts: List[Dict[str, Any]]
    error: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None


class CatalogSyncRunsPage(BaseModel):
    items: List[CatalogSyncRunOut]
    total: int


@router.get("/runs", response_model=CatalogSyncRunsPage)
def list_sync_runs(
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    rows, total = fetch_runs_page(db, page=page, page_size=page_size)
    return CatalogSyncRunsPage(items=[_build_run_out(r) for r in rows], total=total)


def _build_run_out(row: CatalogSyncRun) -> CatalogSyncRunOut:
    return CatalogSyncRunOut(
        id=row.id,
        trigger=row.trigger,
        status=row.status,
        total=row.total or 0,
        synced=row.synced or 0,
        errors=row.errors or 0,
        failed_batches=row.failed_batches or 0,
        storefronts_processed=row.storefronts_processed or 0,
        failed_storefronts=row.failed_storefronts or [],
        error=row.error,
        started_at=row.started_at,
        finished_at=row.finished_at,
    )
