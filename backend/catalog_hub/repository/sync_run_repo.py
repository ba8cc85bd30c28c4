# catalog sync run history repository

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from catalog_hub.core.config import settings
from catalog_hub.db.model.sync_run import CatalogSyncRun
from catalog_hub.utils.clock import now_utc


RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_COMPLETED_WITH_ERRORS = "completed_with_errors"
RUN_ERROR = "error"
RUN_CANCELLED = "cancelled"


def create_run(db: Session, *, trigger: str, run_id: Optional[uuid.UUID] = None) -> CatalogSyncRun:
    run = CatalogSyncRun(id=run_id or uuid.uuid4(), trigger=trigger, status=RUN_RUNNING, started_at=now_utc())
    db.add(run)
    db.commit()
    return run


def finish_run(
    db: Session,
    run_id: uuid.UUID,
    *,
    status: str,
    result: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    result = result or {}
    values: Dict[str, Any] = {
        "status": status,
        "finished_at": now_utc(),
        "total": int(result.get("total") or 0),
        "synced": int(result.get("synced") or 0),
        "errors": int(result.get("errors") or 0),
        "failed_batches": int(result.get("failed_batches") or 0),
        "storefronts_processed": int(result.get("storefronts_processed") or 0),
        "failed_storefronts": list(result.get("failed_storefronts") or []),
        "error": (error or "")[:4000] or None,
    }
    db.execute(update(CatalogSyncRun).where(CatalogSyncRun.id == run_id).values(**values))
    db.commit()


def find_active_run(db: Session, *, stale_minutes: Optional[int] = None) -> Optional[CatalogSyncRun]:
    """
    Latest run still marked running and started within the stale window.
    Older "running" rows belong to a worker that died; they do not block a new start.
    """
    minutes = stale_minutes or settings.SYNC_RUN_STALE_MINUTES
    cutoff = now_utc() - timedelta(minutes=minutes)
    stmt = (
        select(CatalogSyncRun)
        .where(CatalogSyncRun.status == RUN_RUNNING, CatalogSyncRun.started_at >= cutoff)
        .order_by(CatalogSyncRun.started_at.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def fetch_runs_page(db: Session, *, page: int, page_size: int) -> Tuple[List[CatalogSyncRun], int]:
    total = int(db.execute(select(func.count()).select_from(CatalogSyncRun)).scalar_one())
    stmt = (
        select(CatalogSyncRun)
        .order_by(CatalogSyncRun.started_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(db.scalars(stmt)), total
