''' Catalog sync job control: start / progress / cancel, plus price write-back '''

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from catalog_hub.api.v1.deps import get_adapter_factory, get_job_registry, get_session_factory
from catalog_hub.core.config import settings
from catalog_hub.db.session import get_db
from catalog_hub.integrations.marketplace.adapter import CatalogAdapter
from catalog_hub.integrations.marketplace.errors import StorefrontConfigError
from catalog_hub.orchestration.catalog_sync.catalog_sync_task import (
    precheck_start, push_prices, push_prices_task, run_catalog_sync_job,
)
from catalog_hub.orchestration.catalog_sync.job_registry import (
    ACTIVE_STATES, CANCELLING, RUNNING, JobAlreadyRunning, JobRegistry,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["catalog-sync"])


class ProgressOut(BaseModel):
    current: int
    total: int
    stage: str


class SyncStatusOut(BaseModel):
    status: str                          # idle | processing | cancelling | completed | error
    job_id: Optional[str] = None
    progress: ProgressOut
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class PriceUpdateIn(BaseModel):
    offer_id: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0)
    currency: Optional[str] = None
    old_price: Optional[Decimal] = None


class PriceUpdatesIn(BaseModel):
    offers: List[PriceUpdateIn] = Field(..., min_length=1)


''' Trigger a full sync; the job runs in the background and is polled via /sync/progress '''
@router.post("/start", status_code=202)
def start_sync(
    background_tasks: BackgroundTasks,
    max_offers: Optional[int] = Query(None, ge=1, description="item cap per storefront listing"),
    storefront: Optional[List[str]] = Query(None, description="restrict to these storefront codes"),
    db: Session = Depends(get_db),
    registry: JobRegistry = Depends(get_job_registry),
    session_factory: sessionmaker = Depends(get_session_factory),
    adapter_factory: Callable[..., CatalogAdapter] = Depends(get_adapter_factory),
):
    # in-process check first, it is cheaper than the run table
    snap = registry.snapshot()
    if snap.stage in ACTIVE_STATES:
        raise HTTPException(status_code=409, detail=f"sync already {snap.stage} (job_id={snap.job_id})")

    try:
        codes = precheck_start(db, storefront, adapter_factory=adapter_factory)
        job_id = registry.start()
    except StorefrontConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))

    background_tasks.add_task(
        run_catalog_sync_job,
        job_id,
        registry=registry,
        storefront_codes=codes,
        max_offers=max_offers,
        trigger="api",
        session_factory=session_factory,
        adapter_factory=adapter_factory,
    )
    logger.info("sync start accepted: job=%s storefronts=%s max_offers=%s", job_id, codes, max_offers)
    return {"status": "processing", "job_id": job_id, "storefronts": codes}


@router.get("/progress", response_model=SyncStatusOut)
def sync_progress(registry: JobRegistry = Depends(get_job_registry)):
    s = registry.snapshot()
    return SyncStatusOut(
        status="processing" if s.stage == RUNNING else s.stage,
        job_id=s.job_id,
        progress=ProgressOut(current=s.current, total=s.total, stage=s.stage_label),
        result=s.result,
        error=s.error,
    )


@router.post("/cancel", status_code=202)
def cancel_sync(registry: JobRegistry = Depends(get_job_registry)):
    job_id = registry.request_cancel()
    if job_id is None:
        raise HTTPException(status_code=409, detail="no running sync to cancel")
    return {"status": CANCELLING, "job_id": job_id}


''' Push prices to one storefront; inline when SYNC_TASKS_INLINE, otherwise queued on Celery '''
@router.post("/storefronts/{code}/prices")
def push_storefront_prices(
    code: str,
    body: PriceUpdatesIn,
    session_factory: sessionmaker = Depends(get_session_factory),
    adapter_factory: Callable[..., CatalogAdapter] = Depends(get_adapter_factory),
):
    offers = [o.model_dump() for o in body.offers]
    if not settings.SYNC_TASKS_INLINE:
        payload = [{**o, "price": str(o["price"]), "old_price": str(o["old_price"]) if o["old_price"] is not None else None}
                   for o in offers]
        task_id = push_prices_task.delay(code, payload).id
        return JSONResponse(status_code=202, content={"status": "queued", "task_id": task_id})

    try:
        return push_prices(code, offers, session_factory=session_factory, adapter_factory=adapter_factory)
    except StorefrontConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
