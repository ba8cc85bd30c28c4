from __future__ import annotations
import logging, time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from celery import shared_task
from sqlalchemy.orm import Session, sessionmaker

from catalog_hub.db.session import session_scope
from catalog_hub.integrations.marketplace.adapter import CatalogAdapter, PriceUpdate
from catalog_hub.integrations.marketplace.errors import StorefrontConfigError, SyncCancelled
from catalog_hub.integrations.marketplace.fanout import BatchFanOut
from catalog_hub.integrations.marketplace.normalizers import clean_str, to_decimal
from catalog_hub.integrations.registry import build_adapter
from catalog_hub.orchestration.catalog_sync.engine import CatalogSyncEngine, validate_storefronts
from catalog_hub.orchestration.catalog_sync.job_registry import JobAlreadyRunning, JobRegistry
from catalog_hub.repository import storefront_repo, sync_run_repo

logger = logging.getLogger(__name__)


"""
  Trigger-side checks, run synchronously before a job is accepted:
    - configuration (enabled storefronts, credentials)   -> StorefrontConfigError
    - another process already running a non-stale job    -> JobAlreadyRunning
  Returns the storefront codes the job will sync.
"""
def precheck_start(
    db: Session,
    storefront_codes: Optional[Sequence[str]] = None,
    *,
    adapter_factory: Callable[..., CatalogAdapter] = build_adapter,
) -> List[str]:
    codes = validate_storefronts(db, storefront_codes, adapter_factory=adapter_factory)
    active = sync_run_repo.find_active_run(db)
    if active is not None:
        raise JobAlreadyRunning(str(active.id), "running")
    return codes


"""
  Body of one sync job; shared by the API background task and the Celery task.
  Owns the run-history row and drives the registry to its terminal state. Never raises:
  a failure in the run bookkeeping itself still moves the registry out of running.
"""
def run_catalog_sync_job(
    job_id: str,
    *,
    registry: JobRegistry,
    storefront_codes: Optional[Sequence[str]] = None,
    max_offers: Optional[int] = None,
    trigger: str = "api",
    session_factory: Optional[sessionmaker] = None,
    adapter_factory: Callable[..., CatalogAdapter] = build_adapter,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    observer = registry.observer(job_id)
    run_id = None
    try:
        with session_scope(session_factory) as db:
            run_id = sync_run_repo.create_run(db, trigger=trigger).id
            logger.info("catalog sync job=%s run=%s trigger=%s", job_id, run_id, trigger)

            engine = CatalogSyncEngine(db, observer=observer, adapter_factory=adapter_factory, sleep=sleep)
            try:
                result = engine.run(storefront_codes, max_offers=max_offers)
            except SyncCancelled as e:
                logger.warning("catalog sync job=%s cancelled: %s", job_id, e)
                registry.fail(job_id, "cancelled")
                db.rollback()
                sync_run_repo.finish_run(db, run_id, status=sync_run_repo.RUN_CANCELLED, error=str(e))
                return {"run_id": str(run_id), "status": sync_run_repo.RUN_CANCELLED}
            except Exception as e:
                logger.exception("catalog sync job=%s failed before completing", job_id)
                registry.fail(job_id, str(e))
                db.rollback()
                sync_run_repo.finish_run(db, run_id, status=sync_run_repo.RUN_ERROR, error=str(e))
                return {"run_id": str(run_id), "status": sync_run_repo.RUN_ERROR, "error": str(e)}

            # failed storefronts degrade the job; it is only fatal when none got through
            fatal = bool(result.failed_storefronts) and result.storefronts_processed == 0
            if fatal:
                status = sync_run_repo.RUN_ERROR
            elif result.failed_storefronts or result.errors or result.failed_batches:
                status = sync_run_repo.RUN_COMPLETED_WITH_ERRORS
            else:
                status = sync_run_repo.RUN_COMPLETED
            registry.complete(job_id, result, failed=fatal)
            sync_run_repo.finish_run(db, run_id, status=status, result=result.to_dict())
    except Exception as e:
        logger.exception("catalog sync job=%s run=%s: run bookkeeping failed", job_id, run_id)
        registry.fail(job_id, f"run bookkeeping failed: {e}")
        return {
            "run_id": str(run_id) if run_id is not None else None,
            "status": sync_run_repo.RUN_ERROR,
            "error": str(e),
        }

    return {"run_id": str(run_id), "status": status, "result": result.to_dict()}


# ========= Celery entry points =========
@shared_task(name="catalog_hub.orchestration.catalog_sync.run_full_sync")
def run_full_sync(
    trigger: str = "beat",
    storefront_codes: Optional[List[str]] = None,
    max_offers: Optional[int] = None,
) -> Dict[str, Any]:
    """Worker-side full sync; the registry lives for this task only, cross-process single flight is the run table."""
    registry = JobRegistry()
    try:
        with session_scope() as db:
            codes = precheck_start(db, storefront_codes)
    except (StorefrontConfigError, JobAlreadyRunning) as e:
        logger.warning("catalog sync (%s) not started: %s", trigger, e)
        return {"status": "skipped", "reason": str(e)}

    job_id = registry.start()
    return run_catalog_sync_job(
        job_id, registry=registry, storefront_codes=codes, max_offers=max_offers, trigger=trigger,
    )


@shared_task(name="catalog_hub.orchestration.catalog_sync.push_prices")
def push_prices_task(storefront_code: str, offers: List[Dict[str, Any]]) -> Dict[str, Any]:
    return push_prices(storefront_code, offers)


# ========= Price write-back =========
def _as_price_updates(offers: Iterable[Any]) -> List[PriceUpdate]:
    out: List[PriceUpdate] = []
    for o in offers:
        if isinstance(o, PriceUpdate):
            out.append(o)
            continue
        offer_id = clean_str(o.get("offer_id") or o.get("id"))
        price = to_decimal(o.get("price"))
        if not offer_id or price is None:
            raise ValueError(f"price update needs offer_id and price: {o!r}")
        out.append(PriceUpdate(
            offer_id=offer_id,
            price=price,
            currency=clean_str(o.get("currency")),
            old_price=to_decimal(o.get("old_price")),
        ))
    return out


"""
  Price write-back for one storefront: batches of the adapter's write ceiling through the fan-out
  (each call retried by the HTTP client); a failed batch is reported, siblings still go out.
  Returns {"success", "errors", "updated", "batches", "failed_batches"}.
"""
def push_prices(
    storefront_code: str,
    offers: Iterable[Any],
    *,
    session_factory: Optional[sessionmaker] = None,
    adapter_factory: Callable[..., CatalogAdapter] = build_adapter,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    updates = _as_price_updates(offers)
    with session_scope(session_factory) as db:
        sf = storefront_repo.get(db, storefront_code)
        if sf is None or not sf.enabled:
            raise StorefrontConfigError(f"storefront {storefront_code} not found or disabled")
        adapter = adapter_factory(sf)

    if not updates:
        adapter.close()
        return {"success": True, "errors": [], "updated": 0, "batches": 0, "failed_batches": 0}

    try:
        res = BatchFanOut(sleep=sleep).run(
            updates,
            adapter.price_update_batch_size,
            lambda batch: [adapter.update_prices(batch)],
            dedupe=False,
            label=f"{storefront_code} price update",
        )
    finally:
        adapter.close()

    errors: List[Dict[str, Any]] = []
    updated = 0
    for r in res.items:
        updated += r.updated
        errors.extend(r.errors)
    for fb in res.failed:
        errors.append({"batch": fb.index, "offer_ids": [u.offer_id for u in fb.items][:5], "message": fb.error})

    ok = not errors and all(r.success for r in res.items)
    logger.info(
        "push_prices storefront=%s offers=%d batches=%d failed_batches=%d updated=%d errors=%d",
        storefront_code, len(updates), res.batches, len(res.failed), updated, len(errors),
    )
    return {"success": ok, "errors": errors, "updated": updated, "batches": res.batches, "failed_batches": len(res.failed)}
