"""
Generic catalog sync engine, one adapter per storefront:

  for each enabled storefront:
     listing (cursor pages, optional item cap)
       -> attributes / images / stock / prices in bounded batches (fan-out, retried per call)
       -> multi-key merge
       -> canonical product + storefront link upserts in write batches
       -> storefront.last_sync_at

  A failed facet batch degrades the storefront (counted), an exception escaping a storefront is recorded
  against it and the loop moves on. Cancellation is checked between pages, batches and write batches.
"""
from __future__ import annotations
import logging, time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from catalog_hub.core.config import settings
from catalog_hub.integrations.marketplace.adapter import (
    CatalogAdapter, FacetRecord, ListingItem,
    FACET_ATTRIBUTES, FACET_IMAGES, FACET_PRICES, FACET_STOCK, FACETS,
)
from catalog_hub.integrations.marketplace.errors import StorefrontConfigError, SyncCancelled
from catalog_hub.integrations.marketplace.fanout import BatchFanOut, BatchProgress, chunked
from catalog_hub.integrations.marketplace.paginator import CursorPaginator
from catalog_hub.integrations.registry import build_adapter
from catalog_hub.orchestration.catalog_sync.job_registry import ProgressEvent, ProgressObserver, SyncResult
from catalog_hub.orchestration.catalog_sync.merger import CatalogMerger
from catalog_hub.repository import catalog_repo, storefront_repo
from catalog_hub.utils.clock import now_utc

logger = logging.getLogger(__name__)


@dataclass
class StorefrontStats:
    code: str
    listed: int = 0
    synced: int = 0
    errors: int = 0
    skipped_no_code: int = 0
    failed_batches: int = 0
    pages: int = 0
    merge: Dict[str, Any] = field(default_factory=dict)


def validate_storefronts(
    db: Session,
    codes: Optional[Sequence[str]] = None,
    *,
    adapter_factory: Callable[..., CatalogAdapter] = build_adapter,
) -> List[str]:
    """
    Configuration check run synchronously at trigger time.
    Raises StorefrontConfigError when nothing is enabled, a requested code is unknown/disabled,
    or an adapter rejects its credentials. Returns the storefront codes to sync.
    """
    rows = storefront_repo.list_enabled(db, codes)
    if not rows:
        raise StorefrontConfigError("no enabled storefronts configured")
    if codes:
        missing = sorted(set(c.strip() for c in codes if c and c.strip()) - {r.code for r in rows})
        if missing:
            raise StorefrontConfigError(f"storefronts not found or disabled: {', '.join(missing)}")
    for sf in rows:
        adapter_factory(sf).close()
    return [sf.code for sf in rows]


class CatalogSyncEngine:

    def __init__(
        self,
        db: Session,
        *,
        observer: Optional[ProgressObserver] = None,
        adapter_factory: Callable[..., CatalogAdapter] = build_adapter,
        sleep: Callable[[float], None] = time.sleep,
        write_batch_size: Optional[int] = None,
    ) -> None:
        self.db = db
        self.observer = observer or ProgressObserver()
        self.adapter_factory = adapter_factory
        self.sleep = sleep
        self.write_batch_size = settings.SYNC_WRITE_BATCH_SIZE if write_batch_size is None else int(write_batch_size)
        if self.write_batch_size < 1:
            raise ValueError(f"write_batch_size must be >= 1, got {write_batch_size!r}")


    # ---------- Helpers ----------
    def _emit(self, current: int, total: int, label: str, storefront: Optional[str] = None) -> None:
        self.observer.on_progress(ProgressEvent(current=current, total=total, stage_label=label, storefront=storefront))

    def _check_cancel(self, where: str) -> None:
        if self.observer.should_stop():
            raise SyncCancelled(f"cancelled during {where}")

    def _paginator(self) -> CursorPaginator:
        return CursorPaginator(sleep=self.sleep, should_stop=self.observer.should_stop)

    def _fanout(self) -> BatchFanOut:
        return BatchFanOut(sleep=self.sleep, should_stop=self.observer.should_stop)


    # ---------- Job ----------
    def run(self, storefront_codes: Optional[Sequence[str]] = None, *, max_offers: Optional[int] = None) -> SyncResult:
        """Sync every enabled storefront (or the given subset). SyncCancelled propagates to the caller."""
        started = time.monotonic()
        result = SyncResult()

        storefronts = storefront_repo.list_enabled(self.db, storefront_codes)
        if not storefronts:
            raise StorefrontConfigError("no enabled storefronts configured")
        codes = [sf.code for sf in storefronts]
        logger.info("catalog sync start: storefronts=%s max_offers=%s", codes, max_offers)

        for sf in storefronts:
            self._check_cancel("storefront loop")
            stats = StorefrontStats(code=sf.code)
            try:
                adapter = self.adapter_factory(sf)
                try:
                    self.sync_storefront(adapter, stats, max_offers=max_offers)
                finally:
                    adapter.close()
            except SyncCancelled:
                self._fold(result, stats)
                raise
            except Exception as e:
                logger.exception("catalog sync storefront=%s failed", sf.code)
                self.db.rollback()
                # whatever was listed but not written counts as failed
                stats.errors += max(0, stats.listed - stats.synced - stats.errors)
                result.failed_storefronts.append({"storefront": sf.code, "error": str(e)[:500]})
            else:
                result.storefronts_processed += 1
            self._fold(result, stats)

        result.elapsed_sec = round(time.monotonic() - started, 3)
        log_health(result)
        return result


    @staticmethod
    def _fold(result: SyncResult, stats: StorefrontStats) -> None:
        result.total += stats.listed
        result.synced += stats.synced
        result.errors += stats.errors
        result.skipped_no_code += stats.skipped_no_code
        result.failed_batches += stats.failed_batches


    # ---------- One storefront ----------
    def sync_storefront(self, adapter: CatalogAdapter, stats: StorefrontStats, *, max_offers: Optional[int] = None) -> StorefrontStats:
        code = adapter.storefront_code
        cap = max_offers if max_offers is not None else settings.SYNC_MAX_OFFERS

        # 1) listing
        self._emit(0, 0, "listing", code)
        listed = self._paginator().collect(
            lambda cursor: adapter.list_offers(cursor, adapter.listing_page_size),
            max_items=cap,
            on_page=lambda n, pages: self._emit(n, n, f"listing page {pages}", code),
            label=f"{code} listing",
        )
        listing = _dedupe_listing(listed.items)
        stats.listed = len(listing)
        stats.pages = listed.pages
        logger.info(
            "storefront=%s listed=%d pages=%d item_cap_hit=%s page_cap_hit=%s",
            code, len(listing), listed.pages, listed.hit_item_cap, listed.hit_page_cap,
        )
        if not listing:
            storefront_repo.mark_synced(self.db, code)
            return stats

        # 2) facets
        facets: Dict[str, List[FacetRecord]] = {}
        for facet in FACETS:
            self._check_cancel(f"{facet} fetch")
            facets[facet] = self.fetch_facet(adapter, listing, facet, stats)

        # 3) merge
        self._emit(0, len(listing), "merging", code)
        merged = CatalogMerger(default_currency=adapter.default_currency).merge(code, listing, facets)
        stats.merge = merged.stats

        # 4) write; offers sharing a vendor code across write batches are collapsed up front
        items, collapsed = catalog_repo.split_shared_vendor_codes(merged.items)
        stats.errors += len(collapsed)
        synced_at = now_utc()
        done = len(collapsed)
        for batch in chunked(items, self.write_batch_size):
            self._check_cancel("write")
            w = catalog_repo.write_catalog_batch(self.db, batch, synced_at=synced_at)
            stats.synced += w["synced"]
            stats.skipped_no_code += w["skipped_no_code"]
            stats.errors += w["errors"] + w["skipped_no_code"]
            done += len(batch)
            self._emit(done, len(merged.items), "writing", code)

        storefront_repo.mark_synced(self.db, code, synced_at)
        logger.info(
            "storefront=%s done: listed=%d synced=%d errors=%d skipped_no_code=%d failed_batches=%d",
            code, stats.listed, stats.synced, stats.errors, stats.skipped_no_code, stats.failed_batches,
        )
        return stats


    def fetch_facet(
        self, adapter: CatalogAdapter, listing: Sequence[ListingItem], facet: str, stats: StorefrontStats,
    ) -> List[FacetRecord]:
        code = adapter.storefront_code
        ids = adapter.facet_ids(listing, facet)
        if not ids:
            return []

        if facet == FACET_ATTRIBUTES:
            def call(batch):
                return self._paginator().collect(
                    lambda cursor: adapter.get_attributes(batch, cursor, adapter.attributes_page_size),
                    label=f"{code} attributes",
                ).items
        elif facet == FACET_PRICES:
            def call(batch):
                return self._paginator().collect(
                    lambda cursor: adapter.get_prices(batch, cursor), label=f"{code} prices",
                ).items
        elif facet == FACET_IMAGES:
            call = adapter.get_images
        elif facet == FACET_STOCK:
            call = adapter.get_stock
        else:
            raise ValueError(f"unknown facet {facet!r}")

        def on_progress(p: BatchProgress) -> None:
            self._emit(p.items_done, p.items_total, f"{facet} batch {p.completed}/{p.total}", code)

        res = self._fanout().run(
            ids, adapter.batch_size(facet), call, on_progress=on_progress, label=f"{code} {facet}",
        )
        if res.failed:
            stats.failed_batches += len(res.failed)
            logger.warning(
                "storefront=%s facet=%s degraded: %d/%d batches failed, ids sample=%s",
                code, facet, len(res.failed), res.batches, res.failed_items[:5],
            )
        return list(res.items)


def _dedupe_listing(items: Sequence[ListingItem]) -> List[ListingItem]:
    """First occurrence of each offer id wins; pages can overlap when the listing shifts mid-walk."""
    seen = set()
    out: List[ListingItem] = []
    for it in items:
        key = (it.offer_id or "").strip()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(it)
    return out


def log_health(result: SyncResult) -> bool:
    """ERROR line when failed batches or the error ratio cross the alert thresholds; returns True if alerted."""
    ratio = (result.errors / result.total) if result.total else 0.0
    alert = (
        result.failed_batches > settings.SYNC_FAILED_BATCHES_ALERT
        or ratio > settings.SYNC_ERROR_RATIO_ALERT
        or bool(result.failed_storefronts)
    )
    if alert:
        logger.error(
            "catalog sync health alert: total=%d synced=%d errors=%d ratio=%.3f failed_batches=%d failed_storefronts=%s",
            result.total, result.synced, result.errors, ratio, result.failed_batches,
            [f.get("storefront") for f in result.failed_storefronts][:5],
        )
    else:
        logger.info(
            "catalog sync healthy: total=%d synced=%d errors=%d elapsed=%.1fs",
            result.total, result.synced, result.errors, result.elapsed_sec,
        )
    return alert
