# canonical product / storefront link repository

from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, delete, false, func, or_, select, true
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_hub.db.model.catalog import CanonicalProduct, StorefrontLink
from catalog_hub.integrations.marketplace.normalizers import clean_str, image_urls
from catalog_hub.utils.clock import now_utc

logger = logging.getLogger(__name__)


CHUNK_SIZE = 1000

'''
  Shared product fields: only non-trivial values reach the UPDATE (trivial -> NULL -> COALESCE keeps the old value).
  Link fields: storefront-local and authoritative, always overwritten.
'''
PRODUCT_SHARED_FIELDS = ["description", "images", "category"]
LINK_FIELDS = [
    "offer_id", "primary_id", "sku",
    "price", "old_price", "currency",
    "stock_available", "stock_reserved", "has_stock",
    "status", "last_sync_at",
]


def _insert_for(db: Session):
    """Dialect insert with on_conflict_do_update: PostgreSQL in production, SQLite in tests."""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"upsert not supported on dialect {name!r}")


def _chunked(rows: Sequence[dict], size: int = CHUNK_SIZE) -> Iterable[Sequence[dict]]:
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


def _clean_value(value: Any) -> Any:
    if isinstance(value, Decimal) and not value.is_finite():
        return None
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return value


# ========= Row builders =========
def product_row(item) -> Optional[dict]:
    """MergedCatalogItem -> canonical_products row, or None when there is no vendor code."""
    vc = clean_str(item.vendor_code)
    if not vc:
        return None
    name = clean_str(item.name)
    return {
        "vendor_code": vc,
        "name": name or vc,
        "name_is_placeholder": bool(item.name_is_placeholder or not name),
        "description": clean_str(item.description),
        "images": image_urls(item.images) or None,
        "category": clean_str(item.category),
    }


def link_row(item, product_id: int, synced_at: datetime) -> dict:
    available = item.stock_available
    return {
        "product_id": product_id,
        "storefront_code": item.storefront_code,
        "offer_id": item.offer_id,
        "primary_id": clean_str(item.primary_id),
        "sku": clean_str(item.sku),
        "price": _clean_value(item.price),
        "old_price": _clean_value(item.old_price),
        "currency": clean_str(item.currency),
        "stock_available": available,
        "stock_reserved": item.stock_reserved,
        "has_stock": bool(available and available > 0),
        "status": clean_str(item.status),
        "last_sync_at": synced_at,
    }


def _fold_product_rows(rows: Iterable[dict]) -> List[dict]:
    """One row per vendor code within a statement; a real name beats a placeholder, non-empty beats empty."""
    by_vc: Dict[str, dict] = {}
    for row in rows:
        cur = by_vc.get(row["vendor_code"])
        if cur is None:
            by_vc[row["vendor_code"]] = dict(row)
            continue
        if cur["name_is_placeholder"] and not row["name_is_placeholder"]:
            cur["name"], cur["name_is_placeholder"] = row["name"], False
        for col in PRODUCT_SHARED_FIELDS:
            if row.get(col) is not None:
                cur[col] = row[col]
    return list(by_vc.values())


def split_shared_vendor_codes(items: Sequence[Any]) -> Tuple[List[Any], List[Any]]:
    """
    A storefront holds one link per product, so two different offers of one storefront carrying the
    same vendor code cannot both be linked. The last offer per (storefront, vendor code) is kept;
    the other offers come back as collapsed. Repeats of the kept offer itself are not collapsed.
    """
    winner: Dict[Tuple[str, str], str] = {}
    for it in items:
        vc = clean_str(getattr(it, "vendor_code", None))
        if vc:
            winner[(it.storefront_code, vc)] = it.offer_id

    kept: List[Any] = []
    collapsed: List[Any] = []
    for it in items:
        vc = clean_str(getattr(it, "vendor_code", None))
        if vc and winner[(it.storefront_code, vc)] != it.offer_id:
            collapsed.append(it)
        else:
            kept.append(it)

    if collapsed:
        logger.warning(
            "%d offers share a vendor code with another offer of the same storefront and were not linked; sample=%s",
            len(collapsed),
            [(it.storefront_code, it.offer_id, clean_str(it.vendor_code)) for it in collapsed[:5]],
        )
    return kept, collapsed


def _dedupe_links(rows: Iterable[dict]) -> List[dict]:
    """Last row wins per (product, storefront) and per (storefront, offer_id)."""
    by_pair: Dict[Tuple[int, str], dict] = {}
    for row in rows:
        by_pair[(row["product_id"], row["storefront_code"])] = row
    by_offer: Dict[Tuple[str, str], dict] = {}
    for row in by_pair.values():
        by_offer[(row["storefront_code"], row["offer_id"])] = row
    return list(by_offer.values())


# ========= Product upsert =========
def upsert_products(db: Session, rows: Sequence[dict]) -> Dict[str, int]:
    """
    INSERT ... ON CONFLICT (vendor_code) DO UPDATE, never regressing shared fields:
      - description / images / category: COALESCE(new, old)
      - name: a real new name always wins; a placeholder only replaces a placeholder or an empty name
    Returns vendor_code -> product id.
    """
    rows = _fold_product_rows(rows)
    if not rows:
        return {}

    insert = _insert_for(db)
    t = CanonicalProduct.__table__.c
    for chunk in _chunked(rows):
        stmt = insert(CanonicalProduct).values([{k: _clean_value(v) for k, v in r.items()} for r in chunk])
        ex = stmt.excluded

        new_is_real = and_(ex.name_is_placeholder == false(), func.coalesce(ex.name, "") != "")
        old_is_weak = or_(t.name_is_placeholder == true(), func.coalesce(t.name, "") == "")
        updates: Dict[str, Any] = {
            "name": case((new_is_real, ex.name), (old_is_weak, ex.name), else_=t.name),
            "name_is_placeholder": case(
                (new_is_real, false()), (old_is_weak, ex.name_is_placeholder), else_=t.name_is_placeholder,
            ),
            "updated_at": func.now(),
        }
        for col in PRODUCT_SHARED_FIELDS:
            updates[col] = func.coalesce(getattr(ex, col), getattr(t, col))

        db.execute(stmt.on_conflict_do_update(index_elements=["vendor_code"], set_=updates))

    codes = [r["vendor_code"] for r in rows]
    ids: Dict[str, int] = {}
    for i in range(0, len(codes), CHUNK_SIZE):
        part = codes[i : i + CHUNK_SIZE]
        for pid, vc in db.execute(
            select(CanonicalProduct.id, CanonicalProduct.vendor_code).where(CanonicalProduct.vendor_code.in_(part))
        ):
            ids[vc] = pid
    return ids


# ========= Link upsert =========
def _drop_conflicting_links(db: Session, rows: Sequence[dict]) -> int:
    """
    An offer that moved to another vendor code: the old (storefront, offer_id) row belongs to a
    different product and would collide with the new link, so it is removed first.
    """
    wanted: Dict[Tuple[str, str], int] = {(r["storefront_code"], r["offer_id"]): r["product_id"] for r in rows}
    by_storefront: Dict[str, List[str]] = {}
    for sf, offer in wanted:
        by_storefront.setdefault(sf, []).append(offer)

    stale: List[int] = []
    for sf, offers in by_storefront.items():
        for i in range(0, len(offers), CHUNK_SIZE):
            part = offers[i : i + CHUNK_SIZE]
            q = select(StorefrontLink.id, StorefrontLink.offer_id, StorefrontLink.product_id).where(
                StorefrontLink.storefront_code == sf, StorefrontLink.offer_id.in_(part)
            )
            for link_id, offer_id, product_id in db.execute(q):
                if wanted.get((sf, offer_id)) != product_id:
                    stale.append(link_id)

    if stale:
        logger.info("relinking %d offers to a different product; sample=%s", len(stale), stale[:5])
        db.execute(delete(StorefrontLink).where(StorefrontLink.id.in_(stale)))
    return len(stale)


def upsert_links(db: Session, rows: Sequence[dict]) -> int:
    """INSERT ... ON CONFLICT (product_id, storefront_code) DO UPDATE, storefront-local fields always overwritten."""
    rows = _dedupe_links(rows)
    if not rows:
        return 0
    _drop_conflicting_links(db, rows)

    insert = _insert_for(db)
    total = 0
    for chunk in _chunked(rows):
        stmt = insert(StorefrontLink).values([{k: _clean_value(v) for k, v in r.items()} for r in chunk])
        updates: Dict[str, Any] = {col: getattr(stmt.excluded, col) for col in LINK_FIELDS}
        updates["updated_at"] = func.now()
        db.execute(stmt.on_conflict_do_update(index_elements=["product_id", "storefront_code"], set_=updates))
        total += len(chunk)
    return total


# ========= Batch writer =========
def _write_rows(db: Session, items: Sequence[Any], synced_at: datetime) -> int:
    ids = upsert_products(db, [r for r in (product_row(it) for it in items) if r])
    links = [link_row(it, ids[clean_str(it.vendor_code)], synced_at) for it in items]
    upsert_links(db, links)
    return len(items)


def write_catalog_batch(db: Session, items: Sequence[Any], *, synced_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Persist one batch of merged items (canonical product + storefront link each) and commit.
      - items without a vendor code are skipped and counted;
      - offers collapsed onto another offer's vendor code (split_shared_vendor_codes) count as errors;
      - the whole batch goes in one savepoint; if that fails, each item is retried in its own
        savepoint so one bad row only costs itself.
    Returns {"requested", "synced", "skipped_no_code", "collapsed", "errors", "error_sample"};
    never raises for row errors.
    """
    synced_at = synced_at or now_utc()
    stats: Dict[str, Any] = {
        "requested": len(items), "synced": 0, "skipped_no_code": 0, "collapsed": 0, "errors": 0, "error_sample": [],
    }

    writable = []
    for it in items:
        if clean_str(getattr(it, "vendor_code", None)):
            writable.append(it)
        else:
            stats["skipped_no_code"] += 1
    if stats["skipped_no_code"]:
        logger.warning(
            "skipped %d items without vendor code; sample=%s",
            stats["skipped_no_code"],
            [getattr(it, "offer_id", None) for it in items if not clean_str(getattr(it, "vendor_code", None))][:5],
        )
    writable, collapsed = split_shared_vendor_codes(writable)
    stats["collapsed"] = len(collapsed)
    stats["errors"] += len(collapsed)
    for it in collapsed[:5]:
        stats["error_sample"].append({
            "offer_id": it.offer_id, "vendor_code": clean_str(it.vendor_code),
            "error": "vendor code already linked to another offer of this storefront",
        })
    if not writable:
        return stats

    try:
        with db.begin_nested():
            stats["synced"] = _write_rows(db, writable, synced_at)
        db.commit()
        return stats
    except SQLAlchemyError as e:
        logger.warning("bulk write of %d items failed, retrying one by one: %s", len(writable), e)

    for it in writable:
        try:
            with db.begin_nested():
                _write_rows(db, [it], synced_at)
            stats["synced"] += 1
        except SQLAlchemyError as e:
            stats["errors"] += 1
            if len(stats["error_sample"]) < 5:
                stats["error_sample"].append({"offer_id": it.offer_id, "vendor_code": it.vendor_code, "error": str(e)[:300]})
    db.commit()
    if stats["errors"]:
        logger.error(
            "write batch: %d/%d items failed; sample=%s", stats["errors"], len(writable), stats["error_sample"],
        )
    return stats


# ========= Reads =========
def count_products(db: Session) -> int:
    return int(db.execute(select(func.count()).select_from(CanonicalProduct)).scalar_one())


def load_product(db: Session, vendor_code: str) -> Optional[CanonicalProduct]:
    return db.execute(select(CanonicalProduct).where(CanonicalProduct.vendor_code == vendor_code)).scalar_one_or_none()
