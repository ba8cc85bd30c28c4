"""
Multi-key reconciliation of one storefront's listing with its facet records.

   - one FacetIndex per facet; a record is reachable under every key it carries
     (offer id, product id, sku ...), all keys of one record share one entry;
   - stock entries accumulate (warehouse rows are summed), other facets only overwrite with non-empty values;
   - each listing item is resolved against each index by an ordered list of key strategies:
       offer_id exact -> sku exact -> primary_id exact -> vendor_code exact -> substring containment
     the substring strategy is a last resort, switchable, and its diagnostics are capped; it only compares
     the item's offer id / vendor code with the offer key each record reports first (never product ids or skus).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from catalog_hub.core.config import settings
from catalog_hub.integrations.marketplace.adapter import (
    FacetRecord, ListingItem,
    FACET_ATTRIBUTES, FACET_IMAGES, FACET_PRICES, FACET_STOCK, FACETS,
)
from catalog_hub.integrations.marketplace.normalizers import (
    clean_str, image_urls, is_blank, to_decimal, to_int,
)

logger = logging.getLogger(__name__)


ACCUMULATED_FIELDS = ("available", "reserved")


@dataclass
class MergedCatalogItem:
    storefront_code: str
    offer_id: str
    vendor_code: Optional[str]
    primary_id: Optional[str] = None
    sku: Optional[str] = None
    name: str = ""
    name_is_placeholder: bool = False
    description: Optional[str] = None
    images: List[str] = field(default_factory=list)
    category: Optional[str] = None
    price: Optional[Decimal] = None
    old_price: Optional[Decimal] = None
    currency: Optional[str] = None
    stock_available: Optional[int] = None
    stock_reserved: Optional[int] = None
    status: Optional[str] = None
    matched_by: Dict[str, str] = field(default_factory=dict)    # facet -> strategy name


@dataclass
class MergeResult:
    items: List[MergedCatalogItem]
    stats: Dict[str, Any]


# ========= Facet index =========
class FacetIndex:
    """Entries reachable under several candidate keys; insertion order is kept for deterministic scans."""

    def __init__(self, facet: str, *, accumulate: bool = False) -> None:
        self.facet = facet
        self.accumulate = accumulate
        self._entries: List[Dict[str, Any]] = []
        self._by_key: Dict[str, int] = {}
        self._offer_keys: Dict[str, int] = {}   # keys[0] of each record

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def normalize_key(raw: Any) -> Optional[str]:
        # 123, "123" and " 123 " are the same key
        return clean_str(raw)


    def add(self, record: FacetRecord) -> None:
        keys = [k for k in (self.normalize_key(x) for x in record.keys) if k]
        if not keys:
            return

        targets: List[int] = []
        for k in keys:
            idx = self._by_key.get(k)
            if idx is not None and idx not in targets:
                targets.append(idx)

        if not targets:
            self._entries.append({})
            targets = [len(self._entries) - 1]

        for idx in targets:
            self._merge_into(self._entries[idx], record.fields)
        for k in keys:
            self._by_key.setdefault(k, targets[0])
        self._offer_keys.setdefault(keys[0], targets[0])


    def _merge_into(self, entry: Dict[str, Any], fields: Dict[str, Any]) -> None:
        for name, value in fields.items():
            if self.accumulate and name in ACCUMULATED_FIELDS:
                # blank counts are absent, not zero
                n = None if is_blank(value) else to_int(value)
                if n is not None:
                    entry[name] = (entry.get(name) or 0) + n
            elif not is_blank(value):
                entry[name] = value


    def get(self, key: Any) -> Optional[Dict[str, Any]]:
        k = self.normalize_key(key)
        if not k:
            return None
        idx = self._by_key.get(k)
        return self._entries[idx] if idx is not None else None


    def find_containing(self, key: Any) -> Optional[Tuple[str, Dict[str, Any]]]:
        """First record offer key that contains `key` or is contained in it."""
        k = self.normalize_key(key)
        if not k:
            return None
        for candidate, idx in self._offer_keys.items():
            if k in candidate or candidate in k:
                return candidate, self._entries[idx]
        return None


# ========= Key strategies =========
@dataclass(frozen=True)
class KeyStrategy:
    name: str
    resolve: Callable[[ListingItem, FacetIndex], Optional[Dict[str, Any]]]
    last_resort: bool = False


def exact(attr: str) -> KeyStrategy:
    def _resolve(item: ListingItem, index: FacetIndex) -> Optional[Dict[str, Any]]:
        return index.get(getattr(item, attr, None))
    return KeyStrategy(name=attr, resolve=_resolve)


def _substring(item: ListingItem, index: FacetIndex) -> Optional[Dict[str, Any]]:
    for attr in ("offer_id", "vendor_code"):
        hit = index.find_containing(getattr(item, attr, None))
        if hit is not None:
            return hit[1]
    return None


SUBSTRING = KeyStrategy(name="substring", resolve=_substring, last_resort=True)

DEFAULT_STRATEGIES: Tuple[KeyStrategy, ...] = (
    exact("offer_id"),
    exact("sku"),
    exact("primary_id"),
    exact("vendor_code"),
    SUBSTRING,
)


# ========= Merger =========
class CatalogMerger:

    def __init__(
        self,
        strategies: Optional[Sequence[KeyStrategy]] = None,
        *,
        substring_enabled: Optional[bool] = None,
        unmatched_log_limit: Optional[int] = None,
        default_currency: Optional[str] = None,
    ) -> None:
        enabled = settings.SYNC_SUBSTRING_MATCH_ENABLED if substring_enabled is None else substring_enabled
        chosen = list(strategies or DEFAULT_STRATEGIES)
        if not enabled:
            chosen = [s for s in chosen if not s.last_resort]
        self.strategies = chosen
        self.unmatched_log_limit = (
            settings.SYNC_UNMATCHED_LOG_LIMIT if unmatched_log_limit is None else int(unmatched_log_limit)
        )
        self.default_currency = default_currency


    @staticmethod
    def build_indexes(facets: Dict[str, Iterable[FacetRecord]]) -> Dict[str, FacetIndex]:
        indexes: Dict[str, FacetIndex] = {}
        for facet in FACETS:
            index = FacetIndex(facet, accumulate=(facet == FACET_STOCK))
            for rec in facets.get(facet) or []:
                index.add(rec)
            indexes[facet] = index
        return indexes


    def resolve(self, item: ListingItem, index: FacetIndex) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """(entry, strategy name) for the first strategy that matches, else (None, None)."""
        if not len(index):
            return None, None
        for strategy in self.strategies:
            entry = strategy.resolve(item, index)
            if entry is not None:
                return entry, strategy.name
        return None, None


    def merge(
        self,
        storefront_code: str,
        listing: Sequence[ListingItem],
        facets: Dict[str, Iterable[FacetRecord]],
    ) -> MergeResult:
        indexes = self.build_indexes(facets)
        stats: Dict[str, Any] = {
            "items": len(listing),
            "matched": {f: 0 for f in FACETS},
            "unmatched": {f: 0 for f in FACETS},
            "substring_matches": 0,
            "placeholder_names": 0,
            "missing_vendor_code": 0,
        }
        logged = {"unmatched": 0, "substring": 0}

        merged: List[MergedCatalogItem] = []
        for item in listing:
            found: Dict[str, Dict[str, Any]] = {}
            matched_by: Dict[str, str] = {}
            for facet, index in indexes.items():
                entry, how = self.resolve(item, index)
                if entry is None:
                    if len(index):
                        stats["unmatched"][facet] += 1
                        if logged["unmatched"] < self.unmatched_log_limit:
                            logged["unmatched"] += 1
                            logger.info(
                                "merge %s: no %s record for offer_id=%s sku=%s primary_id=%s",
                                storefront_code, facet, item.offer_id, item.sku, item.primary_id,
                            )
                    continue
                found[facet] = entry
                matched_by[facet] = how or ""
                stats["matched"][facet] += 1
                if how == SUBSTRING.name:
                    stats["substring_matches"] += 1
                    if logged["substring"] < self.unmatched_log_limit:
                        logged["substring"] += 1
                        logger.warning(
                            "merge %s: %s matched offer_id=%s by substring containment only",
                            storefront_code, facet, item.offer_id,
                        )

            m = self.merge_item(storefront_code, item, found)
            m.matched_by = matched_by
            if m.name_is_placeholder:
                stats["placeholder_names"] += 1
            if not m.vendor_code:
                stats["missing_vendor_code"] += 1
            merged.append(m)

        if stats["substring_matches"]:
            logger.warning(
                "merge %s: %d facet matches relied on substring containment",
                storefront_code, stats["substring_matches"],
            )
        return MergeResult(items=merged, stats=stats)


    def merge_item(
        self, storefront_code: str, item: ListingItem, found: Dict[str, Dict[str, Any]],
    ) -> MergedCatalogItem:
        attrs = found.get(FACET_ATTRIBUTES) or {}
        imgs = found.get(FACET_IMAGES) or {}
        stock = found.get(FACET_STOCK)
        price = found.get(FACET_PRICES) or {}

        ids = [x for x in (clean_str(item.offer_id), clean_str(item.sku), clean_str(item.primary_id)) if x]
        vendor_code = (
            clean_str(item.vendor_code) or clean_str(attrs.get("vendor_code"))
            or clean_str(item.offer_id) or clean_str(item.sku)
        )

        name = clean_str(attrs.get("name")) or clean_str(item.name)
        placeholder = name is None or name in ids or name == vendor_code
        if name is None:
            name = ids[0] if ids else (vendor_code or "")

        cur = clean_str(price.get("currency")) or clean_str(item.currency) or self.default_currency

        return MergedCatalogItem(
            storefront_code=storefront_code,
            offer_id=clean_str(item.offer_id) or "",
            vendor_code=vendor_code,
            primary_id=clean_str(item.primary_id),
            sku=clean_str(item.sku),
            name=name,
            name_is_placeholder=placeholder,
            description=clean_str(attrs.get("description")),
            images=self.pick_images(item, attrs, imgs),
            category=clean_str(attrs.get("category")) or clean_str(item.category),
            price=_first_decimal(price.get("price"), item.price),
            old_price=_first_decimal(price.get("old_price"), item.old_price),
            currency=cur,
            stock_available=to_int(stock.get("available")) if stock else None,
            stock_reserved=to_int(stock.get("reserved")) if stock else None,
            status=clean_str(item.status),
        )


    @staticmethod
    def pick_images(item: ListingItem, attrs: Dict[str, Any], imgs: Dict[str, Any]) -> List[str]:
        """First non-empty source wins whole: image facet, listing, attribute facet, single cover photo."""
        for source in (imgs.get("images"), item.images, attrs.get("images")):
            urls = image_urls(source)
            if urls:
                return urls
        cover = clean_str(attrs.get("cover_image")) or clean_str(item.cover_image)
        return [cover] if cover else []


def _first_decimal(*vals: Any) -> Optional[Decimal]:
    for v in vals:
        d = v if isinstance(v, Decimal) else to_decimal(v)
        if d is not None:
            return d
    return None
