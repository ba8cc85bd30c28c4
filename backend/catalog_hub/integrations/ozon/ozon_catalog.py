"""
Ozon Seller API storefront adapter:
   - listing:    POST /v3/product/list               (last_id cursor)
   - attributes: POST /v4/product/info/attributes    (by product_id, last_id cursor)
   - images:     POST /v2/product/pictures/info      (by product_id)
   - stock:      POST /v4/product/info/stocks        (by offer_id, cursor; one record per warehouse row)
   - prices:     POST /v5/product/info/prices        (by offer_id, cursor)
   - write-back: POST /v1/product/import/prices      (<= 1000 offers per call)
Vendor code on Ozon is the seller's offer_id.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Sequence

from catalog_hub.core.config import settings
from catalog_hub.integrations.marketplace.adapter import (
    CatalogAdapter, FacetRecord, ListingItem, PriceUpdate, PriceUpdateResult,
    FACET_ATTRIBUTES, FACET_IMAGES, FACET_PRICES, FACET_STOCK,
)
from catalog_hub.integrations.marketplace.errors import StorefrontConfigError
from catalog_hub.integrations.marketplace.http_client import MarketplaceHttpClient
from catalog_hub.integrations.marketplace.normalizers import (
    clean_str, dig, dict_list, first_list, image_urls, to_decimal, to_int,
)
from catalog_hub.integrations.marketplace.paginator import CursorPaginator, Page
from catalog_hub.integrations.marketplace.retry import RetryExecutor

logger = logging.getLogger(__name__)


PATH_LIST = "/v3/product/list"
PATH_ATTRIBUTES = "/v4/product/info/attributes"
PATH_PICTURES = "/v2/product/pictures/info"
PATH_STOCKS = "/v4/product/info/stocks"
PATH_PRICES = "/v5/product/info/prices"
PATH_IMPORT_PRICES = "/v1/product/import/prices"


def _keys(*vals: Any) -> tuple:
    out: List[str] = []
    for v in vals:
        s = clean_str(v)
        if s and s not in out:
            out.append(s)
    return tuple(out)


class OzonCatalogAdapter(CatalogAdapter):

    marketplace = "ozon"
    listing_page_size = 1000
    attributes_page_size = 1000
    batch_sizes = {
        FACET_ATTRIBUTES: 1000,
        FACET_IMAGES: 1000,
        FACET_STOCK: 1000,
        FACET_PRICES: 1000,
    }
    price_update_batch_size = 1000
    default_currency = settings.OZON_DEFAULT_CURRENCY

    def __init__(
        self,
        storefront_code: str,
        *,
        client_id: str,
        api_key: str,
        http: Optional[MarketplaceHttpClient] = None,
        retry: Optional[RetryExecutor] = None,
    ) -> None:
        super().__init__(storefront_code)
        if not clean_str(client_id) or not clean_str(api_key):
            raise StorefrontConfigError(f"storefront {storefront_code}: ozon needs client_id and api_key")
        self.http = http or MarketplaceHttpClient(
            settings.OZON_BASE_URL,
            headers={"Client-Id": str(client_id).strip(), "Api-Key": str(api_key).strip()},
            connect_timeout=settings.OZON_CONNECT_TIMEOUT,
            read_timeout=settings.OZON_READ_TIMEOUT,
            rate_limit_per_min=settings.OZON_RATE_LIMIT_PER_MIN,
            retry=retry,
            marketplace=self.marketplace,
            storefront_code=storefront_code,
        )


    @classmethod
    def from_storefront(cls, storefront, **kwargs) -> "OzonCatalogAdapter":
        return cls(storefront.code, client_id=storefront.client_id, api_key=storefront.api_key, **kwargs)


    # ---------- Listing ----------
    def list_offers(self, cursor: Optional[str], page_size: int) -> Page[ListingItem]:
        body = {"filter": {"visibility": "ALL"}, "last_id": cursor or "", "limit": int(page_size)}
        data = self.http.post_json(PATH_LIST, body)
        rows = dict_list(dig(data, "result", "items"), "result.items")

        items: List[ListingItem] = []
        for r in rows:
            offer_id = clean_str(r.get("offer_id"))
            if not offer_id:
                continue
            items.append(ListingItem(
                offer_id=offer_id,
                primary_id=clean_str(r.get("product_id")),
                vendor_code=offer_id,
                status="archived" if r.get("archived") else None,
            ))

        next_cursor = clean_str(dig(data, "result", "last_id"))
        if not rows or len(rows) < int(page_size):
            next_cursor = None
        return Page(items=items, next_cursor=next_cursor)


    # ---------- Facets ----------
    def facet_ids(self, items: Sequence[ListingItem], facet: str) -> List[str]:
        """attributes and pictures are queried by product_id, stock and prices by offer_id."""
        if facet in (FACET_ATTRIBUTES, FACET_IMAGES):
            return [it.primary_id for it in items if it.primary_id]
        return super().facet_ids(items, facet)


    def get_attributes(self, ids: Sequence[str], cursor: Optional[str], page_size: int) -> Page[FacetRecord]:
        body = {
            "filter": {"product_id": [str(i) for i in ids], "visibility": "ALL"},
            "limit": int(page_size),
            "last_id": cursor or "",
            "sort_dir": "ASC",
        }
        data = self.http.post_json(PATH_ATTRIBUTES, body)
        rows = first_list(data, ("result", "items"), "attributes")

        out: List[FacetRecord] = []
        for r in rows:
            keys = _keys(r.get("offer_id"), r.get("id"), r.get("sku"))
            if not keys:
                continue
            out.append(FacetRecord(keys=keys, fields={
                "name": clean_str(r.get("name")),
                "description": clean_str(r.get("description")),
                "category": clean_str(r.get("category") or r.get("type_name")),
                "images": image_urls(r.get("images")),
                "cover_image": clean_str(r.get("primary_image")),
                "vendor_code": clean_str(r.get("offer_id")),
            }))

        next_cursor = clean_str(data.get("last_id")) if isinstance(data, dict) else None
        if not rows or len(rows) < int(page_size):
            next_cursor = None
        return Page(items=out, next_cursor=next_cursor)


    def get_images(self, ids: Sequence[str]) -> List[FacetRecord]:
        data = self.http.post_json(PATH_PICTURES, {"product_id": [str(i) for i in ids]})
        rows = first_list(data, ("items", "pictures"), "pictures")

        out: List[FacetRecord] = []
        for r in rows:
            keys = _keys(r.get("offer_id"), r.get("product_id"))
            if not keys:
                continue
            urls: List[str] = []
            for src in ("primary_photo", "photo", "images"):
                for u in image_urls(r.get(src)):
                    if u not in urls:
                        urls.append(u)
            out.append(FacetRecord(keys=keys, fields={"images": urls}))
        return out


    def get_stock(self, ids: Sequence[str]) -> List[FacetRecord]:
        ids = [str(i) for i in ids]

        def _fetch(cursor: Optional[str]) -> Page[dict]:
            body = {"filter": {"offer_id": ids, "visibility": "ALL"}, "limit": len(ids) or 1, "cursor": cursor or ""}
            data = self.http.post_json(PATH_STOCKS, body)
            rows = first_list(data, ("items",), "stocks")
            nxt = clean_str(data.get("cursor")) if isinstance(data, dict) else None
            return Page(items=rows, next_cursor=nxt if rows else None)

        rows = CursorPaginator(page_delay=0).collect(_fetch, label=f"ozon stocks {self.storefront_code}").items

        out: List[FacetRecord] = []
        for r in rows:
            keys = _keys(r.get("offer_id"), r.get("product_id"))
            if not keys:
                continue
            stocks = dict_list(r.get("stocks"), "stocks")
            if not stocks:
                out.append(FacetRecord(keys=keys, fields={"available": 0, "reserved": 0}))
                continue
            for s in stocks:
                out.append(FacetRecord(keys=keys, fields={
                    "available": to_int(s.get("present")),
                    "reserved": to_int(s.get("reserved")),
                }))
        return out


    def get_prices(self, ids: Sequence[str], cursor: Optional[str]) -> Page[FacetRecord]:
        body = {
            "filter": {"offer_id": [str(i) for i in ids], "visibility": "ALL"},
            "limit": max(1, len(ids)),
            "cursor": cursor or "",
        }
        data = self.http.post_json(PATH_PRICES, body)
        rows = first_list(data, ("items",), "prices")

        out: List[FacetRecord] = []
        for r in rows:
            keys = _keys(r.get("offer_id"), r.get("product_id"))
            if not keys:
                continue
            p = r.get("price") if isinstance(r.get("price"), dict) else {}
            price = to_decimal(p.get("price"))
            if price is None or price == 0:
                price = to_decimal(p.get("marketing_price")) or price
            out.append(FacetRecord(keys=keys, fields={
                "price": price,
                "old_price": to_decimal(p.get("old_price")),
                "currency": clean_str(p.get("currency_code")) or self.default_currency,
            }))

        nxt = clean_str(data.get("cursor")) if isinstance(data, dict) else None
        return Page(items=out, next_cursor=nxt if rows else None)


    # ---------- Write-back ----------
    def update_prices(self, offers: Sequence[PriceUpdate]) -> PriceUpdateResult:
        if len(offers) > self.price_update_batch_size:
            raise ValueError(f"ozon accepts at most {self.price_update_batch_size} prices per call")
        prices: List[Dict[str, Any]] = []
        for o in offers:
            row: Dict[str, Any] = {
                "offer_id": o.offer_id,
                "price": str(o.price),
                "currency_code": o.currency or self.default_currency,
            }
            if o.old_price is not None:
                row["old_price"] = str(o.old_price)
            prices.append(row)

        data = self.http.post_json(PATH_IMPORT_PRICES, {"prices": prices})
        rows = first_list(data, ("result",), "import prices")

        errors: List[Dict[str, Any]] = []
        updated = 0
        for r in rows:
            if r.get("updated"):
                updated += 1
            for e in dict_list(r.get("errors"), "errors"):
                errors.append({"offer_id": r.get("offer_id"), "code": e.get("code"), "message": e.get("message")})
        if errors:
            logger.warning(
                "ozon price import %s: %d errors sample=%s", self.storefront_code, len(errors), errors[:5]
            )
        return PriceUpdateResult(success=not errors, errors=errors, updated=updated)


    def close(self) -> None:
        self.http.close()
