"""
Yandex Market Partner API storefront adapter (business + campaign scoped):
   - listing:    POST /v2/businesses/{business}/offer-mappings            (page_token)
   - attributes: POST /v2/businesses/{business}/offer-cards               (by offerId, page_token)
   - images:     POST /v2/businesses/{business}/offer-mappings            (by offerId, pictures only)
   - stock:      POST /v2/campaigns/{campaign}/offers/stocks              (by offerId; per-warehouse rows)
   - prices:     POST /v2/businesses/{business}/offer-prices              (by offerId, page_token)
   - write-back: POST /v2/businesses/{business}/offer-prices/updates      (<= 2000 offers per call)
Vendor code: offer.vendorCode, then offerId, then marketSku.
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
    clean_str, dig, dict_list, image_urls, to_decimal, to_int,
)
from catalog_hub.integrations.marketplace.paginator import CursorPaginator, Page
from catalog_hub.integrations.marketplace.retry import RetryExecutor

logger = logging.getLogger(__name__)


# stock types that count as sellable / held
AVAILABLE_TYPES = {"AVAILABLE", "FIT"}
RESERVED_TYPES = {"FREEZE"}


def _keys(*vals: Any) -> tuple:
    out: List[str] = []
    for v in vals:
        s = clean_str(v)
        if s and s not in out:
            out.append(s)
    return tuple(out)


def _next_token(data: Any) -> Optional[str]:
    return clean_str(dig(data, "result", "paging", "nextPageToken"))


class MarketCatalogAdapter(CatalogAdapter):

    marketplace = "market"
    listing_page_size = 200
    attributes_page_size = 100
    batch_sizes = {
        FACET_ATTRIBUTES: 100,
        FACET_IMAGES: 200,
        FACET_STOCK: 200,
        FACET_PRICES: 200,
    }
    price_update_batch_size = 2000
    default_currency = settings.MARKET_DEFAULT_CURRENCY

    def __init__(
        self,
        storefront_code: str,
        *,
        api_key: str,
        business_id: str,
        campaign_id: str,
        http: Optional[MarketplaceHttpClient] = None,
        retry: Optional[RetryExecutor] = None,
    ) -> None:
        super().__init__(storefront_code)
        missing = [n for n, v in (("api_key", api_key), ("business_id", business_id), ("campaign_id", campaign_id))
                   if not clean_str(v)]
        if missing:
            raise StorefrontConfigError(f"storefront {storefront_code}: market needs {', '.join(missing)}")
        self.business_id = str(business_id).strip()
        self.campaign_id = str(campaign_id).strip()
        self.http = http or MarketplaceHttpClient(
            settings.MARKET_BASE_URL,
            headers={"Api-Key": str(api_key).strip()},
            connect_timeout=settings.MARKET_CONNECT_TIMEOUT,
            read_timeout=settings.MARKET_READ_TIMEOUT,
            rate_limit_per_min=settings.MARKET_RATE_LIMIT_PER_MIN,
            retry=retry,
            marketplace=self.marketplace,
            storefront_code=storefront_code,
        )


    @classmethod
    def from_storefront(cls, storefront, **kwargs) -> "MarketCatalogAdapter":
        return cls(
            storefront.code,
            api_key=storefront.api_key,
            business_id=storefront.business_id,
            campaign_id=storefront.campaign_id,
            **kwargs,
        )


    @property
    def _business(self) -> str:
        return f"/v2/businesses/{self.business_id}"


    # ---------- Listing ----------
    def _listing_item(self, row: dict) -> Optional[ListingItem]:
        offer = row.get("offer") if isinstance(row.get("offer"), dict) else {}
        mapping = row.get("mapping") if isinstance(row.get("mapping"), dict) else {}
        offer_id = clean_str(offer.get("offerId"))
        if not offer_id:
            return None
        basic = offer.get("basicPrice") if isinstance(offer.get("basicPrice"), dict) else {}
        urls = image_urls(offer.get("pictures"))
        return ListingItem(
            offer_id=offer_id,
            sku=clean_str(mapping.get("marketSku")),
            vendor_code=clean_str(offer.get("vendorCode")),
            name=clean_str(offer.get("name")),
            status=clean_str(offer.get("cardStatus") or offer.get("status")),
            price=to_decimal(basic.get("value")),
            currency=clean_str(basic.get("currencyId")),
            images=urls,
            cover_image=urls[0] if urls else None,
            category=clean_str(offer.get("category") or mapping.get("marketCategoryName")),
        )


    def list_offers(self, cursor: Optional[str], page_size: int) -> Page[ListingItem]:
        params: Dict[str, Any] = {"limit": int(page_size)}
        if cursor:
            params["page_token"] = cursor
        data = self.http.post_json(f"{self._business}/offer-mappings", {}, params=params)
        rows = dict_list(dig(data, "result", "offerMappings"), "result.offerMappings")

        items = [it for it in (self._listing_item(r) for r in rows) if it is not None]
        return Page(items=items, next_cursor=_next_token(data) if rows else None)


    # ---------- Facets ----------
    def get_attributes(self, ids: Sequence[str], cursor: Optional[str], page_size: int) -> Page[FacetRecord]:
        params: Dict[str, Any] = {"limit": int(page_size)}
        if cursor:
            params["page_token"] = cursor
        data = self.http.post_json(f"{self._business}/offer-cards", {"offerIds": list(ids)}, params=params)
        rows = dict_list(dig(data, "result", "offerCards"), "result.offerCards")

        out: List[FacetRecord] = []
        for r in rows:
            mapping = r.get("mapping") if isinstance(r.get("mapping"), dict) else {}
            keys = _keys(r.get("offerId"), mapping.get("marketSku"))
            if not keys:
                continue
            urls = image_urls(r.get("pictures")) or image_urls(r.get("photos"))
            out.append(FacetRecord(keys=keys, fields={
                "name": clean_str(mapping.get("marketSkuName")),
                "description": clean_str(r.get("description")),
                "category": clean_str(mapping.get("marketCategoryName")),
                "images": urls,
                "cover_image": clean_str(dig(r, "photo", "url")),
            }))
        return Page(items=out, next_cursor=_next_token(data) if rows else None)


    def get_images(self, ids: Sequence[str]) -> List[FacetRecord]:
        data = self.http.post_json(f"{self._business}/offer-mappings", {"offerIds": list(ids)})
        rows = dict_list(dig(data, "result", "offerMappings"), "result.offerMappings")

        out: List[FacetRecord] = []
        for r in rows:
            offer = r.get("offer") if isinstance(r.get("offer"), dict) else {}
            keys = _keys(offer.get("offerId"))
            if keys:
                out.append(FacetRecord(keys=keys, fields={"images": image_urls(offer.get("pictures"))}))
        return out


    def get_stock(self, ids: Sequence[str]) -> List[FacetRecord]:
        path = f"/v2/campaigns/{self.campaign_id}/offers/stocks"
        body = {"offerIds": list(ids)}

        def _fetch(cursor: Optional[str]) -> Page[dict]:
            params = {"page_token": cursor} if cursor else None
            data = self.http.post_json(path, body, params=params)
            warehouses = dict_list(dig(data, "result", "warehouses"), "result.warehouses")
            return Page(items=warehouses, next_cursor=_next_token(data) if warehouses else None)

        warehouses = CursorPaginator(page_delay=0).collect(_fetch, label=f"market stocks {self.storefront_code}").items

        out: List[FacetRecord] = []
        for wh in warehouses:
            for o in dict_list(wh.get("offers"), "warehouses.offers"):
                keys = _keys(o.get("offerId"))
                if not keys:
                    continue
                available = reserved = 0
                for s in dict_list(o.get("stocks"), "offers.stocks"):
                    kind = str(s.get("type") or "").upper()
                    count = to_int(s.get("count")) or 0
                    if kind in AVAILABLE_TYPES:
                        available += count
                    elif kind in RESERVED_TYPES:
                        reserved += count
                out.append(FacetRecord(keys=keys, fields={"available": available, "reserved": reserved}))
        return out


    def get_prices(self, ids: Sequence[str], cursor: Optional[str]) -> Page[FacetRecord]:
        params: Dict[str, Any] = {"limit": max(1, len(ids))}
        if cursor:
            params["page_token"] = cursor
        data = self.http.post_json(f"{self._business}/offer-prices", {"offerIds": list(ids)}, params=params)
        rows = dict_list(dig(data, "result", "offers"), "result.offers")

        out: List[FacetRecord] = []
        for r in rows:
            keys = _keys(r.get("offerId"))
            if not keys:
                continue
            p = r.get("price") if isinstance(r.get("price"), dict) else {}
            out.append(FacetRecord(keys=keys, fields={
                "price": to_decimal(p.get("value")),
                "old_price": to_decimal(p.get("discountBase")),
                "currency": clean_str(p.get("currencyId")) or self.default_currency,
            }))
        return Page(items=out, next_cursor=_next_token(data) if rows else None)


    # ---------- Write-back ----------
    def update_prices(self, offers: Sequence[PriceUpdate]) -> PriceUpdateResult:
        if len(offers) > self.price_update_batch_size:
            raise ValueError(f"market accepts at most {self.price_update_batch_size} prices per call")
        payload: List[Dict[str, Any]] = []
        for o in offers:
            price: Dict[str, Any] = {"value": float(o.price), "currencyId": o.currency or self.default_currency}
            if o.old_price is not None:
                price["discountBase"] = float(o.old_price)
            payload.append({"offerId": o.offer_id, "price": price})

        data = self.http.post_json(f"{self._business}/offer-prices/updates", {"offers": payload})
        errors = [
            {"code": e.get("code"), "message": e.get("message")}
            for e in dict_list(data.get("errors") if isinstance(data, dict) else None, "errors")
        ]
        status = str(data.get("status") or "").upper() if isinstance(data, dict) else ""
        ok = status == "OK" and not errors
        if not ok:
            logger.warning(
                "market price update %s: status=%s errors sample=%s", self.storefront_code, status, errors[:5]
            )
        return PriceUpdateResult(success=ok, errors=errors, updated=len(payload) if ok else 0)


    def close(self) -> None:
        self.http.close()
