from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

from catalog_hub.integrations.market.market_catalog import MarketCatalogAdapter
from catalog_hub.integrations.marketplace.adapter import (
    PriceUpdate, FACET_ATTRIBUTES, FACET_IMAGES, FACET_PRICES, FACET_STOCK,
)
from catalog_hub.integrations.marketplace.errors import MarketplacePayloadError, StorefrontConfigError
from catalog_hub.integrations.ozon.ozon_catalog import OzonCatalogAdapter
from catalog_hub.integrations.registry import build_adapter


class FakeHttp:
    """Records post_json calls; answers from a path -> response (or list of responses) map."""

    def __init__(self, routes):
        self.routes = {k: (list(v) if isinstance(v, list) else [v]) for k, v in routes.items()}
        self.calls = []
        self.closed = False

    def post_json(self, path, json_body=None, params=None, **kwargs):
        self.calls.append(SimpleNamespace(path=path, body=json_body, params=params))
        queue = self.routes[path]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def close(self):
        self.closed = True


def _ozon(routes):
    http = FakeHttp(routes)
    return OzonCatalogAdapter("oz-main", client_id="42", api_key="secret", http=http), http


def _market(routes):
    http = FakeHttp(routes)
    return MarketCatalogAdapter("ym-main", api_key="k", business_id="7", campaign_id="99", http=http), http


# ========= registry / credentials =========
def test_registry_builds_adapter_per_marketplace():
    oz = build_adapter(SimpleNamespace(code="a", marketplace="ozon", client_id="1", api_key="k"))
    ym = build_adapter(SimpleNamespace(code="b", marketplace=" Market ", api_key="k", business_id="1", campaign_id="2"))
    try:
        assert isinstance(oz, OzonCatalogAdapter)
        assert isinstance(ym, MarketCatalogAdapter)
    finally:
        oz.close()
        ym.close()


def test_registry_rejects_unknown_marketplace():
    with pytest.raises(StorefrontConfigError, match="unsupported marketplace"):
        build_adapter(SimpleNamespace(code="x", marketplace="ebay"))


def test_missing_credentials_are_config_errors():
    with pytest.raises(StorefrontConfigError, match="client_id"):
        OzonCatalogAdapter("oz", client_id="", api_key="k")
    with pytest.raises(StorefrontConfigError, match="campaign_id"):
        MarketCatalogAdapter("ym", api_key="k", business_id="1", campaign_id=None)


# ========= Ozon =========
def test_ozon_listing_page_and_cursor():
    adapter, http = _ozon({
        "/v3/product/list": {"result": {"items": [
            {"offer_id": "A1", "product_id": 1001},
            {"offer_id": "A2", "product_id": 1002, "archived": True},
            {"offer_id": "", "product_id": 1003},
        ], "last_id": "cursor-2", "total": 5}},
    })
    page = adapter.list_offers(None, 3)

    assert [it.offer_id for it in page.items] == ["A1", "A2"]
    assert page.items[0].primary_id == "1001"
    assert page.items[0].vendor_code == "A1"
    assert page.items[1].status == "archived"
    assert page.next_cursor == "cursor-2"
    assert http.calls[0].body == {"filter": {"visibility": "ALL"}, "last_id": "", "limit": 3}


def test_ozon_short_page_ends_listing():
    adapter, _ = _ozon({"/v3/product/list": {"result": {"items": [{"offer_id": "A1"}], "last_id": "more"}}})
    assert adapter.list_offers("c", 1000).next_cursor is None


def test_ozon_listing_rejects_bad_shape():
    adapter, _ = _ozon({"/v3/product/list": {"result": {"items": "oops"}}})
    with pytest.raises(MarketplacePayloadError):
        adapter.list_offers(None, 10)


def test_ozon_facet_ids_by_facet():
    adapter, _ = _ozon({})
    listing = [SimpleNamespace(offer_id="A1", primary_id="1001"), SimpleNamespace(offer_id="A2", primary_id=None)]
    assert adapter.facet_ids(listing, FACET_ATTRIBUTES) == ["1001"]
    assert adapter.facet_ids(listing, FACET_IMAGES) == ["1001"]
    assert adapter.facet_ids(listing, FACET_STOCK) == ["A1", "A2"]
    assert adapter.facet_ids(listing, FACET_PRICES) == ["A1", "A2"]


def test_ozon_attributes_records():
    adapter, http = _ozon({"/v4/product/info/attributes": {"result": [
        {"id": 1001, "offer_id": "A1", "sku": 555, "name": "Widget", "description": "d",
         "type_name": "Tools", "images": ["https://img/1.jpg"], "primary_image": "https://img/0.jpg"},
    ], "last_id": "", "total": 1}})
    page = adapter.get_attributes(["1001"], None, 1000)

    rec = page.items[0]
    assert rec.keys == ("A1", "1001", "555")
    assert rec.fields["name"] == "Widget"
    assert rec.fields["category"] == "Tools"
    assert rec.fields["images"] == ["https://img/1.jpg"]
    assert rec.fields["cover_image"] == "https://img/0.jpg"
    assert page.next_cursor is None
    assert http.calls[0].body["filter"]["product_id"] == ["1001"]


def test_ozon_images_merge_sources():
    adapter, _ = _ozon({"/v2/product/pictures/info": {"items": [
        {"product_id": 1001, "primary_photo": ["https://p/0.jpg"], "photo": ["https://p/1.jpg", "https://p/0.jpg"]},
    ]}})
    recs = adapter.get_images(["1001"])
    assert recs[0].keys == ("1001",)
    assert recs[0].fields["images"] == ["https://p/0.jpg", "https://p/1.jpg"]


def test_ozon_stock_one_record_per_warehouse_row():
    adapter, http = _ozon({"/v4/product/info/stocks": [
        {"items": [{"offer_id": "A1", "product_id": 1001, "stocks": [
            {"type": "fbo", "present": 5, "reserved": 1},
            {"type": "fbs", "present": 3, "reserved": 0},
        ]}], "cursor": "next"},
        {"items": [{"offer_id": "A2", "product_id": 1002, "stocks": []}], "cursor": ""},
    ]})
    recs = adapter.get_stock(["A1", "A2"])

    assert [(r.keys[0], r.fields["available"], r.fields["reserved"]) for r in recs] == [
        ("A1", 5, 1), ("A1", 3, 0), ("A2", 0, 0),
    ]
    assert [c.body["cursor"] for c in http.calls] == ["", "next"]


def test_ozon_prices_fall_back_to_marketing_price():
    adapter, _ = _ozon({"/v5/product/info/prices": {"items": [
        {"offer_id": "A1", "product_id": 1001, "price": {"price": "100", "old_price": "120", "currency_code": "RUB"}},
        {"offer_id": "A2", "product_id": 1002, "price": {"price": "0", "marketing_price": "88.5"}},
    ], "cursor": ""}})
    page = adapter.get_prices(["A1", "A2"], None)

    a1, a2 = page.items
    assert a1.fields["price"] == Decimal("100.00")
    assert a1.fields["old_price"] == Decimal("120.00")
    assert a2.fields["price"] == Decimal("88.50")
    assert a2.fields["currency"] == "RUB"
    assert page.next_cursor is None


def test_ozon_update_prices_payload_and_errors():
    adapter, http = _ozon({"/v1/product/import/prices": {"result": [
        {"offer_id": "A1", "updated": True, "errors": []},
        {"offer_id": "A2", "updated": False, "errors": [{"code": "PRICE_TOO_LOW", "message": "too low"}]},
    ]}})
    res = adapter.update_prices([
        PriceUpdate(offer_id="A1", price=Decimal("10.50"), old_price=Decimal("12.00")),
        PriceUpdate(offer_id="A2", price=Decimal("1.00"), currency="USD"),
    ])

    assert http.calls[0].body == {"prices": [
        {"offer_id": "A1", "price": "10.50", "currency_code": "RUB", "old_price": "12.00"},
        {"offer_id": "A2", "price": "1.00", "currency_code": "USD"},
    ]}
    assert not res.success
    assert res.updated == 1
    assert res.errors == [{"offer_id": "A2", "code": "PRICE_TOO_LOW", "message": "too low"}]


def test_ozon_update_prices_ceiling():
    adapter, _ = _ozon({})
    with pytest.raises(ValueError):
        adapter.update_prices([PriceUpdate(offer_id=str(i), price=Decimal("1")) for i in range(1001)])


# ========= Market =========
def test_market_listing_item_fields():
    adapter, http = _market({"/v2/businesses/7/offer-mappings": {"result": {
        "offerMappings": [{
            "offer": {"offerId": "M1", "vendorCode": "VC-1", "name": "Kettle", "cardStatus": "HAS_CARD_CAN_UPDATE",
                      "basicPrice": {"value": 1990, "currencyId": "RUR"}, "pictures": ["https://m/1.jpg"],
                      "category": "Kitchen"},
            "mapping": {"marketSku": 100500, "marketCategoryName": "Kettles"},
        }],
        "paging": {"nextPageToken": "tok-2"},
    }}})
    page = adapter.list_offers("tok-1", 200)

    it = page.items[0]
    assert (it.offer_id, it.sku, it.vendor_code, it.name) == ("M1", "100500", "VC-1", "Kettle")
    assert it.status == "HAS_CARD_CAN_UPDATE"
    assert it.price == Decimal("1990.00")
    assert it.cover_image == "https://m/1.jpg"
    assert it.category == "Kitchen"
    assert page.next_cursor == "tok-2"
    assert http.calls[0].params == {"limit": 200, "page_token": "tok-1"}


def test_market_attributes_from_offer_cards():
    adapter, _ = _market({"/v2/businesses/7/offer-cards": {"result": {"offerCards": [
        {"offerId": "M1", "mapping": {"marketSku": 100500, "marketSkuName": "Kettle 2L", "marketCategoryName": "Kettles"},
         "photos": [{"url": "https://m/2.jpg"}], "photo": {"url": "https://m/cover.jpg"}},
    ]}}})
    rec = adapter.get_attributes(["M1"], None, 100).items[0]
    assert rec.keys == ("M1", "100500")
    assert rec.fields["name"] == "Kettle 2L"
    assert rec.fields["images"] == ["https://m/2.jpg"]
    assert rec.fields["cover_image"] == "https://m/cover.jpg"


def test_market_stock_sums_types_per_warehouse():
    adapter, http = _market({"/v2/campaigns/99/offers/stocks": {"result": {"warehouses": [
        {"warehouseId": 1, "offers": [{"offerId": "M1", "stocks": [
            {"type": "FIT", "count": 4}, {"type": "AVAILABLE", "count": 2}, {"type": "FREEZE", "count": 1},
            {"type": "DEFECT", "count": 9},
        ]}]},
        {"warehouseId": 2, "offers": [{"offerId": "M1", "stocks": [{"type": "FIT", "count": 3}]}]},
    ]}}})
    recs = adapter.get_stock(["M1"])

    assert [(r.fields["available"], r.fields["reserved"]) for r in recs] == [(6, 1), (3, 0)]
    assert http.calls[0].path == "/v2/campaigns/99/offers/stocks"


def test_market_prices_and_default_currency():
    adapter, _ = _market({"/v2/businesses/7/offer-prices": {"result": {"offers": [
        {"offerId": "M1", "price": {"value": 1500, "discountBase": 1800}},
    ]}}})
    rec = adapter.get_prices(["M1"], None).items[0]
    assert rec.fields == {"price": Decimal("1500.00"), "old_price": Decimal("1800.00"), "currency": "RUR"}


def test_market_update_prices():
    adapter, http = _market({"/v2/businesses/7/offer-prices/updates": {"status": "OK"}})
    res = adapter.update_prices([PriceUpdate(offer_id="M1", price=Decimal("10.00"), old_price=Decimal("12.00"))])

    assert res.success and res.updated == 1
    assert http.calls[0].body == {"offers": [
        {"offerId": "M1", "price": {"value": 10.0, "currencyId": "RUR", "discountBase": 12.0}},
    ]}


def test_market_update_prices_error_status():
    adapter, _ = _market({"/v2/businesses/7/offer-prices/updates": {
        "status": "ERROR", "errors": [{"code": "BAD_REQUEST", "message": "price"}],
    }})
    res = adapter.update_prices([PriceUpdate(offer_id="M1", price=Decimal("10.00"))])
    assert not res.success
    assert res.updated == 0
    assert res.errors == [{"code": "BAD_REQUEST", "message": "price"}]
