"""
Storefront -> adapter dispatch. Credentials are validated here, before any sync starts,
so a misconfigured storefront fails the start request instead of the background job.
"""
from __future__ import annotations
from typing import Callable, Dict

from catalog_hub.integrations.marketplace.adapter import CatalogAdapter
from catalog_hub.integrations.marketplace.errors import StorefrontConfigError
from catalog_hub.integrations.market.market_catalog import MarketCatalogAdapter
from catalog_hub.integrations.ozon.ozon_catalog import OzonCatalogAdapter


ADAPTERS: Dict[str, Callable[..., CatalogAdapter]] = {
    OzonCatalogAdapter.marketplace: OzonCatalogAdapter.from_storefront,
    MarketCatalogAdapter.marketplace: MarketCatalogAdapter.from_storefront,
}


def build_adapter(storefront, **kwargs) -> CatalogAdapter:
    factory = ADAPTERS.get((storefront.marketplace or "").strip().lower())
    if factory is None:
        raise StorefrontConfigError(
            f"storefront {storefront.code}: unsupported marketplace {storefront.marketplace!r}"
        )
    return factory(storefront, **kwargs)
