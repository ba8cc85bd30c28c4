from .market_catalog import MarketCatalogAdapter

__all__ = ["MarketCatalogAdapter"]
