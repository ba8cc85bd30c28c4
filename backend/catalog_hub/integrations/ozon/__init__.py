from .ozon_catalog import OzonCatalogAdapter

__all__ = ["OzonCatalogAdapter"]
