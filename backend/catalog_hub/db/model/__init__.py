# import every model so Base.metadata (and Alembic) sees them

from .catalog import CanonicalProduct, StorefrontLink
from .storefront import Storefront
from .sync_run import CatalogSyncRun

__all__ = [
    "CanonicalProduct", "StorefrontLink",
    "Storefront",
    "CatalogSyncRun",
]
