"""
Public surface of the generic marketplace layer:
adapter interface + records, retry executor, cursor paginator, batch fan-out, HTTP client, errors.
"""

from .adapter import (
    CatalogAdapter, ListingItem, FacetRecord, PriceUpdate, PriceUpdateResult,
    FACET_ATTRIBUTES, FACET_IMAGES, FACET_STOCK, FACET_PRICES, FACETS,
)
from .errors import (
    MarketplaceError, MarketplaceAuthError, MarketplaceClientError, MarketplaceNetworkError,
    MarketplaceServerError, MarketplaceRateLimitError, MarketplacePayloadError,
    StorefrontConfigError, SyncCancelled,
)
from .fanout import BatchFanOut, BatchProgress, FailedBatch, FanOutResult
from .paginator import CursorPaginator, Page, PaginationResult
from .retry import RetryExecutor, is_retryable


__all__ = [
    "CatalogAdapter", "ListingItem", "FacetRecord", "PriceUpdate", "PriceUpdateResult",
    "FACET_ATTRIBUTES", "FACET_IMAGES", "FACET_STOCK", "FACET_PRICES", "FACETS",
    "MarketplaceError", "MarketplaceAuthError", "MarketplaceClientError", "MarketplaceNetworkError",
    "MarketplaceServerError", "MarketplaceRateLimitError", "MarketplacePayloadError",
    "StorefrontConfigError", "SyncCancelled",
    "BatchFanOut", "BatchProgress", "FailedBatch", "FanOutResult",
    "CursorPaginator", "Page", "PaginationResult",
    "RetryExecutor", "is_retryable",
]
