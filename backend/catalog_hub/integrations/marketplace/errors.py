"""
   Marketplace integration exceptions.
   Keep HTTP / throttling / server / payload failures apart from business logic so the
   retry executor and the sync engine can classify them by type and status code.
"""
from __future__ import annotations
from typing import Optional


class MarketplaceError(Exception):
    """Base for all marketplace errors; status_code is set when an HTTP response was received."""

    def __init__(self, message: str = "", *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

class MarketplaceAuthError(MarketplaceError):
    """401/403: credentials rejected by the marketplace."""

class MarketplaceClientError(MarketplaceError):
    """Non-retryable 4xx or client-side failure."""

class MarketplaceNetworkError(MarketplaceClientError):
    """Connection/timeout error before any response arrived."""

class MarketplaceServerError(MarketplaceError):
    """5xx from the marketplace."""

class MarketplaceRateLimitError(MarketplaceError):
    """429 Too Many Requests."""

class MarketplacePayloadError(MarketplaceError):
    """Unexpected/invalid response payload shape or content."""


class StorefrontConfigError(Exception):
    """Storefront missing, disabled or without the credentials its marketplace needs."""


class SyncCancelled(Exception):
    """Raised at a cancellation checkpoint (between pages or batches)."""
