"""Storefront adapter interface and the records it exchanges with the sync engine."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from catalog_hub.integrations.marketplace.paginator import Page


# facet names, also used as batch-size keys
FACET_ATTRIBUTES = "attributes"
FACET_IMAGES = "images"
FACET_STOCK = "stock"
FACET_PRICES = "prices"
FACETS = (FACET_ATTRIBUTES, FACET_IMAGES, FACET_STOCK, FACET_PRICES)


@dataclass
class ListingItem:
    """One entry of a storefront's paginated listing."""

    offer_id: str
    primary_id: Optional[str] = None
    sku: Optional[str] = None
    vendor_code: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    price: Optional[Decimal] = None
    old_price: Optional[Decimal] = None
    currency: Optional[str] = None
    images: List[str] = field(default_factory=list)
    cover_image: Optional[str] = None
    category: Optional[str] = None


@dataclass
class FacetRecord:
    """
    Partial record from one facet endpoint.
    keys: candidate join ids, offer id first when the facet reports one (offer id, product id, sku, ...).
    Stock fields: available / reserved. Price fields: price / old_price / currency.
    Attribute fields: name / description / category / images / cover_image / vendor_code.
    Image fields: images.
    """

    keys: Tuple[str, ...]
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PriceUpdate:
    offer_id: str
    price: Decimal
    currency: Optional[str] = None
    old_price: Optional[Decimal] = None


@dataclass
class PriceUpdateResult:
    success: bool
    errors: List[Dict[str, Any]] = field(default_factory=list)
    updated: int = 0


class CatalogAdapter(ABC):
    """
    One marketplace storefront. Implementations issue single HTTP calls (retried by the shared client);
    batching, pagination and merging live in the engine.
    """

    marketplace: str = ""
    listing_page_size: int = 200
    attributes_page_size: int = 200
    batch_sizes: Dict[str, int] = {
        FACET_ATTRIBUTES: 200,
        FACET_IMAGES: 200,
        FACET_STOCK: 200,
        FACET_PRICES: 200,
    }
    price_update_batch_size: int = 1000
    default_currency: Optional[str] = None

    def __init__(self, storefront_code: str) -> None:
        self.storefront_code = storefront_code

    @abstractmethod
    def list_offers(self, cursor: Optional[str], page_size: int) -> Page[ListingItem]:
        ...

    @abstractmethod
    def get_attributes(self, ids: Sequence[str], cursor: Optional[str], page_size: int) -> Page[FacetRecord]:
        ...

    @abstractmethod
    def get_images(self, ids: Sequence[str]) -> List[FacetRecord]:
        ...

    @abstractmethod
    def get_stock(self, ids: Sequence[str]) -> List[FacetRecord]:
        """One record per (offer, warehouse) row; the merger sums them."""
        ...

    @abstractmethod
    def get_prices(self, ids: Sequence[str], cursor: Optional[str]) -> Page[FacetRecord]:
        ...

    @abstractmethod
    def update_prices(self, offers: Sequence[PriceUpdate]) -> PriceUpdateResult:
        ...

    def facet_ids(self, items: Sequence[ListingItem], facet: str) -> List[str]:
        """Which identifier a facet endpoint is queried by; offer id unless the marketplace says otherwise."""
        return [it.offer_id for it in items if it.offer_id]

    def batch_size(self, facet: str) -> int:
        return int(self.batch_sizes.get(facet, 200))

    def close(self) -> None:
        """Release HTTP resources."""
