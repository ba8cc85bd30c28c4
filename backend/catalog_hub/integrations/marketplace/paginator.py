"""
Cursor paginator: walks a cursor / page-token endpoint until
  - the next cursor is empty,
  - the hard page cap is reached (protects against APIs that never stop returning a cursor), or
  - the caller's item cap is reached (the last page is truncated, not dropped).
Pages are fetched strictly in cursor order with a fixed delay in between.
"""
from __future__ import annotations
import logging, time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, TypeVar

from catalog_hub.core.config import settings
from catalog_hub.integrations.marketplace.errors import SyncCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T] = field(default_factory=list)
    next_cursor: Optional[str] = None


@dataclass
class PaginationResult(Generic[T]):
    items: List[T]
    pages: int
    hit_page_cap: bool = False
    hit_item_cap: bool = False


def _cursor_present(cursor: Any) -> bool:
    if cursor is None:
        return False
    return bool(str(cursor).strip())


class CursorPaginator:

    def __init__(
        self,
        max_pages: Optional[int] = None,
        page_delay: Optional[float] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.max_pages = settings.SYNC_MAX_PAGES if max_pages is None else int(max_pages)
        if self.max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages!r}")
        self.page_delay = settings.SYNC_PAGE_DELAY_SEC if page_delay is None else float(page_delay)
        self.sleep = sleep
        self.should_stop = should_stop


    def collect(
        self,
        fetch_page: Callable[[Optional[str]], Page[T]],
        *,
        max_items: Optional[int] = None,
        start_cursor: Optional[str] = None,
        on_page: Optional[Callable[[int, int], None]] = None,
        label: str = "",
    ) -> PaginationResult[T]:
        """Call fetch_page(cursor) repeatedly; on_page(items_so_far, pages_so_far) fires after each page."""
        items: List[T] = []
        if max_items is not None and max_items <= 0:
            return PaginationResult(items=items, pages=0, hit_item_cap=True)

        cursor = start_cursor
        pages = 0
        while True:
            if self.should_stop and self.should_stop():
                raise SyncCancelled(f"pagination cancelled: {label}")

            page = fetch_page(cursor)
            pages += 1

            batch = list(page.items or [])
            if max_items is not None and len(items) + len(batch) >= max_items:
                items.extend(batch[: max_items - len(items)])
                if on_page:
                    on_page(len(items), pages)
                logger.info("pagination %s reached item cap=%d after %d pages", label, max_items, pages)
                return PaginationResult(items=items, pages=pages, hit_item_cap=True)

            items.extend(batch)
            if on_page:
                on_page(len(items), pages)

            if not _cursor_present(page.next_cursor):
                return PaginationResult(items=items, pages=pages)

            if pages >= self.max_pages:
                logger.warning(
                    "pagination %s stopped at page cap=%d with cursor still present; items=%d",
                    label, self.max_pages, len(items),
                )
                return PaginationResult(items=items, pages=pages, hit_page_cap=True)

            cursor = str(page.next_cursor)
            if self.page_delay:
                self.sleep(self.page_delay)
