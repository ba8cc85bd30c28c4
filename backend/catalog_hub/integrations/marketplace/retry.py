"""
Retry executor for a single marketplace call.
  - 429 / 5xx / transient network errors -> retry with base * 2^attempt (1s, 2s, 4s, ...)
  - anything else fails immediately
  - after max_attempts the last error is re-raised unchanged
"""
from __future__ import annotations
import logging, time
from typing import Any, Callable, Optional, TypeVar

from catalog_hub.core.config import settings
from catalog_hub.integrations.marketplace.errors import (
    MarketplaceNetworkError, MarketplaceRateLimitError, MarketplaceServerError,
)
from catalog_hub.utils.backoff import calc_next_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Classify by exception type / status code; message text only when no status code exists."""
    if isinstance(exc, (MarketplaceRateLimitError, MarketplaceServerError, MarketplaceNetworkError)):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    # fallback for APIs that report throttling without a status code
    return "rate limit" in str(exc).lower()


class RetryExecutor:
    """Wraps one external call with bounded exponential backoff."""

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        retry_on: Callable[[BaseException], bool] = is_retryable,
    ) -> None:
        self.max_attempts = settings.SYNC_RETRY_MAX_ATTEMPTS if max_attempts is None else int(max_attempts)
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts!r}")
        self.base_delay = settings.SYNC_RETRY_BASE_DELAY_SEC if base_delay is None else float(base_delay)
        self.max_delay = settings.SYNC_RETRY_MAX_DELAY_SEC if max_delay is None else float(max_delay)
        self.sleep = sleep
        self.retry_on = retry_on


    def delay_for(self, attempt: int) -> float:
        """Delay after the given 0-based failed attempt: base * 2^attempt."""
        return calc_next_delay(attempt + 1, base_seconds=self.base_delay, max_seconds=self.max_delay)


    def call(self, fn: Callable[..., T], *args: Any, label: str = "", **kwargs: Any) -> T:
        attempt = 0
        while True:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if not self.retry_on(e) or attempt + 1 >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "retryable error on %s attempt %d/%d; sleeping %.1fs err=%s",
                    label or getattr(fn, "__name__", "call"), attempt + 1, self.max_attempts, delay, e,
                )
                self.sleep(delay)
                attempt += 1
