"""
Low-level marketplace HTTP client: static credential headers / pacing / retry
  - every request goes through the RetryExecutor (429, 5xx and network errors back off and retry);
  - pacing: optional per-storefront Redis token bucket shared by all workers, process-local interval as fallback;
  - get_json / post_json only; payload shapes are the adapters' business.
"""

from __future__ import annotations
import logging, threading, time
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import redis
import requests

from catalog_hub.integrations.marketplace.errors import (
    MarketplaceAuthError, MarketplaceClientError, MarketplaceNetworkError,
    MarketplacePayloadError, MarketplaceRateLimitError, MarketplaceServerError,
)
from catalog_hub.integrations.marketplace.retry import RetryExecutor
from catalog_hub.infrastructure.ratelimit.redis_token_bucket import RedisTokenBucket

logger = logging.getLogger(__name__)


class MarketplaceHttpClient:
    """Shared by both adapters; one instance per storefront."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        connect_timeout: int = 10,
        read_timeout: int = 60,
        rate_limit_per_min: Optional[int] = None,
        retry: Optional[RetryExecutor] = None,
        session: Optional[requests.Session] = None,
        marketplace: str = "marketplace",
        storefront_code: Optional[str] = None,
        limiter: Optional[RedisTokenBucket] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.rate_limit_per_min = rate_limit_per_min
        self.retry = retry or RetryExecutor()

        self._session = session or requests.Session()
        self._headers = {"Accept": "application/json", "Content-Type": "application/json"}
        self._headers.update(headers or {})
        self._last_request_ts: float = 0.0
        self._pace_lock = threading.Lock()   # fan-out threads share one client
        if limiter is None and storefront_code:
            limiter = RedisTokenBucket.for_storefront(marketplace, storefront_code)
        self._limiter = limiter


    # ---------- Public ----------
    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        resp = self.retry.call(self._send_once, "GET", path, params=params, label=f"GET {path}", **kwargs)
        return self._as_json(resp)

    def post_json(
        self, path: str, json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None, **kwargs,
    ) -> Any:
        resp = self.retry.call(
            self._send_once, "POST", path, json=json_body or {}, params=params, label=f"POST {path}", **kwargs
        )
        return self._as_json(resp)

    def close(self) -> None:
        self._session.close()


    # ---------- Internals ----------
    def _as_json(self, resp: requests.Response) -> Any:
        """Parse JSON or raise MarketplacePayloadError with a truncated body."""
        ctype = (resp.headers.get("Content-Type") or "").lower()
        if "application/json" not in ctype:
            logger.warning("marketplace non-JSON response Content-Type=%s", ctype)
        try:
            return resp.json()
        except ValueError as e:
            text = (resp.text or "")[:500]
            raise MarketplacePayloadError(
                f"non-JSON response (status={resp.status_code}): {text}", status_code=resp.status_code
            ) from e


    def _send_once(self, method: str, path: str, **kwargs) -> requests.Response:
        """One HTTP attempt; maps the status code onto the exception hierarchy."""
        url = urljoin(self.base_url, path.lstrip("/"))
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", None) or {})
        timeout = kwargs.pop("timeout", (self.connect_timeout, self.read_timeout))

        self._respect_rate_limit()

        try:
            resp = self._session.request(method, url, headers=headers, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            raise MarketplaceNetworkError(f"{method} {path} request error: {e}") from e

        self._last_request_ts = time.monotonic()
        status = resp.status_code
        snippet = (resp.text or "")[:300]

        if status in (401, 403):
            raise MarketplaceAuthError(f"{method} {path} -> {status}: {snippet}", status_code=status)
        if status == 429:
            raise MarketplaceRateLimitError(f"{method} {path} -> 429: {snippet}", status_code=status)
        if status >= 500:
            raise MarketplaceServerError(f"{method} {path} -> {status}: {snippet}", status_code=status)
        if 400 <= status < 500:
            raise MarketplaceClientError(f"{method} {path} -> {status} client error: {snippet}", status_code=status)

        logger.debug("marketplace response: %s %s -> %s", method, url, status)
        return resp


    # ---------- Helpers ----------
    def _respect_rate_limit(self) -> None:
        """
        Shared per-storefront bucket first. No token within its wait budget raises
        MarketplaceRateLimitError, so the RetryExecutor backs off exactly as for a real 429.
        Process-local interval pacing when the bucket is off or Redis fails.
        """
        limiter = self._limiter
        if limiter is not None:
            try:
                granted = limiter.acquire()
            except redis.RedisError as e:
                logger.warning("shared rate limit %s disabled after Redis error: %s; using local pacing", limiter.key, e)
                self._limiter = None
            else:
                if not granted:
                    raise MarketplaceRateLimitError(f"shared rate limit {limiter.key} saturated", status_code=429)
                return

        if not self.rate_limit_per_min or self.rate_limit_per_min <= 0:
            return
        interval = 60.0 / float(self.rate_limit_per_min)
        with self._pace_lock:
            now = time.monotonic()
            delta = now - self._last_request_ts
            if delta < interval:
                time.sleep(interval - delta)
            self._last_request_ts = time.monotonic()
