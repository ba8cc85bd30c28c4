"""
Per-storefront request budget shared by every worker process (API background tasks, celery workers).

    key: {GLOBAL_RL_KEY_PREFIX}:{ENVIRONMENT}:{marketplace}:{storefront_code}

One bucket per storefront: a marketplace throttles per seller account, so two storefronts never
compete for tokens, while two processes syncing the same storefront do.
"""
from __future__ import annotations
import logging, time
from typing import Callable, Optional, Tuple

import redis

from catalog_hub.core.config import settings

logger = logging.getLogger(__name__)


# KEYS[1] bucket hash; ARGV: capacity, tokens per ms, idle ttl (ms).
# Refill uses the Redis server clock so workers on different hosts agree.
# Reply: {granted 0|1, ms until the next token}
TAKE_TOKEN_LUA = """
local cap = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local idle_ttl = tonumber(ARGV[3])

local clock = redis.call('TIME')
local now_ms = tonumber(clock[1]) * 1000 + math.floor(tonumber(clock[2]) / 1000)

local state = redis.call('HMGET', KEYS[1], 'level', 'at')
local level = tonumber(state[1]) or cap
local at = tonumber(state[2]) or now_ms
level = math.min(cap, level + math.max(0, now_ms - at) * rate)

local granted = 0
local wait_ms = 0
if level >= 1 then
    level = level - 1
    granted = 1
else
    wait_ms = math.ceil((1 - level) / rate)
end

redis.call('HSET', KEYS[1], 'level', tostring(level), 'at', now_ms)
redis.call('PEXPIRE', KEYS[1], idle_ttl)
return {granted, wait_ms}
"""


class RedisTokenBucket:

    def __init__(
        self,
        client,
        key: str,
        *,
        max_rpm: int,
        burst: int = 5,
        max_wait_ms: int = 5000,
        idle_ttl_ms: int = 120_000,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.key = key
        self.capacity = max(1, int(burst))
        self.rate_per_ms = max(1, int(max_rpm)) / 60_000.0
        self.max_wait_ms = max(0, int(max_wait_ms))
        self.idle_ttl_ms = int(idle_ttl_ms)
        self.sleep = sleep
        # redis-py Script: EVALSHA with a transparent reload after NOSCRIPT
        self._take = client.register_script(TAKE_TOKEN_LUA)


    @staticmethod
    def bucket_key(marketplace: str, storefront_code: str) -> str:
        return f"{settings.GLOBAL_RL_KEY_PREFIX}:{settings.ENVIRONMENT}:{marketplace}:{storefront_code}"


    @classmethod
    def for_storefront(
        cls, marketplace: str, storefront_code: str, *, client=None, sleep: Callable[[float], None] = time.sleep,
    ) -> Optional["RedisTokenBucket"]:
        """Bucket from GLOBAL_RL_* settings; None when the shared limit is switched off."""
        if not settings.GLOBAL_RL_ENABLED:
            return None
        if client is None:
            if not settings.GLOBAL_RL_REDIS_URL:
                logger.warning("shared rate limit enabled but GLOBAL_RL_REDIS_URL is empty; using local pacing")
                return None
            client = redis.from_url(settings.GLOBAL_RL_REDIS_URL, decode_responses=True)
        return cls(
            client,
            cls.bucket_key(marketplace, storefront_code),
            max_rpm=settings.GLOBAL_RL_MAX_RPM,
            burst=settings.GLOBAL_RL_BURST,
            max_wait_ms=settings.GLOBAL_RL_MAX_WAIT_MS,
            sleep=sleep,
        )


    def try_take(self) -> Tuple[bool, int]:
        """One token now? -> (granted, ms until the next token)."""
        granted, wait_ms = self._take(keys=[self.key], args=[self.capacity, self.rate_per_ms, self.idle_ttl_ms])
        return int(granted) == 1, max(0, int(wait_ms))


    def acquire(self, max_wait_ms: Optional[int] = None) -> bool:
        """
        Wait for a token for at most max_wait_ms (default: the configured budget).
        False means the storefront is saturated; callers treat it like a 429.
        Redis errors propagate.
        """
        budget = self.max_wait_ms if max_wait_ms is None else max(0, int(max_wait_ms))
        waited = 0
        while True:
            granted, wait_ms = self.try_take()
            if granted:
                return True
            wait_ms = max(1, wait_ms)
            if waited + wait_ms > budget:
                logger.info("rate bucket %s: no token within %dms", self.key, budget)
                return False
            self.sleep(wait_ms / 1000.0)
            waited += wait_ms
