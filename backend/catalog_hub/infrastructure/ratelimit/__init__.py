"""
  Rate limit infrastructure.
     from catalog_hub.infrastructure.ratelimit import RedisTokenBucket
"""
from .redis_token_bucket import RedisTokenBucket

__all__ = ["RedisTokenBucket"]
