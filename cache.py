"""
Redis read-through cache for product and user queries.

Every cache key the service uses is built here, so reads and invalidations
always agree on the key scheme:

    product:{id}                              owner/admin product view
    product:details:{id}                      public product details
    products:all:p{page}:l{limit}             unfiltered listing page
    products:seller:{seller_id}:p{page}:l{limit}
    user:{id}                                 public user profile

Redis failures are logged and treated as misses, they never fail a request.
"""

import json
from typing import Any, Callable, Optional, Tuple

import redis
from redis.exceptions import RedisError

from logging_config import get_logger
from settings import settings

PRODUCT_PREFIX = "product:"
PRODUCT_DETAILS_PREFIX = "product:details:"
PRODUCT_LIST_PREFIX = "products:"
USER_PREFIX = "user:"


class ProductCache:
    """Cache-aside wrapper around a Redis client."""

    def __init__(self, client: redis.Redis):
        self.redis = client
        self.logger = get_logger("shopsmart.cache")
        self.product_ttl = settings.PRODUCT_CACHE_TTL
        self.list_ttl = settings.PRODUCT_LIST_CACHE_TTL
        self.user_ttl = settings.USER_CACHE_TTL

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def product_key(product_id: str) -> str:
        return f"{PRODUCT_PREFIX}{product_id}"

    @staticmethod
    def product_details_key(product_id: str) -> str:
        return f"{PRODUCT_DETAILS_PREFIX}{product_id}"

    @staticmethod
    def product_list_key(role: str, user_id: str, page: int, limit: int) -> str:
        scope = f"seller:{user_id}" if role == "seller" else "all"
        return f"{PRODUCT_LIST_PREFIX}{scope}:p{page}:l{limit}"

    @staticmethod
    def user_key(user_id: str) -> str:
        return f"{USER_PREFIX}{user_id}"

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def get_json(self, key: str) -> Optional[Any]:
        try:
            cached = self.redis.get(key)
        except RedisError as e:
            self.logger.warning("Redis GET failed", key=key, error=str(e))
            return None
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except (TypeError, ValueError):
            self.logger.warning("Discarding undecodable cache entry", key=key)
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: int) -> bool:
        try:
            self.redis.set(key, json.dumps(value), ex=ttl)
            return True
        except (RedisError, TypeError, ValueError) as e:
            self.logger.warning("Redis SET failed", key=key, error=str(e))
            return False

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self.redis.delete(*keys))
        except RedisError as e:
            self.logger.warning("Redis DEL failed", keys=list(keys), error=str(e))
            return 0

    def delete_pattern(self, pattern: str) -> int:
        try:
            keys = list(self.redis.scan_iter(match=pattern, count=500))
        except RedisError as e:
            self.logger.warning("Redis SCAN failed", pattern=pattern, error=str(e))
            return 0
        return self.delete(*keys)

    def get_or_load(self, key: str, ttl: int, loader: Callable[[], Optional[Any]]) -> Tuple[Optional[Any], bool]:
        """
        Return ``(value, hit)``.

        On a miss ``loader`` is called and its result cached. A ``None``
        result is returned as-is and never cached.
        """
        cached = self.get_json(key)
        if cached is not None:
            self.logger.debug("Cache hit", key=key)
            return cached, True

        self.logger.debug("Cache miss", key=key)
        value = loader()
        if value is not None:
            self.set_json(key, value, ttl)
        return value, False

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_product_lists(self) -> int:
        removed = self.delete_pattern(f"{PRODUCT_LIST_PREFIX}*")
        self.logger.info("Invalidated product listings", count=removed)
        return removed

    def invalidate_product(self, product_id: str) -> int:
        removed = self.delete(self.product_key(product_id), self.product_details_key(product_id))
        return removed + self.invalidate_product_lists()

    def invalidate_user(self, user_id: str) -> int:
        return self.delete(self.user_key(user_id))

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except RedisError:
            return False


redis_client = redis.Redis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    socket_connect_timeout=2,
    socket_timeout=2,
)
product_cache = ProductCache(redis_client)


def get_cache() -> ProductCache:
    return product_cache
