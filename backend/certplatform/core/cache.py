import redis
import redis.asyncio as aioredis
import json
import logging
from typing import Any, Iterator, Optional

from .config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """Redis access shared by the session store and the health checks"""

    def __init__(self, redis_url: Optional[str] = None, default_ttl: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.default_ttl = default_ttl or settings.cache_default_ttl

        self._sync_client = None
        self._async_client = None

    @property
    def sync_client(self) -> redis.Redis:
        if self._sync_client is None:
            self._sync_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True
            )
        return self._sync_client

    async def get_async_client(self) -> aioredis.Redis:
        if self._async_client is None:
            self._async_client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
        return self._async_client

    def _serialize_value(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, default=str)

    def get_raw(self, key: str) -> Optional[str]:
        return self.sync_client.get(key)

    def get(self, key: str) -> Optional[Any]:
        value = self.get_raw(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Cache deserialization error for key '{key}': {e}")
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or self.default_ttl
        return bool(self.sync_client.setex(key, ttl, self._serialize_value(value)))

    def delete(self, key: str) -> bool:
        return bool(self.sync_client.delete(key))

    def scan_keys(self, pattern: str) -> Iterator[str]:
        return self.sync_client.scan_iter(match=pattern)

    def health_check(self) -> bool:
        try:
            return bool(self.sync_client.ping())
        except redis.RedisError:
            return False

    async def ahealth_check(self) -> bool:
        try:
            client = await self.get_async_client()
            return bool(await client.ping())
        except redis.RedisError as e:
            logger.warning(f"Cache health check failed: {e}")
            return False

    async def aclose(self):
        if self._async_client is not None:
            await self._async_client.close()
            self._async_client = None
        if self._sync_client is not None:
            self._sync_client.close()
            self._sync_client = None


cache = CacheManager()
