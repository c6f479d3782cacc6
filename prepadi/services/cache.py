"""
Short-lived cache for upstream lookups (external source years and the like).

Backed by Redis when REDIS_URL is reachable, otherwise by a per-process dict
with the same expiry semantics.
"""
import fnmatch
import json
import os
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis
import structlog

logger = structlog.get_logger()

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
KEY_PREFIX = "prepadi:"


class CacheService:
    def __init__(self, redis_url: str = REDIS_URL, prefix: str = KEY_PREFIX):
        self.prefix = prefix
        self._memory: Dict[str, Tuple[float, Any]] = {}
        try:
            self.redis_client = redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=1)
            self.redis_client.ping()
            logger.info("cache_backend_ready", backend="redis")
        except redis.RedisError as e:
            logger.warning("cache_backend_fallback", backend="memory", error=str(e))
            self.redis_client = None

    @property
    def backend(self) -> str:
        return "redis" if self.redis_client is not None else "memory"

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        full_key = self._key(key)
        try:
            if self.redis_client is not None:
                value = self.redis_client.get(full_key)
                return json.loads(value) if value is not None else None
            entry = self._memory.get(full_key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at < time.monotonic():
                del self._memory[full_key]
                return None
            return value
        except (redis.RedisError, ValueError) as e:
            logger.error("cache_get_failed", key=key, error=str(e))
            return None

    def set(self, key: str, value: Any, expire: int = 3600) -> bool:
        full_key = self._key(key)
        try:
            if self.redis_client is not None:
                return bool(self.redis_client.setex(full_key, expire, json.dumps(value)))
            self._memory[full_key] = (time.monotonic() + expire, value)
            return True
        except (redis.RedisError, TypeError) as e:
            logger.error("cache_set_failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        full_key = self._key(key)
        try:
            if self.redis_client is not None:
                return bool(self.redis_client.delete(full_key))
            return self._memory.pop(full_key, None) is not None
        except redis.RedisError as e:
            logger.error("cache_delete_failed", key=key, error=str(e))
            return False

    def get_or_set(self, key: str, loader: Callable[[], Any], expire: int = 3600) -> Any:
        """Cached value for key, calling loader and storing its result on a miss.

        Exceptions from loader propagate and nothing is stored.
        """
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(key, value, expire=expire)
        return value

    def clear_pattern(self, pattern: str) -> int:
        """Drop every key matching a Redis-style glob."""
        full_pattern = self._key(pattern)
        try:
            if self.redis_client is not None:
                keys = list(self.redis_client.scan_iter(match=full_pattern))
                return self.redis_client.delete(*keys) if keys else 0
            doomed = [k for k in self._memory if fnmatch.fnmatchcase(k, full_pattern)]
            for k in doomed:
                del self._memory[k]
            return len(doomed)
        except redis.RedisError as e:
            logger.error("cache_clear_failed", pattern=pattern, error=str(e))
            return 0


cache = CacheService()
