"""
Settings cache for the duplicate engine.

Matching configuration is read on every duplicate check, so resolved values
are kept for a few seconds in Redis, or in process memory when Redis is
disabled or unreachable. Writers invalidate the key; readers never see a
value older than the configured TTL.
"""

import json
import time
import uuid
from typing import Any, Optional

from loguru import logger

from crm.config import settings

KEY_PREFIX = "dedupe:config:"

_redis_client = None
_redis_checked = False


def config_key(tenant_id: uuid.UUID, entity_type: str) -> str:
    """Cache key for one tenant's settings for one entity type."""
    return f"{KEY_PREFIX}{tenant_id}:{entity_type}"


def tenant_prefix(tenant_id: uuid.UUID) -> str:
    return f"{KEY_PREFIX}{tenant_id}:"


class _MemoryStore:
    """Bounded TTL map used when Redis is not available."""

    def __init__(self, max_entries: int = 500):
        self.max_entries = max_entries
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = (value, time.monotonic() + ttl)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def _evict(self) -> None:
        now = time.monotonic()
        self._entries = {k: v for k, v in self._entries.items() if v[1] > now}
        if len(self._entries) >= self.max_entries:
            # Drop the entry closest to expiry
            oldest = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest]


_memory = _MemoryStore()


def get_redis_client():
    """Return the shared Redis client, or None when running memory-only.

    Connection is attempted once per process.
    """
    global _redis_client, _redis_checked

    if not settings.redis.enabled:
        return None
    if _redis_checked:
        return _redis_client

    _redis_checked = True
    try:
        import redis

        client = redis.from_url(settings.redis.url, decode_responses=True)
        client.ping()
    except Exception as e:
        logger.warning(f"Redis unavailable at {settings.redis.url}, caching settings in memory: {e}")
        return None

    _redis_client = client
    logger.info(f"Settings cache using Redis at {settings.redis.url}")
    return _redis_client


def read(key: str) -> Optional[dict]:
    client = get_redis_client()
    if client is not None:
        try:
            raw = client.get(key)
        except Exception as e:
            logger.warning(f"Settings cache read failed for {key}: {e}")
        else:
            return json.loads(raw) if raw else None
    return _memory.get(key)


def write(key: str, value: dict, ttl: int) -> None:
    client = get_redis_client()
    if client is not None:
        try:
            client.setex(key, ttl, json.dumps(value))
            return
        except Exception as e:
            logger.warning(f"Settings cache write failed for {key}: {e}")
    _memory.set(key, value, ttl)


def invalidate(key: str) -> None:
    """Forget a cached value in every backend."""
    client = get_redis_client()
    if client is not None:
        try:
            client.delete(key)
        except Exception as e:
            logger.warning(f"Settings cache invalidation failed for {key}: {e}")
    _memory.delete(key)


def invalidate_prefix(prefix: str = KEY_PREFIX) -> int:
    """Forget every cached value whose key starts with ``prefix``."""
    removed = 0
    client = get_redis_client()
    if client is not None:
        try:
            keys = list(client.scan_iter(match=f"{prefix}*"))
            if keys:
                removed += client.delete(*keys)
        except Exception as e:
            logger.warning(f"Settings cache invalidation failed for {prefix}*: {e}")
    removed += _memory.delete_prefix(prefix)
    return removed
