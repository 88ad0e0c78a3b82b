"""Redis TTL cache for reference data (plans, slabs, gifts, settings).

The cache is optional: when Redis is disabled or unreachable every read goes
to the database. Invalidation after a write is not optional once Redis is
configured; see ``cache_invalidate``.
"""

import json
import logging
import time
from typing import Any

import redis

from .config import settings
from .errors import CacheInvalidationFailed

logger = logging.getLogger("coinledger.cache")

_UNAVAILABLE_BACKOFF_SECONDS = 30.0
_INVALIDATE_ATTEMPTS = 3
_INVALIDATE_BACKOFF_SECONDS = 0.05

_redis_client: redis.Redis | None = None
_unavailable_until = 0.0


def _mark_unavailable(reason: str) -> None:
    global _redis_client, _unavailable_until
    _redis_client = None
    _unavailable_until = time.monotonic() + _UNAVAILABLE_BACKOFF_SECONDS
    logger.warning("Redis unavailable for catalog cache: %s", reason)


def cache_enabled() -> bool:
    return bool(settings.redis_url) and settings.catalog_cache_ttl_seconds > 0


def get_redis_client(*, ignore_backoff: bool = False) -> redis.Redis | None:
    global _redis_client
    if not cache_enabled():
        return None
    if _redis_client is not None:
        return _redis_client
    if not ignore_backoff and time.monotonic() < _unavailable_until:
        return None
    try:
        client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=0.5,
            socket_timeout=0.5,
        )
        client.ping()
    except redis.RedisError as exc:
        _mark_unavailable(str(exc))
        return None
    _redis_client = client
    return client


def cache_get(key: str) -> Any | None:
    client = get_redis_client()
    if client is None:
        return None
    try:
        raw = client.get(key)
    except redis.RedisError as exc:
        _mark_unavailable(str(exc))
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Dropping undecodable cache entry | key=%s", key)
        return None


def cache_set(key: str, value: Any) -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(key, settings.catalog_cache_ttl_seconds, json.dumps(value, default=str))
    except redis.RedisError as exc:
        _mark_unavailable(str(exc))


def cache_invalidate(*keys: str) -> None:
    """Drop keys after a committed write.

    The delete is retried, reconnecting if needed. If the keys still cannot be
    removed the caller gets ``CacheInvalidationFailed``: the write itself is
    already committed, but cached reads may serve the old value until the TTL
    runs out.
    """
    if not keys or not cache_enabled():
        return
    reason = "client unavailable"
    for attempt in range(1, _INVALIDATE_ATTEMPTS + 1):
        client = get_redis_client(ignore_backoff=True)
        if client is not None:
            try:
                client.delete(*keys)
                return
            except redis.RedisError as exc:
                reason = str(exc)
                _mark_unavailable(reason)
        logger.warning("Catalog cache invalidation retry | keys=%s | attempt=%s", ",".join(keys), attempt)
        if attempt < _INVALIDATE_ATTEMPTS:
            time.sleep(_INVALIDATE_BACKOFF_SECONDS * attempt)

    logger.error("Catalog cache invalidation failed | keys=%s | err=%s", ",".join(keys), reason)
    raise CacheInvalidationFailed(details={"keys": list(keys)})
