"""
Redis cache for discount rule lookups.

Keys pattern: {prefix}:company:{company_id}:{module}:{key}

The cache is optional: when Redis is disabled or unreachable every
operation degrades to a miss and callers fall back to the database.
"""

import logging
import json
from typing import Any, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)


def _connect(redis_url: str) -> Optional[redis.Redis]:
    """Open and ping a client; None when Redis cannot be reached."""
    client = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=3,
        socket_timeout=3,
        retry_on_timeout=True,
        health_check_interval=30
    )
    try:
        client.ping()
    except RedisError as e:
        logger.warning(f"[CACHE] Redis unreachable at {redis_url}: {e}. Falling back to the database.")
        return None
    logger.info(f"[CACHE] Redis connected: {redis_url}")
    return client


class CacheService:
    """Redis-based JSON cache, isolated per company."""

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._prefix = 'discounts'

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Read CACHE_* settings and connect unless the cache is switched off."""
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'discounts')

        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled by CACHE_ENABLED")
            self.client = None
            return

        self.client = _connect(app.config.get('REDIS_URL', 'redis://redis:6379/0'))

    def is_available(self) -> bool:
        return self.client is not None

    def _build_key(self, company_id: str, module: str, key: str) -> str:
        return f"{self._prefix}:company:{company_id}:{module}:{key}"

    def get(self, company_id: str, module: str, key: str) -> Optional[Any]:
        """Get a JSON value from cache; None on miss or error."""
        if not self.is_available():
            return None
        try:
            value = self.client.get(self._build_key(company_id, module, key))
            if value is None:
                return None
            return json.loads(value)
        except (RedisError, json.JSONDecodeError) as e:
            logger.warning(f"[CACHE] Get error: {e}")
            return None

    def set(self, company_id: str, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set a JSON value with TTL."""
        if not self.is_available():
            return False
        try:
            if ttl is None:
                ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
            self.client.setex(self._build_key(company_id, module, key), ttl, json.dumps(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Set error: {e}")
            return False

    def invalidate_module(self, company_id: str, module: str) -> int:
        """Delete every key of a company/module; returns how many were removed."""
        if not self.is_available():
            return 0
        pattern = self._build_key(company_id, module, "*")
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
                logger.info(f"[CACHE] INVALIDATE: {pattern} ({len(keys)} keys)")
            return len(keys)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidate error: {e}")
            return 0


_cache_service: Optional[CacheService] = None

def init_cache(app: Flask) -> None:
    """Initialize cache service singleton."""
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service

def get_cache() -> CacheService:
    """Get cache service instance."""
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
