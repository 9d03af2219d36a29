"""
Unit tests for the Redis cache wrapper.
"""

import json
from unittest.mock import MagicMock

from flask import Flask
from redis.exceptions import RedisError

from discount_engine.services.cache_service import CacheService


def _service(enabled=True):
    app = Flask(__name__)
    app.config.update(CACHE_ENABLED=False, CACHE_KEY_PREFIX='test')
    service = CacheService(app)
    if enabled:
        service.client = MagicMock()
    return service


class TestCacheService:
    """Tests for cache service."""

    def test_disabled_cache_is_a_miss(self):
        """Test disabled cache is a miss."""
        service = _service(enabled=False)

        assert service.is_available() is False
        assert service.get('company-1', 'discounts', 'pos:all') is None
        assert service.set('company-1', 'discounts', 'pos:all', [1], ttl=60) is False
        assert service.invalidate_module('company-1', 'discounts') == 0

    def test_get_and_set_use_company_keys(self):
        """Test get and set use company keys."""
        service = _service()
        service.client.get.return_value = json.dumps([1, 2])

        assert service.get('company-1', 'discounts', 'pos:all') == [1, 2]
        service.client.get.assert_called_once_with('test:company:company-1:discounts:pos:all')

        assert service.set('company-1', 'discounts', 'pos:all', [3], ttl=30) is True
        service.client.setex.assert_called_once_with('test:company:company-1:discounts:pos:all', 30, '[3]')

    def test_redis_errors_degrade_to_miss(self):
        """Test redis errors degrade to miss."""
        service = _service()
        service.client.get.side_effect = RedisError('down')

        assert service.get('company-1', 'discounts', 'pos:all') is None

    def test_invalidate_module(self):
        """Test invalidate module."""
        service = _service()
        service.client.scan_iter.return_value = iter(['k1', 'k2'])

        assert service.invalidate_module('company-1', 'discounts') == 2
        service.client.scan_iter.assert_called_once_with(match='test:company:company-1:discounts:*', count=100)
        service.client.delete.assert_called_once_with('k1', 'k2')
