"""Tests for the status cache services."""

from unittest.mock import MagicMock, patch

import redis

from stride_push.integrations.cache import NullCacheService, RedisCacheService, create_cache_service


def _redis_cache(client) -> RedisCacheService:
    with patch("stride_push.integrations.cache.redis.from_url", return_value=client):
        return RedisCacheService("redis://test:6379/0")


class TestNullCacheService:
    def test_get_json_returns_none(self, null_cache):
        assert null_cache.get_json("notifications:status") is None

    def test_writes_are_ignored(self, null_cache):
        null_cache.set_json("key", {"queue": {}}, 30)
        null_cache.delete("key")
        assert null_cache.get_json("key") is None


class TestRedisCacheService:
    def test_round_trips_json(self):
        client = MagicMock()
        client.get.return_value = '{"status": "ok"}'
        cache = _redis_cache(client)

        cache.set_json("notifications:status", {"status": "ok"}, 30)

        client.setex.assert_called_once_with("notifications:status", 30, '{"status": "ok"}')
        assert cache.get_json("notifications:status") == {"status": "ok"}

    def test_bad_json_is_a_miss(self):
        client = MagicMock()
        client.get.return_value = "not json"
        assert _redis_cache(client).get_json("key") is None

    def test_redis_errors_are_misses(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.setex.side_effect = redis.ConnectionError("down")
        client.delete.side_effect = redis.ConnectionError("down")
        cache = _redis_cache(client)

        assert cache.get_json("key") is None
        cache.set_json("key", {}, 30)
        cache.delete("key")


class TestCreateCacheService:
    def test_falls_back_when_redis_is_down(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")
        with patch("stride_push.integrations.cache.redis.from_url", return_value=client):
            assert isinstance(create_cache_service(), NullCacheService)

    def test_no_url_means_no_cache(self, monkeypatch):
        from stride_push.integrations import cache as cache_module

        monkeypatch.setattr(cache_module.settings, "redis_url", "")
        assert isinstance(create_cache_service(), NullCacheService)
