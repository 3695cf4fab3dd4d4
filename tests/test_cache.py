"""
Tests for the Redis cache capability.

Covers:
    • Connection-string parsing (StackExchange style)
    • Factory: host/port scenario, URL form, missing connection string
    • DistributedCache behaviour with a mocked async client
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_template.app.core.configuration import ConfigurationView
from service_template.app.core.errors import ConfigurationError
from service_template.app.providers.cache import (
    CACHE_SECTION,
    CONNECTION_STRING_KEY,
    DistributedCache,
    RedisEndpoint,
    build_redis_cache,
    parse_connection_string,
)
from service_template.app.providers.models import Capability, ProviderSelection


def _selection(values: dict) -> ProviderSelection:
    view = ConfigurationView(values)
    return ProviderSelection(Capability.CACHE, "redis", view.section(CACHE_SECTION), view)


def _run(coro):
    return asyncio.run(coro)


# ═══════════════════════════════════════════════════════════════════════════
# Connection strings
# ═══════════════════════════════════════════════════════════════════════════

class TestParseConnectionString:
    def test_host_and_port(self):
        assert parse_connection_string("localhost:6379") == RedisEndpoint(host="localhost", port=6379)

    def test_default_port(self):
        assert parse_connection_string("cache.internal").port == 6379

    def test_options(self):
        endpoint = parse_connection_string(
            "cache.internal:6380, password=secret, ssl=True, defaultDatabase=2, abortConnect=false",
        )
        assert endpoint.host == "cache.internal"
        assert endpoint.port == 6380
        assert endpoint.password == "secret"
        assert endpoint.ssl is True
        assert endpoint.db == 2

    def test_first_host_wins(self):
        assert parse_connection_string("a:1,b:2").host == "a"

    def test_no_host(self):
        with pytest.raises(ConfigurationError):
            parse_connection_string("password=secret")

    def test_bad_port(self):
        with pytest.raises(ConfigurationError):
            parse_connection_string("localhost:redis")


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildRedisCache:
    def test_points_at_configured_host(self):
        cache = build_redis_cache(_selection({CONNECTION_STRING_KEY: "localhost:6379"}))
        kwargs = cache.client.connection_pool.connection_kwargs
        assert kwargs["host"] == "localhost"
        assert kwargs["port"] == 6379
        assert cache.description == "localhost:6379"

    def test_url_form(self):
        cache = build_redis_cache(_selection({CONNECTION_STRING_KEY: "redis://:secret@cache.internal:6380/2"}))
        kwargs = cache.client.connection_pool.connection_kwargs
        assert kwargs["host"] == "cache.internal"
        assert kwargs["port"] == 6380
        assert kwargs["db"] == 2
        assert kwargs["password"] == "secret"

    def test_timeouts_bounded(self):
        cache = build_redis_cache(_selection({
            CONNECTION_STRING_KEY: "localhost:6379",
            "ModuleConfiguration:Startup:ConnectTimeoutSeconds": "2",
        }))
        kwargs = cache.client.connection_pool.connection_kwargs
        assert kwargs["socket_connect_timeout"] == 2.0
        assert kwargs["socket_timeout"] == 10.0

    def test_instance_name(self):
        cache = build_redis_cache(_selection({
            CONNECTION_STRING_KEY: "localhost:6379",
            f"{CACHE_SECTION}:InstanceName": "svc:",
        }))
        assert cache.instance_name == "svc:"

    @pytest.mark.parametrize("values", [{}, {CONNECTION_STRING_KEY: ""}, {CONNECTION_STRING_KEY: "  "}])
    def test_missing_connection_string(self, values):
        with pytest.raises(ConfigurationError) as exc_info:
            build_redis_cache(_selection(values))
        assert exc_info.value.details["key"] == CONNECTION_STRING_KEY


# ═══════════════════════════════════════════════════════════════════════════
# DistributedCache
# ═══════════════════════════════════════════════════════════════════════════

class TestDistributedCache:
    def setup_method(self):
        self.client = AsyncMock()
        self.cache = DistributedCache(self.client, instance_name="svc:", description="localhost:6379")

    def test_get_prefixes_key(self):
        self.client.get.return_value = b"dark"
        assert _run(self.cache.get("theme")) == b"dark"
        self.client.get.assert_awaited_once_with("svc:theme")

    def test_set_with_ttl(self):
        assert _run(self.cache.set("theme", "dark", ttl=60)) is True
        self.client.set.assert_awaited_once_with("svc:theme", "dark", ex=60)

    def test_json_round_trip_through_client(self):
        _run(self.cache.set_json("k", {"a": 1}))
        stored = self.client.set.await_args.args[1]
        self.client.get.return_value = stored
        assert _run(self.cache.get_json("k")) == {"a": 1}

    def test_non_json_is_miss(self):
        self.client.get.return_value = b"not-json{"
        assert _run(self.cache.get_json("k")) is None

    def test_backend_error_is_miss(self):
        self.client.get.side_effect = RedisConnectionError("refused")
        assert _run(self.cache.get("theme")) is None

    def test_backend_error_on_set(self):
        self.client.set.side_effect = RedisConnectionError("refused")
        assert _run(self.cache.set("theme", "dark")) is False

    def test_remove_and_refresh(self):
        self.client.expire.return_value = True
        assert _run(self.cache.remove("theme")) is True
        assert _run(self.cache.refresh("theme", 30)) is True
        self.client.delete.assert_awaited_once_with("svc:theme")
        self.client.expire.assert_awaited_once_with("svc:theme", 30)

    def test_ping_failure(self):
        self.client.ping.side_effect = RedisConnectionError("refused")
        assert _run(self.cache.ping()) is False

    def test_close(self):
        _run(self.cache.close())
        self.client.aclose.assert_awaited_once()

    def test_describe(self):
        assert self.cache.describe() == {"provider": "redis", "endpoint": "localhost:6379"}
