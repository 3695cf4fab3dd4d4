"""
Redis cache capability — async client with typed helpers.

Provides:
    • Connection-string parsing (URL or StackExchange style)
    • Byte / JSON get-set with TTL and optional instance-name prefix
    • Miss-on-error semantics: a backend failure is logged and reported as a
      miss, never raised into a request handler

Connection strings:
    redis://:secret@cache.internal:6379/2
    cache.internal:6379,password=secret,ssl=True,defaultDatabase=2

Usage:
    cache = registry.cache
    await cache.set_json("settings:theme", {"value": "dark"}, ttl=600)
    cached = await cache.get_json("settings:theme")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from service_template.app.core.errors import CapabilityConstructionError, ConfigurationError
from service_template.app.providers.models import ConnectionTimeouts, ProviderSelection

logger = logging.getLogger(__name__)

CONNECTION_STRING_KEY = "ModuleConfiguration:ConnectionStrings:Redis"
CACHE_SECTION = "ModuleConfiguration:Cache"
DEFAULT_PORT = 6379

_TRUE = ("true", "1", "yes")


@dataclass(frozen=True)
class RedisEndpoint:
    host: str
    port: int = DEFAULT_PORT
    password: Optional[str] = None
    username: Optional[str] = None
    ssl: bool = False
    db: int = 0


def parse_connection_string(value: str) -> RedisEndpoint:
    """Parse a StackExchange.Redis style string; only the first host is used."""
    host = None
    port = DEFAULT_PORT
    options = {}

    for part in (p.strip() for p in value.split(",")):
        if not part:
            continue
        if "=" in part:
            key, _, opt = part.partition("=")
            options[key.strip().lower()] = opt.strip()
        elif host is None:
            host, _, raw_port = part.rpartition(":") if ":" in part else (part, "", "")
            if raw_port:
                try:
                    port = int(raw_port)
                except ValueError as exc:
                    raise ConfigurationError(
                        f"Invalid port in Redis connection string: {raw_port!r}",
                        key=CONNECTION_STRING_KEY,
                    ) from exc

    if not host:
        raise ConfigurationError(
            "Redis connection string has no host", key=CONNECTION_STRING_KEY,
        )

    try:
        db = int(options.get("defaultdatabase", "0"))
    except ValueError as exc:
        raise ConfigurationError(
            "defaultDatabase must be an integer", key=CONNECTION_STRING_KEY,
        ) from exc

    return RedisEndpoint(
        host=host,
        port=port,
        password=options.get("password") or None,
        username=options.get("user") or None,
        ssl=options.get("ssl", "false").lower() in _TRUE,
        db=db,
    )


class DistributedCache:
    """Thin async facade over a redis client."""

    def __init__(self, client: aioredis.Redis, *, instance_name: str = "", description: str = ""):
        self.client = client
        self.instance_name = instance_name
        self.description = description

    def _key(self, key: str) -> str:
        return f"{self.instance_name}{key}"

    async def get(self, key: str) -> Optional[bytes]:
        """Raw value, or None on miss or error."""
        try:
            return await self.client.get(self._key(key))
        except RedisError as e:
            logger.warning("Cache GET error for %s: %s", key, e)
            return None

    async def set(self, key: str, value: Union[bytes, str], ttl: Optional[int] = None) -> bool:
        """Store with optional TTL (seconds)."""
        try:
            await self.client.set(self._key(key), value, ex=ttl)
            return True
        except RedisError as e:
            logger.warning("Cache SET error for %s: %s", key, e)
            return False

    async def remove(self, key: str) -> bool:
        try:
            await self.client.delete(self._key(key))
            return True
        except RedisError as e:
            logger.warning("Cache DELETE error for %s: %s", key, e)
            return False

    async def refresh(self, key: str, ttl: int) -> bool:
        """Slide the expiry of an existing key."""
        try:
            return bool(await self.client.expire(self._key(key), ttl))
        except RedisError as e:
            logger.warning("Cache EXPIRE error for %s: %s", key, e)
            return False

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Cache value for %s is not JSON; treating as miss", key)
            return None

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(key, json.dumps(value, default=str), ttl=ttl)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning("Cache PING failed: %s", e)
            return False

    def describe(self) -> dict:
        return {"provider": "redis", "endpoint": self.description}

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis connection closed")


def build_redis_cache(selection: ProviderSelection) -> DistributedCache:
    """``Cache:Provider = redis`` (the only backend)."""
    connection_string = selection.view.get_str(CONNECTION_STRING_KEY)
    if connection_string is None:
        raise ConfigurationError(
            "Cache connection string is required", key=CONNECTION_STRING_KEY,
        )

    timeouts = ConnectionTimeouts.from_view(selection.view)
    common = {
        "socket_connect_timeout": timeouts.connect_seconds,
        "socket_timeout": timeouts.read_seconds,
    }

    try:
        if "://" in connection_string:
            client = aioredis.Redis.from_url(connection_string, **common)
            kwargs = client.connection_pool.connection_kwargs
            description = f"{kwargs.get('host')}:{kwargs.get('port')}"
        else:
            endpoint = parse_connection_string(connection_string)
            client = aioredis.Redis(
                host=endpoint.host,
                port=endpoint.port,
                db=endpoint.db,
                username=endpoint.username,
                password=endpoint.password,
                ssl=endpoint.ssl,
                **common,
            )
            description = f"{endpoint.host}:{endpoint.port}"
    except ValueError as exc:
        raise CapabilityConstructionError("cache", str(exc)) from exc

    instance_name = selection.parameters.get_str("InstanceName") or ""
    logger.info("Cache: redis at %s", description)
    return DistributedCache(client, instance_name=instance_name, description=description)
