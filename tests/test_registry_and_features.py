"""
Tests for the capability registry and feature flags.

Covers:
    • Register / seal / read-only after seal
    • describe() and shutdown close()
    • Feature flags follow the live configuration snapshot
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from service_template.app.core.configuration import ConfigurationLoader
from service_template.app.features.manager import FeatureManager
from service_template.app.providers.data_store import InMemoryDocumentStore
from service_template.app.providers.models import Capability
from service_template.app.providers.registry import CapabilityRegistry

from tests.helpers import DictSource, FakeCache


def _filled_registry(cache=None, logger=None) -> CapabilityRegistry:
    registry = CapabilityRegistry()
    registry.register(Capability.LOGGER, logger or MagicMock(describe=lambda: {"handlers": []}), "awscloudwatch")
    registry.register(Capability.CACHE, cache or FakeCache(), "redis")
    registry.register(Capability.DATA_STORE, InMemoryDocumentStore(), "memory")
    registry.register(Capability.KEY_MANAGEMENT, MagicMock(describe=lambda: {"tls": True}), "kms")
    return registry


# ═══════════════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════════════

class TestCapabilityRegistry:
    def test_typed_accessors(self):
        cache = FakeCache()
        registry = _filled_registry(cache=cache)
        assert registry.cache is cache
        assert isinstance(registry.data_store, InMemoryDocumentStore)
        assert registry.get(Capability.CACHE) is cache

    def test_register_twice(self):
        registry = _filled_registry()
        with pytest.raises(RuntimeError):
            registry.register(Capability.CACHE, FakeCache(), "redis")

    def test_sealed_is_read_only(self):
        registry = CapabilityRegistry()
        registry.register(Capability.LOGGER, MagicMock(), "seq")
        registry.register(Capability.CACHE, FakeCache(), "redis")
        registry.register(Capability.DATA_STORE, InMemoryDocumentStore(), "memory")
        registry.register(Capability.KEY_MANAGEMENT, MagicMock(), "kms")
        registry.seal()
        assert registry.sealed
        with pytest.raises(RuntimeError):
            registry.register(Capability.CACHE, FakeCache(), "redis")

    def test_seal_requires_every_capability(self):
        registry = CapabilityRegistry()
        registry.register(Capability.CACHE, FakeCache(), "redis")
        with pytest.raises(RuntimeError):
            registry.seal()

    def test_unregistered_lookup(self):
        with pytest.raises(LookupError):
            CapabilityRegistry().cache

    def test_describe(self):
        report = _filled_registry().describe()
        assert report["cache"] == {"provider": "fake", "endpoint": "localhost:6379"}
        assert report["data_store"] == {"provider": "memory"}
        assert report["key_management"] == {"provider": "kms", "tls": True}

    def test_close_releases_cache_and_logger(self):
        cache = FakeCache()
        logger = MagicMock()
        closed = asyncio.run(_filled_registry(cache=cache, logger=logger).close())
        assert cache.closed is True
        logger.close.assert_called_once()
        assert closed == ("cache", "logger")

    def test_abandon_releases_partial_registry(self):
        cache = FakeCache()
        logger = MagicMock()
        registry = CapabilityRegistry()
        registry.register(Capability.LOGGER, logger, "seq")
        registry.register(Capability.CACHE, cache, "redis")
        assert registry.abandon() == ("logger", "cache")
        assert cache.closed is True
        logger.close.assert_called_once()
        assert not registry.sealed


# ═══════════════════════════════════════════════════════════════════════════
# Feature flags
# ═══════════════════════════════════════════════════════════════════════════

class TestFeatureManager:
    def setup_method(self):
        self.remote = DictSource(
            {"FeatureManagement": {"Beta": True, "Legacy": "off"}},
            name="appconfig", required=False, watch=True,
        )
        self.loader = ConfigurationLoader([self.remote])
        self.loader.load()
        self.features = FeatureManager(self.loader)

    def test_enabled(self):
        assert self.features.is_enabled("Beta") is True

    def test_case_insensitive_name(self):
        assert self.features.is_enabled("beta") is True

    def test_disabled_and_absent(self):
        assert self.features.is_enabled("Legacy") is False
        assert self.features.is_enabled("Unknown") is False

    def test_refresh_flips_flag_without_restart(self):
        self.remote.document = {"FeatureManagement": {"Beta": False}}
        self.loader.refresh()
        assert self.features.is_enabled("Beta") is False

    def test_all(self):
        assert self.features.all() == {"beta": True, "legacy": False}
