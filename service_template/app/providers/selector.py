"""
Provider selection — discriminator string → registered factory.

═══════════════════════════════════════════════════════════════════════════
CAPABILITY TABLE
═══════════════════════════════════════════════════════════════════════════

    Capability       Discriminator key                              Default
    ──────────────   ────────────────────────────────────────────   ─────────────
    logger           ModuleConfiguration:Logging:Sink               awscloudwatch
    cache            ModuleConfiguration:Cache:Provider             redis
    data_store       ModuleConfiguration:ConnectionStrings:
                         DynamoDb:Provider                          dynamodb
    key_management   ModuleConfiguration:AwsServices:Kms:Provider   kms

Unknown discriminators raise ProviderSelectionError before any client is
built. The logger is the one named exception: an unknown sink falls back to
``awscloudwatch`` with a warning, unless
``ModuleConfiguration:Logging:StrictSink`` is true.

Tests swap in fakes with ``selector.register(Capability.CACHE, "redis", fake)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from service_template.app.core.configuration import ConfigurationView
from service_template.app.core.errors import ProviderSelectionError
from service_template.app.providers.aws import AwsClientFactory
from service_template.app.providers.cache import CACHE_SECTION, build_redis_cache
from service_template.app.providers.data_store import (
    DATA_STORE_SECTION,
    build_memory_store,
    make_dynamodb_factory,
)
from service_template.app.providers.kms import KMS_SECTION, make_kms_factory
from service_template.app.providers.logging_sinks import (
    LOGGING_SECTION,
    build_seq_logger,
    make_cloudwatch_logger_factory,
)
from service_template.app.providers.models import Capability, ProviderFactory, ProviderSelection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapabilitySpec:
    """Where a capability's discriminator and parameters live."""
    capability: Capability
    discriminator_key: str
    parameters_section: str
    default: str
    per_provider_section: bool = False   # Logging:Seq, Logging:AwsCloudWatch
    fallback: Optional[str] = None
    strict_key: Optional[str] = None

    def section_for(self, name: str) -> str:
        if self.per_provider_section:
            return f"{self.parameters_section}:{name}"
        return self.parameters_section


SPECS: Dict[Capability, CapabilitySpec] = {
    Capability.LOGGER: CapabilitySpec(
        Capability.LOGGER,
        discriminator_key=f"{LOGGING_SECTION}:Sink",
        parameters_section=LOGGING_SECTION,
        default="awscloudwatch",
        per_provider_section=True,
        fallback="awscloudwatch",
        strict_key=f"{LOGGING_SECTION}:StrictSink",
    ),
    Capability.CACHE: CapabilitySpec(
        Capability.CACHE,
        discriminator_key=f"{CACHE_SECTION}:Provider",
        parameters_section=CACHE_SECTION,
        default="redis",
    ),
    Capability.DATA_STORE: CapabilitySpec(
        Capability.DATA_STORE,
        discriminator_key=f"{DATA_STORE_SECTION}:Provider",
        parameters_section=DATA_STORE_SECTION,
        default="dynamodb",
    ),
    Capability.KEY_MANAGEMENT: CapabilitySpec(
        Capability.KEY_MANAGEMENT,
        discriminator_key=f"{KMS_SECTION}:Provider",
        parameters_section=KMS_SECTION,
        default="kms",
    ),
}


class ProviderSelector:
    """Registered factories per capability, resolved from configuration."""

    def __init__(self, specs: Optional[Dict[Capability, CapabilitySpec]] = None):
        self.specs = dict(specs or SPECS)
        self._factories: Dict[Capability, Dict[str, ProviderFactory]] = {
            capability: {} for capability in self.specs
        }

    # ── Registration ──

    def register(self, capability: Capability, name: str, factory: ProviderFactory) -> None:
        """Add or replace the factory for ``name`` (case-insensitive)."""
        self._factories[capability][name.lower()] = factory

    def known(self, capability: Capability) -> Tuple[str, ...]:
        return tuple(sorted(self._factories[capability]))

    # ── Resolution ──

    def resolve(self, capability: Capability, view: ConfigurationView) -> Tuple[str, ProviderFactory]:
        """Pick the provider name and factory. Constructs nothing."""
        spec = self.specs[capability]
        factories = self._factories[capability]
        raw = view.get_str(spec.discriminator_key)
        name = raw.lower() if raw else spec.default

        if name in factories:
            return name, factories[name]

        strict = spec.strict_key is not None and view.get_bool(spec.strict_key, False)
        if spec.fallback and spec.fallback in factories and not strict:
            logger.warning(
                "Unknown %s provider %r; falling back to %r",
                capability.value, raw, spec.fallback,
            )
            return spec.fallback, factories[spec.fallback]

        raise ProviderSelectionError(capability.value, raw or name, factories.keys())

    def validate(self, view: ConfigurationView) -> Dict[Capability, str]:
        """Resolve every capability up front so a bad one fails before any build."""
        return {capability: self.resolve(capability, view)[0] for capability in self.specs}

    def select(self, capability: Capability, view: ConfigurationView) -> Any:
        name, factory = self.resolve(capability, view)
        spec = self.specs[capability]
        selection = ProviderSelection(
            capability=capability,
            discriminator=name,
            parameters=view.section(spec.section_for(name)),
            view=view,
        )
        logger.debug("Selecting %s provider %r", capability.value, name)
        return factory(selection)

    # ── Per-capability entry points ──

    def select_logger(self, view: ConfigurationView) -> Any:
        return self.select(Capability.LOGGER, view)

    def select_cache(self, view: ConfigurationView) -> Any:
        return self.select(Capability.CACHE, view)

    def select_data_store(self, view: ConfigurationView) -> Any:
        return self.select(Capability.DATA_STORE, view)

    def select_key_management_client(self, view: ConfigurationView) -> Any:
        return self.select(Capability.KEY_MANAGEMENT, view)


def default_selector(aws: Optional[AwsClientFactory] = None) -> ProviderSelector:
    """Selector with every built-in provider registered."""
    aws = aws or AwsClientFactory()
    selector = ProviderSelector()
    selector.register(Capability.LOGGER, "seq", build_seq_logger)
    selector.register(Capability.LOGGER, "awscloudwatch", make_cloudwatch_logger_factory(aws))
    selector.register(Capability.CACHE, "redis", build_redis_cache)
    selector.register(Capability.DATA_STORE, "dynamodb", make_dynamodb_factory(aws))
    selector.register(Capability.DATA_STORE, "memory", build_memory_store)
    selector.register(Capability.KEY_MANAGEMENT, "kms", make_kms_factory(aws))
    return selector
