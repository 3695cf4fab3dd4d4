"""
Startup assembly — configuration → capabilities → authentication.

Runs synchronously, once, before the FastAPI app exists:

    1. Load layered configuration (appsettings, env, Parameter Store, AppConfig)
    2. Validate every provider discriminator (nothing is constructed yet)
    3. Build logger, cache, data store, KMS client; seal the registry
    4. Resolve the signing key and fix the token validation rules

Any failure raises a BootstrapError subclass and the process exits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from service_template.app.core.config import Settings
from service_template.app.core.configuration import (
    AppConfigSource,
    ConfigSource,
    ConfigurationLoader,
    ConfigurationView,
    EnvironmentSource,
    FileSource,
    ParameterStoreSource,
)
from service_template.app.core.errors import ConfigurationError
from service_template.app.core.logging_config import setup_logging
from service_template.app.features.manager import FeatureManager
from service_template.app.providers.aws import AwsClientFactory, AwsConnection
from service_template.app.providers.models import Capability
from service_template.app.providers.registry import CapabilityRegistry
from service_template.app.providers.selector import ProviderSelector, default_selector
from service_template.app.security.auth import (
    BearerTokenValidator,
    TokenValidationRules,
    configure_authentication,
)
from service_template.app.security.signing_keys import (
    PUBLIC_KEY_REFERENCE,
    SigningKeyMaterial,
    SigningKeyResolver,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceContext:
    """Everything request handlers can reach, via ``app.state.context``."""
    settings: Settings
    loader: ConfigurationLoader
    registry: CapabilityRegistry
    signing_key: SigningKeyMaterial
    auth_rules: TokenValidationRules
    token_validator: BearerTokenValidator
    features: FeatureManager

    @property
    def view(self) -> ConfigurationView:
        return self.loader.view


def default_sources(
    settings: Settings, aws: Optional[AwsClientFactory] = None,
) -> List[ConfigSource]:
    """Source order: base file, environment file, env vars, SSM, AppConfig."""
    sources: List[ConfigSource] = [
        FileSource(settings.config_path, required=True),
        FileSource(settings.environment_config_path, required=False),
        EnvironmentSource(),
    ]

    remote_wanted = settings.PARAMETER_STORE_PATH or settings.appconfig_enabled
    if not remote_wanted:
        return sources

    if not settings.AWS_REGION:
        raise ConfigurationError(
            "AWS_REGION is required when Parameter Store or AppConfig is enabled",
            key="AWS_REGION",
        )
    aws = aws or AwsClientFactory()
    conn = AwsConnection(capability="configuration", region=settings.AWS_REGION)

    if settings.PARAMETER_STORE_PATH:
        sources.append(ParameterStoreSource(
            settings.PARAMETER_STORE_PATH, aws.client("ssm", conn), required=True,
        ))
    if settings.appconfig_enabled:
        sources.append(AppConfigSource(
            settings.APPCONFIG_APPLICATION,
            settings.APPCONFIG_ENVIRONMENT,
            settings.APPCONFIG_PROFILE,
            aws.client("appconfigdata", conn),
            required=True,
        ))
    return sources


def build_registry(view: ConfigurationView, selector: ProviderSelector) -> CapabilityRegistry:
    """Validate all discriminators, then construct and register each capability."""
    chosen = selector.validate(view)
    logger.info(
        "Providers: %s",
        ", ".join(f"{cap.value}={name}" for cap, name in chosen.items()),
    )

    registry = CapabilityRegistry()
    try:
        registry.register(Capability.LOGGER, selector.select_logger(view), chosen[Capability.LOGGER])
        registry.register(Capability.CACHE, selector.select_cache(view), chosen[Capability.CACHE])
        registry.register(
            Capability.DATA_STORE, selector.select_data_store(view), chosen[Capability.DATA_STORE],
        )
        registry.register(
            Capability.KEY_MANAGEMENT,
            selector.select_key_management_client(view),
            chosen[Capability.KEY_MANAGEMENT],
        )
        registry.seal()
    except Exception:
        registry.abandon()
        raise
    return registry


def bootstrap(
    settings: Settings,
    *,
    sources: Optional[Sequence[ConfigSource]] = None,
    selector: Optional[ProviderSelector] = None,
) -> ServiceContext:
    """Assemble the service. Raises BootstrapError on anything fatal."""
    setup_logging(settings.LOG_LEVEL, json_output=settings.is_production)
    logger.info("Bootstrapping %s [%s]", settings.APP_NAME, settings.ENVIRONMENT)

    loader = ConfigurationLoader(sources if sources is not None else default_sources(settings))
    view = loader.load()

    registry = build_registry(view, selector or default_selector())

    try:
        resolver = SigningKeyResolver(registry.kms)
        signing_key = resolver.resolve(view.get_str(PUBLIC_KEY_REFERENCE))
        rules = configure_authentication(view, signing_key)
    except Exception:
        registry.abandon()
        raise

    registry.logger.log_information(
        "{Service} started in {Environment}", settings.APP_NAME, settings.ENVIRONMENT,
    )
    return ServiceContext(
        settings=settings,
        loader=loader,
        registry=registry,
        signing_key=signing_key,
        auth_rules=rules,
        token_validator=BearerTokenValidator(rules),
        features=FeatureManager(loader),
    )
