"""FastAPI dependencies over the assembled service context."""

from __future__ import annotations

from fastapi import Request

from service_template.app.bootstrap import ServiceContext
from service_template.app.features.manager import FeatureManager
from service_template.app.providers.logging_sinks import LoggingService
from service_template.app.repositories.settings import SettingsRepositoryService


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def get_feature_manager(request: Request) -> FeatureManager:
    return get_context(request).features


def get_capability_logger(request: Request) -> LoggingService:
    return get_context(request).registry.logger


def get_settings_repository(request: Request) -> SettingsRepositoryService:
    return SettingsRepositoryService(get_context(request).registry.data_store)
