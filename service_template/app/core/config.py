"""
Process settings — what the service needs before layered configuration exists.

Uses pydantic-settings for type-safe config with .env file support.
Everything else (providers, credentials, JWT, feature flags) lives in the
layered ConfigurationView built by ``core.configuration``.

Usage:
    from service_template.app.core.config import get_settings
    settings = get_settings()
    print(settings.CONFIG_FILE)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Bootstrap settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Service Template"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "Development"  # Development | Staging | Production
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]

    # ── Layered configuration ──
    CONFIG_DIR: str = "."
    CONFIG_FILE: str = "appsettings.json"
    CONFIG_REFRESH_SECONDS: int = 300  # remote layers re-poll every 5 min

    # ── Remote configuration layers (disabled when unset) ──
    AWS_REGION: Optional[str] = None
    PARAMETER_STORE_PATH: Optional[str] = None
    APPCONFIG_APPLICATION: Optional[str] = None
    APPCONFIG_ENVIRONMENT: Optional[str] = None
    APPCONFIG_PROFILE: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def config_path(self) -> Path:
        return Path(self.CONFIG_DIR) / self.CONFIG_FILE

    @property
    def environment_config_path(self) -> Path:
        """``appsettings.json`` → ``appsettings.Development.json``."""
        base = Path(self.CONFIG_FILE)
        return Path(self.CONFIG_DIR) / f"{base.stem}.{self.ENVIRONMENT}{base.suffix}"

    @property
    def appconfig_enabled(self) -> bool:
        return bool(
            self.APPCONFIG_APPLICATION
            and self.APPCONFIG_ENVIRONMENT
            and self.APPCONFIG_PROFILE
        )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance. Pass it explicitly; do not import a global."""
    return Settings()
