"""
models.py — Shared data structures for provider selection.

Defines:
    • Capability          — the pluggable cross-cutting concerns
    • ProviderSelection   — discriminator + parameter bag handed to a factory
    • ConnectionTimeouts  — bounded connect/read/retry settings for clients
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from service_template.app.core.configuration import ConfigurationView

# Configuration roots
ROOT = "ModuleConfiguration"
STARTUP_SECTION = f"{ROOT}:Startup"


class Capability(str, Enum):
    """Capabilities assembled at startup, one handle each."""
    LOGGER         = "logger"
    CACHE          = "cache"
    DATA_STORE     = "data_store"
    KEY_MANAGEMENT = "key_management"


@dataclass(frozen=True)
class ProviderSelection:
    """What a factory receives: which provider, and its scoped parameters."""
    capability: Capability
    discriminator: str
    parameters: ConfigurationView
    view: ConfigurationView

    def param(self, name: str) -> str | None:
        return self.parameters.get_str(name)

    def require(self, name: str) -> str:
        return self.parameters.require(name)


# A factory turns a selection into a ready-to-use capability handle.
ProviderFactory = Callable[[ProviderSelection], Any]


@dataclass(frozen=True)
class ConnectionTimeouts:
    """Upper bounds for every network call made while constructing clients."""
    connect_seconds: float = 5.0
    read_seconds: float = 10.0
    max_attempts: int = 3

    @classmethod
    def from_view(cls, view: ConfigurationView) -> "ConnectionTimeouts":
        startup = view.section(STARTUP_SECTION)
        return cls(
            connect_seconds=startup.get_float("ConnectTimeoutSeconds", cls.connect_seconds),
            read_seconds=startup.get_float("ReadTimeoutSeconds", cls.read_seconds),
            max_attempts=startup.get_int("MaxAttempts", cls.max_attempts),
        )
