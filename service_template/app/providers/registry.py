"""
Capability registry — one handle per capability, for the life of the process.

Filled during bootstrap, then sealed. After ``seal()`` nothing can be added
or replaced; a different provider means a restart.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from service_template.app.providers.cache import DistributedCache
from service_template.app.providers.data_store import DocumentStore
from service_template.app.providers.kms import KeyManagementClient
from service_template.app.providers.logging_sinks import LoggingService
from service_template.app.providers.models import Capability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapabilityHandle:
    capability: Capability
    provider: str
    instance: Any


class CapabilityRegistry:
    def __init__(self) -> None:
        self._handles: Dict[Capability, CapabilityHandle] = {}
        self._sealed = False
        self._pending_close: Optional[asyncio.Task] = None

    def register(self, capability: Capability, instance: Any, provider: str) -> CapabilityHandle:
        if self._sealed:
            raise RuntimeError(f"Registry is sealed; cannot register {capability.value}")
        if capability in self._handles:
            raise RuntimeError(f"{capability.value} is already registered")
        handle = CapabilityHandle(capability, provider, instance)
        self._handles[capability] = handle
        logger.info("Registered %s capability (%s)", capability.value, provider)
        return handle

    def seal(self) -> None:
        missing = [c.value for c in Capability if c not in self._handles]
        if missing:
            raise RuntimeError(f"Cannot seal registry; missing {', '.join(missing)}")
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def get(self, capability: Capability) -> Any:
        try:
            return self._handles[capability].instance
        except KeyError:
            raise LookupError(f"{capability.value} capability is not registered") from None

    def handle(self, capability: Capability) -> Optional[CapabilityHandle]:
        return self._handles.get(capability)

    def __iter__(self) -> Iterator[CapabilityHandle]:
        return iter(self._handles.values())

    # ── Typed accessors ──

    @property
    def logger(self) -> LoggingService:
        return self.get(Capability.LOGGER)

    @property
    def cache(self) -> DistributedCache:
        return self.get(Capability.CACHE)

    @property
    def data_store(self) -> DocumentStore:
        return self.get(Capability.DATA_STORE)

    @property
    def kms(self) -> KeyManagementClient:
        return self.get(Capability.KEY_MANAGEMENT)

    def describe(self) -> Dict[str, Dict[str, Any]]:
        """Provider per capability, plus whatever the handle reports about itself."""
        report: Dict[str, Dict[str, Any]] = {}
        for handle in self:
            details: Dict[str, Any] = {"provider": handle.provider}
            describe = getattr(handle.instance, "describe", None)
            if callable(describe):
                details.update(describe())
            report[handle.capability.value] = details
        return report

    async def close(self) -> Tuple[str, ...]:
        """Release network resources. Returns the capabilities that were closed."""
        closed = []
        cache = self.handle(Capability.CACHE)
        if cache is not None and hasattr(cache.instance, "close"):
            await cache.instance.close()
            closed.append(Capability.CACHE.value)
        log = self.handle(Capability.LOGGER)
        if log is not None and hasattr(log.instance, "close"):
            log.instance.close()
            closed.append(Capability.LOGGER.value)
        return tuple(closed)

    def abandon(self) -> Tuple[str, ...]:
        """Synchronous release for a bootstrap that failed part-way."""
        released = []
        log = self.handle(Capability.LOGGER)
        if log is not None and hasattr(log.instance, "close"):
            log.instance.close()
            released.append(Capability.LOGGER.value)
        cache = self.handle(Capability.CACHE)
        if cache is not None and hasattr(cache.instance, "close"):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(cache.instance.close())
            else:
                self._pending_close = loop.create_task(cache.instance.close())
            released.append(Capability.CACHE.value)
        if released:
            logger.info("Released partially assembled capabilities: %s", ", ".join(released))
        return tuple(released)
