"""
Health check aggregation over the capability registry.

Checks:
    • Cache round-trip (Redis PING)
    • Data store, KMS and log sink: constructed and which endpoint they use
    • Configuration snapshot: version and key count

Registry handles are built once and never replaced, so only the cache is
actively probed; the rest report what was assembled at startup.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from service_template.app.core.configuration import ConfigurationLoader
from service_template.app.providers.models import Capability
from service_template.app.providers.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

_start_time = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    service: str = ""
    environment: str = ""
    status: HealthStatus = HealthStatus.HEALTHY
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "environment": self.environment,
            "status": self.status.value,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


async def check_cache(registry: CapabilityRegistry) -> ComponentHealth:
    comp = ComponentHealth(name=Capability.CACHE.value)
    start = time.monotonic()
    cache = registry.cache
    if await cache.ping():
        comp.message = "PING ok"
    else:
        # The service still answers; cache reads degrade to misses.
        comp.status = HealthStatus.DEGRADED
        comp.message = "Cache unreachable"
    comp.details = cache.describe()
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_assembled(registry: CapabilityRegistry, capability: Capability) -> ComponentHealth:
    comp = ComponentHealth(name=capability.value)
    handle = registry.handle(capability)
    if handle is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Not registered"
        return comp
    comp.message = f"Provider {handle.provider}"
    comp.details = registry.describe().get(capability.value, {})
    return comp


def check_configuration(loader: Optional[ConfigurationLoader]) -> ComponentHealth:
    comp = ComponentHealth(name="configuration")
    if loader is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Configuration not loaded"
        return comp
    view = loader.view
    comp.message = f"Snapshot v{view.version}"
    comp.details = {
        "keys": len(view),
        "sources": [s.name for s in loader.sources],
        "watched": [s.name for s in loader.watched],
    }
    return comp


async def run_health_check(
    registry: CapabilityRegistry,
    loader: Optional[ConfigurationLoader] = None,
    *,
    service: str = "",
    environment: str = "",
) -> HealthReport:
    """Run every check and aggregate into a report."""
    report = HealthReport(
        service=service,
        environment=environment,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(check_configuration(loader))
    report.components.append(await check_cache(registry))
    for capability in (Capability.DATA_STORE, Capability.KEY_MANAGEMENT, Capability.LOGGER):
        report.components.append(check_assembled(registry, capability))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    return report
