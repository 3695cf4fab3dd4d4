"""Test doubles shared across modules: an in-memory config layer and a fake cache."""

from __future__ import annotations

from typing import Any, Dict, Optional

from service_template.app.core.configuration import ConfigSource, SourceUnavailable, flatten

ISSUER = "https://issuer.test"
AUDIENCE = "service-template"


class DictSource(ConfigSource):
    """Config layer backed by a dict; set ``document`` to None to make it unreadable."""

    kind = "dict"

    def __init__(self, document: Optional[Dict[str, Any]], *, name: str = "test",
                 required: bool = True, watch: bool = False):
        super().__init__(name, required=required, watch=watch)
        self.document = document
        self.reads = 0

    def read(self) -> Dict[str, str]:
        self.reads += 1
        if self.document is None:
            raise SourceUnavailable("gone")
        return flatten(self.document)


class FakeCache:
    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.closed = False

    async def ping(self) -> bool:
        return self.healthy

    def describe(self) -> Dict[str, Any]:
        return {"provider": "fake", "endpoint": "localhost:6379"}

    async def close(self) -> None:
        self.closed = True
