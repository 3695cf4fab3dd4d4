"""
Layered configuration — ordered sources merged into one immutable view.

Sources (merged left → right, later wins):
    • FileSource           — appsettings.json / .toml (required by default)
    • FileSource           — appsettings.{Environment}.json (optional)
    • EnvironmentSource    — process environment, ``__`` as path separator
    • ParameterStoreSource — AWS SSM parameters below a path (watched)
    • AppConfigSource      — AWS AppConfig JSON profile (watched)

Keys are normalised to lower-case dotted paths, so all of these resolve to the
same entry:

    ModuleConfiguration:Logging:Sink
    moduleconfiguration.logging.sink
    ModuleConfiguration__Logging__Sink

Usage:
    view = load_configuration([
        FileSource("appsettings.json"),
        FileSource("appsettings.Development.json", required=False),
        EnvironmentSource(),
    ])
    view.get("ModuleConfiguration:Logging:Sink")      # → "Seq" or None
    view.require("ModuleConfiguration:Jwt:Issuer")    # raises ConfigurationError
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
import tomllib
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from service_template.app.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"__|[:./]")


def normalise_key(key: str) -> str:
    """``A:B__C.D`` → ``a.b.c.d``. Empty segments are dropped."""
    parts = [p for p in _SEPARATORS.split(key.strip()) if p]
    return ".".join(p.lower() for p in parts)


def flatten(document: Any, prefix: str = "") -> Dict[str, str]:
    """Flatten nested dicts/lists into dotted keys with string values."""
    flat: Dict[str, str] = {}
    if isinstance(document, Mapping):
        for key, value in document.items():
            child = normalise_key(str(key))
            path = f"{prefix}.{child}" if prefix else child
            flat.update(flatten(value, path))
    elif isinstance(document, (list, tuple)):
        for index, value in enumerate(document):
            path = f"{prefix}.{index}" if prefix else str(index)
            flat.update(flatten(value, path))
    elif document is None:
        if prefix:
            flat[prefix] = ""
    elif isinstance(document, bool):
        flat[prefix] = "true" if document else "false"
    else:
        flat[prefix] = str(document)
    return flat


# ═══════════════════════════════════════════════════════════════════════════
# Configuration View
# ═══════════════════════════════════════════════════════════════════════════

class ConfigurationView(Mapping[str, str]):
    """
    Immutable, case-insensitive view over merged configuration layers.

    Missing keys resolve to ``None`` through ``get``; only ``require`` raises.
    """

    def __init__(
        self,
        values: Optional[Mapping[str, str]] = None,
        provenance: Optional[Mapping[str, str]] = None,
        *,
        version: int = 1,
    ):
        normalised = {normalise_key(k): v for k, v in (values or {}).items()}
        self._values = MappingProxyType(normalised)
        self._provenance = MappingProxyType(dict(provenance or {}))
        self.version = version

    # ── Mapping protocol ──

    def __getitem__(self, key: str) -> str:
        return self._values[normalise_key(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and normalise_key(key) in self._values

    def __repr__(self) -> str:
        return f"ConfigurationView(keys={len(self)}, version={self.version})"

    # ── Lookups ──

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:  # type: ignore[override]
        return self._values.get(normalise_key(key), default)

    def get_str(self, key: str) -> Optional[str]:
        """Like ``get`` but blank strings count as absent."""
        value = self.get(key)
        if value is None or not value.strip():
            return None
        return value.strip()

    def require(self, key: str) -> str:
        value = self.get_str(key)
        if value is None:
            raise ConfigurationError(f"Missing required configuration key '{key}'", key=key)
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_str(key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    def get_float(self, key: str, default: float) -> float:
        value = self.get_str(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigurationError(f"Key '{key}' is not a number: {value!r}", key=key) from exc

    def get_int(self, key: str, default: int) -> int:
        return int(self.get_float(key, default))

    def section(self, prefix: str) -> "ConfigurationView":
        """Sub-view with ``prefix.`` stripped from every key underneath it."""
        root = normalise_key(prefix) + "."
        values = {k[len(root):]: v for k, v in self._values.items() if k.startswith(root)}
        provenance = {
            k[len(root):]: v for k, v in self._provenance.items() if k.startswith(root)
        }
        return ConfigurationView(values, provenance, version=self.version)

    def source_of(self, key: str) -> Optional[str]:
        """Name of the layer that supplied the winning value for ``key``."""
        return self._provenance.get(normalise_key(key))

    def to_dict(self) -> Dict[str, str]:
        return dict(self._values)


# ═══════════════════════════════════════════════════════════════════════════
# Sources
# ═══════════════════════════════════════════════════════════════════════════

class SourceUnavailable(Exception):
    """Raised by a source when its backing location does not exist."""


class ConfigSource:
    """One configuration layer. Subclasses implement ``read``."""

    kind = "source"

    def __init__(self, location: str, *, required: bool = True, watch: bool = False):
        self.location = location
        self.required = required
        self.watch = watch

    @property
    def name(self) -> str:
        return f"{self.kind}:{self.location}"

    def read(self) -> Dict[str, str]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.location!r}, "
            f"required={self.required}, watch={self.watch})"
        )


class FileSource(ConfigSource):
    """JSON or TOML file on local disk."""

    kind = "file"

    def __init__(self, path: os.PathLike | str, *, required: bool = True, watch: bool = False):
        super().__init__(str(path), required=required, watch=watch)

    def read(self) -> Dict[str, str]:
        path = Path(self.location)
        if not path.is_file():
            raise SourceUnavailable(f"File not found: {path}")

        if path.suffix.lower() == ".toml":
            with open(path, "rb") as f:
                document = tomllib.load(f)
        else:
            with open(path, "r", encoding="utf-8-sig") as f:
                document = json.load(f)
        return flatten(document)


class EnvironmentSource(ConfigSource):
    """Process environment. ``A__B__C=x`` becomes ``a.b.c``."""

    kind = "env"

    def __init__(
        self,
        prefix: str = "",
        *,
        environ: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(prefix or "*", required=False, watch=False)
        self.prefix = prefix
        self._environ = environ

    def read(self) -> Dict[str, str]:
        environ = self._environ if self._environ is not None else os.environ
        values: Dict[str, str] = {}
        for key, value in environ.items():
            if self.prefix:
                if not key.upper().startswith(self.prefix.upper()):
                    continue
                key = key[len(self.prefix):]
            # Single underscores stay part of the segment name.
            path = ".".join(p.lower() for p in key.split("__") if p)
            if path:
                values[path] = value
        return values


class ParameterStoreSource(ConfigSource):
    """
    AWS SSM Parameter Store: every parameter under ``path`` (recursive,
    decrypted). ``/my-app/ModuleConfiguration/Jwt/Issuer`` with path
    ``/my-app/`` becomes ``moduleconfiguration.jwt.issuer``.
    """

    kind = "ssm"

    def __init__(self, path: str, client: Any, *, required: bool = False, watch: bool = True):
        super().__init__(path, required=required, watch=watch)
        self._client = client

    def read(self) -> Dict[str, str]:
        root = "/" + self.location.strip("/")
        values: Dict[str, str] = {}
        try:
            paginator = self._client.get_paginator("get_parameters_by_path")
            pages = paginator.paginate(Path=root, Recursive=True, WithDecryption=True)
            for page in pages:
                for param in page.get("Parameters", []):
                    name = param["Name"]
                    relative = name[len(root):] if name.startswith(root) else name
                    values[normalise_key(relative)] = param.get("Value", "")
        except (ClientError, BotoCoreError) as exc:
            raise SourceUnavailable(f"Parameter Store path {root} unreadable: {exc}") from exc
        return values


class AppConfigSource(ConfigSource):
    """
    AWS AppConfig freeform JSON profile, read through the AppConfig Data API.

    ``get_latest_configuration`` returns an empty body when nothing changed
    since the previous poll; the last payload is kept in that case.
    """

    kind = "appconfig"

    def __init__(
        self,
        application: str,
        environment: str,
        profile: str,
        client: Any,
        *,
        required: bool = False,
        watch: bool = True,
    ):
        super().__init__(f"{application}/{environment}/{profile}", required=required, watch=watch)
        self.application = application
        self.environment = environment
        self.profile = profile
        self._client = client
        self._token: Optional[str] = None
        self._last: Dict[str, str] = {}

    def read(self) -> Dict[str, str]:
        try:
            if self._token is None:
                session = self._client.start_configuration_session(
                    ApplicationIdentifier=self.application,
                    EnvironmentIdentifier=self.environment,
                    ConfigurationProfileIdentifier=self.profile,
                )
                self._token = session["InitialConfigurationToken"]

            response = self._client.get_latest_configuration(ConfigurationToken=self._token)
            self._token = response["NextPollConfigurationToken"]
            body = response["Configuration"].read()
        except (ClientError, BotoCoreError) as exc:
            # Tokens expire after 24h; start a fresh session next time.
            self._token = None
            raise SourceUnavailable(f"AppConfig {self.location} unreadable: {exc}") from exc

        if body:
            try:
                self._last = flatten(json.loads(body))
            except ValueError as exc:
                raise SourceUnavailable(f"AppConfig {self.location} is not JSON: {exc}") from exc
        return dict(self._last)


# ═══════════════════════════════════════════════════════════════════════════
# Loader
# ═══════════════════════════════════════════════════════════════════════════

def _merge(layers: Sequence[Tuple[str, Mapping[str, str]]]) -> Tuple[Dict[str, str], Dict[str, str]]:
    merged: Dict[str, str] = {}
    provenance: Dict[str, str] = {}
    for name, values in layers:
        for key, value in values.items():
            merged[key] = value
            provenance[key] = name
    return merged, provenance


class ConfigurationLoader:
    """
    Owns the source list and the current snapshot.

    ``load`` is the startup path (any required failure is fatal).
    ``refresh`` re-reads watched sources and swaps the snapshot in a single
    assignment; on failure the previous snapshot stays in place.
    """

    def __init__(self, sources: Sequence[ConfigSource]):
        self.sources: List[ConfigSource] = list(sources)
        self._cache: Dict[int, Dict[str, str]] = {}
        self._view: Optional[ConfigurationView] = None
        self._lock = threading.Lock()

    @property
    def view(self) -> ConfigurationView:
        if self._view is None:
            raise RuntimeError("Configuration has not been loaded")
        return self._view

    @property
    def watched(self) -> List[ConfigSource]:
        return [s for s in self.sources if s.watch]

    def _read(self, source: ConfigSource, previous: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """One source's payload. Optional sources that are missing fall back to ``previous``."""
        try:
            values = source.read()
            logger.debug("Config layer %s: %d keys", source.name, len(values))
            return values
        except SourceUnavailable as exc:
            if source.required:
                raise ConfigurationError(
                    f"Required configuration source {source.name} could not be read: {exc}",
                    source=source.name,
                ) from exc
            logger.warning("Optional config layer %s skipped: %s", source.name, exc)
            return previous if previous is not None else {}
        except (OSError, ValueError) as exc:
            # Unparseable content is always fatal at startup, optional or not.
            raise ConfigurationError(
                f"Configuration source {source.name} is malformed: {exc}",
                source=source.name,
            ) from exc

    def _build(self) -> ConfigurationView:
        layers = [(s.name, self._cache.get(i, {})) for i, s in enumerate(self.sources)]
        merged, provenance = _merge(layers)
        version = self._view.version + 1 if self._view is not None else 1
        return ConfigurationView(merged, provenance, version=version)

    def load(self) -> ConfigurationView:
        with self._lock:
            self._cache = {
                index: self._read(source) for index, source in enumerate(self.sources)
            }
            self._view = self._build()
        logger.info(
            "Configuration loaded: %d keys from %d sources",
            len(self._view), len(self.sources),
        )
        return self._view

    def refresh(self) -> ConfigurationView:
        """Re-poll watched sources. Never raises once the first load succeeded."""
        if self._view is None:
            return self.load()

        with self._lock:
            try:
                fresh = {
                    index: self._read(source, self._cache.get(index))
                    for index, source in enumerate(self.sources)
                    if source.watch
                }
            except ConfigurationError as exc:
                logger.warning("Configuration refresh failed, keeping v%d: %s", self._view.version, exc)
                return self._view
            self._cache.update(fresh)
            self._view = self._build()
        logger.debug("Configuration refreshed → v%d", self._view.version)
        return self._view

    async def watch(self, interval_seconds: float) -> None:
        """Refresh forever (until cancelled), off the event loop thread."""
        if not self.watched:
            return
        logger.info(
            "Watching %d config sources every %ss",
            len(self.watched), interval_seconds,
        )
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await asyncio.to_thread(self.refresh)
            except Exception:
                logger.exception("Configuration refresh crashed; will retry")


def load_configuration(sources: Sequence[ConfigSource]) -> ConfigurationView:
    """One-shot load without keeping the loader around."""
    return ConfigurationLoader(sources).load()
