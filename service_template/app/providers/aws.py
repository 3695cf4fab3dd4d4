"""
AWS client construction — one policy for every boto3-backed capability.

Policy (data store, key management, CloudWatch log sink):
    • Region is mandatory.
    • AccessKey AND SecretKey present → explicit-credential session.
      Either missing → ambient credential chain (env, profile, role).
    • LocalTestEndpoint present → endpoint_url points at it over plain HTTP.
      Otherwise the default regional endpoint over TLS.
    • Connect/read timeouts and retry attempts are always bounded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError

from service_template.app.core.errors import CapabilityConstructionError, ConfigurationError
from service_template.app.providers.models import ConnectionTimeouts, ProviderSelection

logger = logging.getLogger(__name__)

EXPLICIT_CREDENTIALS = "explicit"
AMBIENT_CREDENTIALS = "ambient"


def plain_http_endpoint(endpoint: str) -> str:
    """Force a local-test endpoint onto http:// (TLS off)."""
    if "://" not in endpoint:
        return f"http://{endpoint}"
    parts = urlsplit(endpoint)
    if parts.scheme == "https":
        logger.warning("LocalTestEndpoint %s uses https; forcing http", endpoint)
    return urlunsplit(("http",) + tuple(parts[1:]))


@dataclass(frozen=True)
class AwsConnection:
    """Connection parameters for one AWS-backed capability."""
    capability: str
    region: str
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    local_test_endpoint: Optional[str] = None
    timeouts: ConnectionTimeouts = ConnectionTimeouts()

    @classmethod
    def from_selection(cls, selection: ProviderSelection) -> "AwsConnection":
        region = selection.param("RegionEndpoint")
        if region is None:
            raise ConfigurationError(
                f"{selection.capability.value}: RegionEndpoint is required",
                key="RegionEndpoint",
                capability=selection.capability.value,
            )
        return cls(
            capability=selection.capability.value,
            region=region,
            access_key=selection.param("AccessKey"),
            secret_key=selection.param("SecretKey"),
            local_test_endpoint=selection.param("LocalTestEndpoint"),
            timeouts=ConnectionTimeouts.from_view(selection.view),
        )

    @property
    def credential_mode(self) -> str:
        if self.access_key and self.secret_key:
            return EXPLICIT_CREDENTIALS
        return AMBIENT_CREDENTIALS

    @property
    def endpoint_url(self) -> Optional[str]:
        if self.local_test_endpoint:
            return plain_http_endpoint(self.local_test_endpoint)
        return None

    @property
    def use_ssl(self) -> bool:
        return self.local_test_endpoint is None

    def botocore_config(self) -> Config:
        return Config(
            region_name=self.region,
            connect_timeout=self.timeouts.connect_seconds,
            read_timeout=self.timeouts.read_seconds,
            retries={"max_attempts": self.timeouts.max_attempts, "mode": "standard"},
        )


class AwsClientFactory:
    """
    Builds boto3 sessions/clients per ``AwsConnection``.

    ``session_factory`` is injectable so tests can record which credential
    path was taken without touching AWS.
    """

    def __init__(self, session_factory: Callable[..., Any] = boto3.session.Session):
        self._session_factory = session_factory

    def session(self, conn: AwsConnection) -> Any:
        if conn.credential_mode == EXPLICIT_CREDENTIALS:
            return self._session_factory(
                aws_access_key_id=conn.access_key,
                aws_secret_access_key=conn.secret_key,
                region_name=conn.region,
            )
        return self._session_factory(region_name=conn.region)

    def _kwargs(self, conn: AwsConnection) -> dict:
        kwargs: dict = {
            "region_name": conn.region,
            "use_ssl": conn.use_ssl,
            "config": conn.botocore_config(),
        }
        if conn.endpoint_url:
            kwargs["endpoint_url"] = conn.endpoint_url
        return kwargs

    def client(self, service: str, conn: AwsConnection) -> Any:
        try:
            client = self.session(conn).client(service, **self._kwargs(conn))
        except (BotoCoreError, ValueError) as exc:
            raise CapabilityConstructionError(conn.capability, str(exc), region=conn.region) from exc
        logger.info(
            "%s: %s client in %s (%s credentials%s)",
            conn.capability, service, conn.region, conn.credential_mode,
            f", local endpoint {conn.endpoint_url}" if conn.endpoint_url else "",
        )
        return client

    def resource(self, service: str, conn: AwsConnection) -> Any:
        try:
            resource = self.session(conn).resource(service, **self._kwargs(conn))
        except (BotoCoreError, ValueError) as exc:
            raise CapabilityConstructionError(conn.capability, str(exc), region=conn.region) from exc
        logger.info(
            "%s: %s resource in %s (%s credentials%s)",
            conn.capability, service, conn.region, conn.credential_mode,
            f", local endpoint {conn.endpoint_url}" if conn.endpoint_url else "",
        )
        return resource
