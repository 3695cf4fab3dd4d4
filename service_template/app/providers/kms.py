"""
Key-management capability — boto3 KMS client with the shared AWS policy.

Only ``GetPublicKey`` is used by the service itself (signing-key
resolution); the raw client stays reachable for anything else.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from service_template.app.providers.aws import AwsClientFactory, AwsConnection

logger = logging.getLogger(__name__)

KMS_SECTION = "ModuleConfiguration:AwsServices:Kms"


class KeyManagementClient:
    def __init__(self, client: Any, *, credential_mode: str = ""):
        self.client = client
        self.credential_mode = credential_mode

    @property
    def endpoint_url(self) -> str:
        return self.client.meta.endpoint_url

    @property
    def uses_tls(self) -> bool:
        return self.endpoint_url.startswith("https://")

    def get_public_key(self, key_id: str) -> Dict[str, Any]:
        return self.client.get_public_key(KeyId=key_id)

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": "kms",
            "endpoint": self.endpoint_url,
            "tls": self.uses_tls,
            "credentials": self.credential_mode,
        }


def make_kms_factory(aws: AwsClientFactory):
    """``Kms:Provider = kms`` (the only backend)."""

    def build_kms_client(selection) -> KeyManagementClient:
        conn = AwsConnection.from_selection(selection)
        return KeyManagementClient(aws.client("kms", conn), credential_mode=conn.credential_mode)

    return build_kms_client
