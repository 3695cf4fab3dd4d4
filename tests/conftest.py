"""
Shared fixtures: an RSA key pair, token minting, a network-free app
configuration and bootstrap settings.
"""

from __future__ import annotations

import copy
import time
from typing import Any, Dict

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from service_template.app.core.config import Settings
from tests.helpers import AUDIENCE, ISSUER


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_pem(rsa_private_key) -> str:
    return rsa_private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture(scope="session")
def public_der(rsa_private_key) -> bytes:
    return rsa_private_key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture
def make_token(rsa_private_key):
    def _make(**overrides: Any) -> str:
        claims = {
            "sub": "user-1",
            "iss": ISSUER,
            "aud": AUDIENCE,
            "exp": int(time.time()) + 300,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, rsa_private_key, algorithm="RS256")

    return _make


@pytest.fixture
def app_config(public_pem) -> Dict[str, Any]:
    """A complete configuration that needs no network to bootstrap."""
    return copy.deepcopy({
        "ModuleConfiguration": {
            "Logging": {
                "Sink": "AwsCloudWatch",
                "AwsCloudWatch": {"RegionEndpoint": "us-east-1", "LogGroupName": ""},
            },
            "ConnectionStrings": {
                "Redis": "localhost:6379",
                "DynamoDb": {"Provider": "memory"},
            },
            "AwsServices": {
                "Kms": {"RegionEndpoint": "us-east-1", "PublicKey": public_pem},
            },
            "Jwt": {"Issuer": ISSUER, "Audience": AUDIENCE},
        },
        "FeatureManagement": {"Beta": True, "Legacy": False},
    })


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        APP_NAME="Service Template Test",
        ENVIRONMENT="Test",
        CONFIG_DIR=str(tmp_path),
        AWS_REGION=None,
        PARAMETER_STORE_PATH=None,
        APPCONFIG_APPLICATION=None,
        APPCONFIG_ENVIRONMENT=None,
        APPCONFIG_PROFILE=None,
    )
