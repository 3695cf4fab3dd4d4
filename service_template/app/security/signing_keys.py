"""
Signing-key resolution — turn a configured key reference into a parsed
public key that PyJWT can verify against.

Reference forms:
    • PEM text                  -----BEGIN PUBLIC KEY----- ...
    • base64 DER SPKI           MIIBIjANBgkqhkiG9w0BAQEFAAOCAQ8AMIIBCgKCAQEA...
    • KMS key id / ARN / alias  alias/token-signing  → KMS GetPublicKey
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from service_template.app.core.errors import KeyResolutionError
from service_template.app.providers.kms import KeyManagementClient

logger = logging.getLogger(__name__)

PUBLIC_KEY_REFERENCE = "ModuleConfiguration:AwsServices:Kms:PublicKey"

# KMS SigningAlgorithms → JWT "alg"
KMS_ALGORITHMS = {
    "RSASSA_PKCS1_V1_5_SHA_256": "RS256",
    "RSASSA_PKCS1_V1_5_SHA_384": "RS384",
    "RSASSA_PKCS1_V1_5_SHA_512": "RS512",
    "RSASSA_PSS_SHA_256": "PS256",
    "RSASSA_PSS_SHA_384": "PS384",
    "RSASSA_PSS_SHA_512": "PS512",
    "ECDSA_SHA_256": "ES256",
    "ECDSA_SHA_384": "ES384",
    "ECDSA_SHA_512": "ES512",
}

_KMS_REFERENCE = re.compile(
    r"^(arn:aws[\w-]*:kms:|alias/|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$|mrk-)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class SigningKeyMaterial:
    key: Any                    # RSAPublicKey / EllipticCurvePublicKey
    pem: str
    algorithms: Tuple[str, ...]
    origin: str                 # "inline" or "kms:<key-id>"


def default_algorithms(key: Any) -> Tuple[str, ...]:
    """Algorithms a bare public key can verify, when nothing narrower is known."""
    if isinstance(key, rsa.RSAPublicKey):
        return ("RS256", "RS384", "RS512", "PS256", "PS384", "PS512")
    if isinstance(key, ec.EllipticCurvePublicKey):
        return {
            "secp256r1": ("ES256",),
            "secp384r1": ("ES384",),
            "secp521r1": ("ES512",),
        }.get(key.curve.name, ())
    return ()


def _to_pem(key: Any) -> str:
    return key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


class SigningKeyResolver:
    def __init__(self, kms: Optional[KeyManagementClient] = None):
        self.kms = kms

    def resolve(self, reference: Optional[str]) -> SigningKeyMaterial:
        if reference is None or not reference.strip():
            raise KeyResolutionError("", "no signing key reference configured")
        reference = reference.strip()

        if reference.startswith("-----BEGIN"):
            material = self._from_pem(reference)
        elif _KMS_REFERENCE.match(reference):
            material = self._from_kms(reference)
        else:
            material = self._from_der(reference)

        if not material.algorithms:
            raise KeyResolutionError(reference, "key type supports no JWT signing algorithm")
        logger.info(
            "Signing key resolved from %s (%s)",
            material.origin, ", ".join(material.algorithms),
        )
        return material

    # ── Inline forms ──

    def _from_pem(self, reference: str) -> SigningKeyMaterial:
        try:
            key = serialization.load_pem_public_key(reference.encode("ascii"))
        except (ValueError, TypeError, UnicodeEncodeError) as exc:
            raise KeyResolutionError(reference, f"invalid PEM public key ({exc})") from exc
        return SigningKeyMaterial(key, _to_pem(key), default_algorithms(key), "inline")

    def _from_der(self, reference: str) -> SigningKeyMaterial:
        try:
            der = base64.b64decode(reference, validate=True)
            key = serialization.load_der_public_key(der)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise KeyResolutionError(reference, f"not a PEM, DER or KMS key reference ({exc})") from exc
        return SigningKeyMaterial(key, _to_pem(key), default_algorithms(key), "inline")

    # ── KMS ──

    def _from_kms(self, key_id: str) -> SigningKeyMaterial:
        if self.kms is None:
            raise KeyResolutionError(key_id, "KMS reference given but no KMS client is available")
        try:
            response = self.kms.get_public_key(key_id)
        except (ClientError, BotoCoreError) as exc:
            raise KeyResolutionError(key_id, f"KMS GetPublicKey failed ({exc})") from exc

        usage = response.get("KeyUsage")
        if usage != "SIGN_VERIFY":
            raise KeyResolutionError(key_id, f"key usage is {usage}, expected SIGN_VERIFY")

        try:
            key = serialization.load_der_public_key(response["PublicKey"])
        except (KeyError, ValueError, TypeError) as exc:
            raise KeyResolutionError(key_id, f"KMS returned an unreadable public key ({exc})") from exc

        algorithms = tuple(
            KMS_ALGORITHMS[a] for a in response.get("SigningAlgorithms", []) if a in KMS_ALGORITHMS
        ) or default_algorithms(key)
        return SigningKeyMaterial(
            key, _to_pem(key), algorithms, f"kms:{response.get('KeyId', key_id)}",
        )
