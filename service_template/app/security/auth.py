"""
Bearer-token authentication.

``configure_authentication`` fixes the validation rules once at startup;
``BearerTokenValidator`` applies them per request. Route handlers depend on
``require_authenticated`` and receive the decoded claims.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import jwt
from fastapi import Request

from service_template.app.core.configuration import ConfigurationView
from service_template.app.core.errors import UnauthenticatedError
from service_template.app.security.signing_keys import SigningKeyMaterial

logger = logging.getLogger(__name__)

JWT_SECTION = "ModuleConfiguration:Jwt"


@dataclass(frozen=True)
class TokenValidationRules:
    issuer: str
    audience: str
    signing_key: SigningKeyMaterial
    algorithms: Tuple[str, ...]
    validate_issuer_signing_key: bool = field(default=True, init=False)
    validate_issuer: bool = field(default=True, init=False)
    validate_audience: bool = field(default=True, init=False)


def configure_authentication(
    view: ConfigurationView, signing_key: SigningKeyMaterial,
) -> TokenValidationRules:
    """Build the rules. Missing issuer or audience is a ConfigurationError."""
    issuer = view.require(f"{JWT_SECTION}:Issuer")
    audience = view.require(f"{JWT_SECTION}:Audience")

    rules = TokenValidationRules(
        issuer=issuer,
        audience=audience,
        signing_key=signing_key,
        algorithms=signing_key.algorithms,
    )
    logger.info("Bearer authentication: issuer=%s audience=%s", issuer, audience)
    return rules


class BearerTokenValidator:
    def __init__(self, rules: TokenValidationRules):
        self.rules = rules

    def validate(self, token: str) -> Dict[str, Any]:
        """Decoded claims, or UnauthenticatedError for any rejection."""
        try:
            return jwt.decode(
                token,
                self.rules.signing_key.key,
                algorithms=list(self.rules.algorithms),
                audience=self.rules.audience,
                issuer=self.rules.issuer,
                options={
                    "verify_signature": self.rules.validate_issuer_signing_key,
                    "verify_iss": self.rules.validate_issuer,
                    "verify_aud": self.rules.validate_audience,
                    "require": ["exp", "iss", "aud"],
                },
            )
        except jwt.PyJWTError as exc:
            logger.info("Bearer token rejected: %s", exc)
            raise UnauthenticatedError() from exc


def extract_bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError()
    return token.strip()


def require_authenticated(request: Request) -> Dict[str, Any]:
    """FastAPI dependency: 401 unless the request carries a valid bearer token."""
    validator: BearerTokenValidator = request.app.state.token_validator
    return validator.validate(extract_bearer_token(request))
