"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Two families:
    • BootstrapError and subclasses — raised while capabilities are being
      assembled. Always fatal: the process logs and exits non-zero.
    • Per-request outcomes (NotFoundError, UnauthenticatedError,
      RepositoryError) — rendered as JSON responses, never crash the service.

Usage:
    from service_template.app.core.errors import (
        ConfigurationError,
        NotFoundError,
        register_error_handlers,
    )

    raise ConfigurationError("Missing required key", key="ModuleConfiguration:Jwt:Issuer")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class ServiceError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


# ── Startup (fatal) ──

class BootstrapError(ServiceError):
    """Anything that goes wrong before the capability registry is sealed."""

    def __init__(self, message: str, *, error_code: str = "BOOTSTRAP_ERROR", **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code=error_code,
            details=details,
        )


class ConfigurationError(BootstrapError):
    """A required configuration source or key is missing or malformed."""

    def __init__(self, message: str, *, key: Optional[str] = None, **details: Any):
        if key:
            details["key"] = key
        super().__init__(message, error_code="CONFIGURATION_ERROR", **details)


class ProviderSelectionError(BootstrapError):
    """A discriminator names a provider nobody registered."""

    def __init__(self, capability: str, discriminator: Optional[str], known: Any = ()):
        super().__init__(
            f"Unknown {capability} provider '{discriminator}'",
            error_code="PROVIDER_SELECTION_ERROR",
            capability=capability,
            discriminator=discriminator,
            known=sorted(known),
        )


class KeyResolutionError(BootstrapError):
    """The signing key reference could not be fetched or decoded."""

    def __init__(self, reference: str, message: str = ""):
        super().__init__(
            f"Signing key '{_shorten(reference)}' could not be resolved: {message}",
            error_code="KEY_RESOLUTION_ERROR",
            reference=_shorten(reference),
        )


class CapabilityConstructionError(BootstrapError):
    """A provider client failed to initialise (bad region, bad URL...)."""

    def __init__(self, capability: str, message: str = "", **details: Any):
        super().__init__(
            f"Could not construct {capability} capability: {message}",
            error_code="CAPABILITY_CONSTRUCTION_ERROR",
            capability=capability,
            **details,
        )


# ── Per-request (recoverable) ──

class NotFoundError(ServiceError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class UnauthenticatedError(ServiceError):
    """Bearer token missing or rejected (401)."""

    def __init__(self, message: str = "Invalid or missing bearer token"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="UNAUTHENTICATED",
        )


class RepositoryError(ServiceError):
    """Data store call failed (502)."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Repository {operation} failed: {message}",
            status_code=502,
            error_code="REPOSITORY_ERROR",
            details={"operation": operation, **details},
        )


def _shorten(reference: str, limit: int = 48) -> str:
    """Inline PEM/DER references are long; keep error messages readable."""
    reference = reference or ""
    return reference if len(reference) <= limit else reference[:limit] + "..."


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    include_request: bool = True,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and include_request:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=body, headers=headers)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI, *, debug: bool = False) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request, include_request=debug,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if debug else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if debug else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
            include_request=debug,
        )
