"""
FastAPI route: settings records (bearer token required).

    GET    /api/v1/settings/{key}   — read one record (404 if never written)
    PUT    /api/v1/settings/{key}   — create or replace
    DELETE /api/v1/settings/{key}   — remove (404 if absent)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from service_template.app.api.deps import get_capability_logger, get_settings_repository
from service_template.app.core.errors import NotFoundError
from service_template.app.providers.logging_sinks import LoggingService
from service_template.app.repositories.settings import Settings, SettingsRepositoryService
from service_template.app.security.auth import require_authenticated

router = APIRouter(
    prefix="/api/v1/settings",
    tags=["settings"],
    dependencies=[Depends(require_authenticated)],
)


class SettingsInput(BaseModel):
    value: str = Field(..., examples=["dark"])
    description: Optional[str] = Field(None, examples=["UI colour scheme"])


@router.get("/{key}", response_model=Settings)
def get_setting(
    key: str,
    repo: SettingsRepositoryService = Depends(get_settings_repository),
) -> Settings:
    return repo.require(key)


@router.put("/{key}", response_model=Settings)
def put_setting(
    key: str,
    body: SettingsInput,
    repo: SettingsRepositoryService = Depends(get_settings_repository),
    log: LoggingService = Depends(get_capability_logger),
    claims: Dict[str, Any] = Depends(require_authenticated),
) -> Settings:
    record = repo.put(Settings(id=key, value=body.value, description=body.description))
    log.log_information("Setting {Key} updated by {Subject}", key, claims.get("sub"))
    return record


@router.delete("/{key}", status_code=204)
def delete_setting(
    key: str,
    repo: SettingsRepositoryService = Depends(get_settings_repository),
    log: LoggingService = Depends(get_capability_logger),
) -> Response:
    if not repo.delete(key):
        raise NotFoundError("Settings", id=key)
    log.log_information("Setting {Key} deleted", key)
    return Response(status_code=204)
