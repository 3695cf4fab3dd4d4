"""Settings records — the example repository consumer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from service_template.app.providers.data_store import DocumentStore
from service_template.app.repositories.base import RepositoryService

SETTINGS_TABLE = "Settings"


class Settings(BaseModel):
    id: str = Field(..., min_length=1, max_length=256)
    value: str
    description: Optional[str] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SettingsRepositoryService(RepositoryService[Settings]):
    def __init__(self, store: DocumentStore):
        super().__init__(Settings, store, table=SETTINGS_TABLE, key_attribute="id")
