"""
Feature flags from the live configuration snapshot.

Flags live under ``FeatureManagement:<name>``. Every lookup reads the
loader's current view, so a Parameter Store or AppConfig refresh flips a
flag without a restart.
"""

from __future__ import annotations

import logging
from typing import Dict

from service_template.app.core.configuration import ConfigurationLoader

logger = logging.getLogger(__name__)

FEATURE_SECTION = "FeatureManagement"


class FeatureManager:
    def __init__(self, loader: ConfigurationLoader):
        self.loader = loader

    def is_enabled(self, name: str) -> bool:
        enabled = self.loader.view.get_bool(f"{FEATURE_SECTION}:{name}", False)
        logger.debug("Feature %s → %s", name, enabled)
        return enabled

    def all(self) -> Dict[str, bool]:
        section = self.loader.view.section(FEATURE_SECTION)
        return {name: section.get_bool(name, False) for name in section}
