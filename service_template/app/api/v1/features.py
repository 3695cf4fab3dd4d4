"""
FastAPI route: feature flags.

    GET /feature/{featureName}   — true when FeatureManagement:<name> is on
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from service_template.app.api.deps import get_feature_manager
from service_template.app.features.manager import FeatureManager

router = APIRouter(tags=["features"])


@router.get("/feature/{featureName}", response_model=bool)
def is_feature_enabled(
    featureName: str,
    features: FeatureManager = Depends(get_feature_manager),
) -> bool:
    return features.is_enabled(featureName)
