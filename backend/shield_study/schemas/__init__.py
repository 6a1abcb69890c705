"""Pydantic schemas for study configuration and lifecycle requests."""
from shield_study.schemas.study import (
    AddonMetadata,
    Ending,
    StudyConfig,
    StudyMetadata,
    Variation,
)

__all__ = ["AddonMetadata", "Ending", "StudyConfig", "StudyMetadata", "Variation"]
