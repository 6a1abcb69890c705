"""Database models and lifecycle enums."""
from shield_study.models.lifecycle import (
    EndingReason,
    LifecycleReason,
    StudyState,
)
from shield_study.models.study import StudyRecord

__all__ = ["EndingReason", "LifecycleReason", "StudyState", "StudyRecord"]
