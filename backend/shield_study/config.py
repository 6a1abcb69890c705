"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Any, Dict, List, Optional
import logging

from shield_study.schemas.study import (
    EligibilityCheck,
    StudyConfig,
    StudyMetadata,
    Variation,
    enrollment_closed,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "ShieldStudy"
    debug: bool = False

    # Study
    study_name: str = "shield-study"
    weighted_variations: List[Dict[str, Any]] = [
        {"name": "control", "weight": 1},
        {"name": "treatment", "weight": 1},
    ]
    prefs_branch: str = "extensions.shield-study."
    expire_after_days: Optional[int] = 14
    endings: Dict[str, Dict[str, Any]] = {}
    is_testing: bool = False
    # False turns every new install away as ineligible
    enrollment_open: bool = True

    # Database
    database_url: str = "sqlite:///./shield_study.db"

    # Redis (preference store)
    redis_url: str = "redis://localhost:6379/0"

    # Telemetry
    telemetry_url: str = "http://localhost:8080"
    telemetry_enabled: bool = True
    telemetry_timeout: float = 5.0  # seconds

    # Host runtime key for the lifecycle endpoints
    host_api_key: str = "host-key-change-in-production"

    # Logging - overridden by the shield.testing.logging.level pref when set
    logging_level: int = logging.WARNING

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def build_study_config(
    settings: Settings,
    is_eligible: Optional[EligibilityCheck] = None
) -> StudyConfig:
    """
    Build the static study configuration handed to the coordinator.

    Args:
        settings: Application settings
        is_eligible: Async eligibility predicate (defaults to always eligible,
            or never eligible when enrollment_open is off)

    Returns:
        StudyConfig loaded once at coordinator construction
    """
    study_prefs: Dict[str, Any] = {}
    if settings.expire_after_days is not None:
        study_prefs["expire_after_days"] = settings.expire_after_days

    if is_eligible is None and not settings.enrollment_open:
        is_eligible = enrollment_closed

    extra: Dict[str, Any] = {}
    if is_eligible is not None:
        extra["is_eligible"] = is_eligible

    return StudyConfig(
        study=StudyMetadata(
            study_name=settings.study_name,
            endings=settings.endings,
            is_testing=settings.is_testing,
        ),
        weighted_variations=[Variation(**v) for v in settings.weighted_variations],
        study_prefs=study_prefs,
        prefs_branch=settings.prefs_branch,
        **extra
    )
