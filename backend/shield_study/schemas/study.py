"""Study configuration schemas."""
from pydantic import BaseModel, Field
from typing import Any, Awaitable, Callable, Dict, List, Optional

EligibilityCheck = Callable[[], Awaitable[bool]]


async def always_eligible() -> bool:
    """Default eligibility predicate."""
    return True


async def enrollment_closed() -> bool:
    """Eligibility predicate used when enrollment is switched off."""
    return False


class Variation(BaseModel):
    """A named experimental arm with a relative selection weight."""

    name: str = Field(..., min_length=1, max_length=100)
    weight: float = Field(1.0, ge=0)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {"name": "treatment", "weight": 1}
        }


class AddonMetadata(BaseModel):
    """Add-on data supplied by the host with every lifecycle event."""

    id: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    install_path: Optional[str] = None
    resource_uri: Optional[str] = None
    instance_id: Optional[str] = None


class Ending(BaseModel):
    """What to do when the study ends for a given reason."""

    url: Optional[str] = None


class StudyMetadata(BaseModel):
    """Static study metadata."""

    study_name: str = Field(..., min_length=1)
    endings: Dict[str, Ending] = Field(default_factory=dict)
    is_testing: bool = False


class StudyConfig(BaseModel):
    """
    Static configuration object for one study.

    Loaded once when the coordinator is constructed. `is_eligible` is only
    evaluated at install/upgrade time.
    """

    study: StudyMetadata
    weighted_variations: List[Variation]
    is_eligible: EligibilityCheck = always_eligible
    study_prefs: Dict[str, Any] = Field(default_factory=dict)
    prefs_branch: str = ""

    class Config:
        arbitrary_types_allowed = True
