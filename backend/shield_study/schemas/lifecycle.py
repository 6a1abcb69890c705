"""Lifecycle event request/response schemas."""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, Optional

from shield_study.models.lifecycle import LifecycleReason
from shield_study.schemas.study import AddonMetadata


class AddonEventRequest(BaseModel):
    """A lifecycle event delivered by the host runtime."""

    addon: AddonMetadata
    reason: LifecycleReason = Field(..., description="Host reason code or name")

    @field_validator("reason", mode="before")
    @classmethod
    def reason_must_be_known(cls, v):
        """Reject reason codes the host enumeration does not define."""
        return LifecycleReason.parse(v)

    class Config:
        json_schema_extra = {
            "example": {
                "addon": {"id": "shield-study@example.com", "version": "1.0.0"},
                "reason": "ADDON_INSTALL"
            }
        }


class LifecycleEventResponse(BaseModel):
    """Coordinator state after handling an event."""

    event: str
    reason: str
    state: str
    ending_reason: Optional[str] = None
    variation: Optional[str] = None
    uninstall_requested: bool = False


class StudyInfoResponse(BaseModel):
    """Study and coordinator snapshot."""

    coordinator: Dict[str, Any]
    study: Optional[Dict[str, Any]] = None
