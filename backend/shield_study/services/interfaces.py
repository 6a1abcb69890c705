"""Interfaces for the coordinator's collaborators."""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Sequence, Union

from shield_study.models.lifecycle import EndingReason, LifecycleReason
from shield_study.schemas.study import AddonMetadata, StudyConfig, Variation


class StudyService(Protocol):
    """Owns telemetry, persisted study state and variation-seed determinism."""

    @property
    def is_ending(self) -> bool:
        """True once end_study has been requested."""

    def setup(self, config: StudyConfig, addon: AddonMetadata) -> None:
        """Configure the service for one add-on instance."""

    async def deterministic_variation(self, weighted_variations: Sequence[Variation]) -> Variation:
        """Pick a variation stable for this user."""

    def set_variation(self, variation: Variation) -> None:
        """Record the variation for this run."""

    async def first_seen(self) -> None:
        """Signal that the study was seen for the first time."""

    async def startup(self, reason: LifecycleReason) -> None:
        """Signal study startup; sends the install ping iff reason is INSTALL."""

    async def end_study(self, reason: Union[EndingReason, str]) -> None:
        """Report the ending and uninstall the add-on."""

    def info(self) -> Dict[str, Any]:
        """Serializable snapshot of study state."""

    async def close(self) -> None:
        """Release resources held by the service."""


class Feature(Protocol):
    """The experimental behavior, scoped to one variation."""

    def has_expired(self) -> bool:
        """True when the study has run past its lifetime."""

    async def start(self) -> None:
        """Start the feature."""

    def shutdown(self) -> None:
        """Undo everything start() did."""


class FeatureFactory(Protocol):
    """Builds a Feature; a Feature class satisfies this."""

    def __call__(
        self,
        variation: Variation,
        study_service: StudyService,
        reason: LifecycleReason,
        prefs_config: Dict[str, Any],
        prefs_branch: Any,
        logger: Optional[Any],
    ) -> Feature:
        ...
