"""
Lifecycle coordinator for shield studies.

Maps host lifecycle events (install, startup, shutdown, uninstall) onto the
study state machine:

    not_started --startup--> active --uninstall/disable--> ending --> ended
         |                                                   ^
         +-------- ineligible / expired --------------------+

`ending` and `ended` are terminal. The ending reason is recorded once, by
whichever transition reaches `ending` first.

Uninstalling an add-on produces two shutdown notifications: one caused by
the user's action and one caused by the study service's own uninstall after
end_study. The study service's ending flag tells them apart.
"""
from typing import Any, Dict, Optional, Union

from shield_study.middleware.logging import get_logger, study_logger_name
from shield_study.models.lifecycle import (
    INSTALL_REASONS,
    TEARDOWN_REASONS,
    TERMINAL_STATES,
    EndingReason,
    LifecycleReason,
    StudyState,
)
from shield_study.schemas.study import AddonMetadata, StudyConfig, Variation
from shield_study.services.interfaces import Feature, FeatureFactory, StudyService
from shield_study.services.prefs import PrefStore
from shield_study.services.variations import VARIATION_OVERRIDE_PREF, VariationResolver

Reason = Union[LifecycleReason, int, str]


class LifecycleCoordinator:
    """Drives one add-on instance's study through its lifecycle."""

    def __init__(
        self,
        config: StudyConfig,
        study_service: StudyService,
        feature_factory: FeatureFactory,
        prefs: PrefStore,
        resolver: Optional[VariationResolver] = None,
        logger: Optional[Any] = None
    ):
        self.config = config
        self.study = study_service
        self.feature_factory = feature_factory
        self.prefs = prefs
        self.resolver = resolver or VariationResolver()
        self.logger = logger or get_logger(study_logger_name(config.study.study_name))

        self.state = StudyState.NOT_STARTED
        self.ending_reason: Optional[EndingReason] = None
        self.variation: Optional[Variation] = None
        self.feature: Optional[Feature] = None
        self._first_seen_sent = False
        self._study_ready = False
        self._released = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    async def startup(self, addon: AddonMetadata, reason: Reason) -> StudyState:
        """
        Host startup entry point.

        Resolves the variation, runs the install/upgrade gate when the
        reason calls for it, then the generic startup.

        Raises:
            ConfigurationError: If the variation override names no variation
        """
        reason = LifecycleReason.parse(reason)
        self.logger.debug("lifecycle_startup", reason=reason.name, addon_id=addon.id)

        if self.is_terminal:
            self.logger.info("startup_ignored", reason=reason.name, state=self.state.value)
            return self.state

        self.study.setup(self.config, addon)
        self._study_ready = True
        await self._resolve_variation()

        if reason in INSTALL_REASONS:
            proceed = await self.on_install_or_upgrade(reason)
            if not proceed:
                return self.state

        await self.generic_startup(reason)
        return self.state

    async def on_install_or_upgrade(self, reason: Reason) -> bool:
        """
        Install/upgrade gate: first-seen signal and eligibility check.

        Returns:
            True if startup should continue, False if the study ended here
        """
        reason = LifecycleReason.parse(reason)
        if reason not in INSTALL_REASONS:
            return not self.is_terminal
        if self.is_terminal:
            return False

        if not self._first_seen_sent:
            self._first_seen_sent = True
            await self.study.first_seen()

        try:
            eligible = await self.config.is_eligible()
        except Exception as e:
            self.logger.error(
                "eligibility_check_failed",
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        if not eligible:
            self.logger.info("study_ineligible", reason=reason.name)
            await self._end(EndingReason.INELIGIBLE)
            return False

        return True

    async def generic_startup(self, reason: Reason) -> StudyState:
        """Notify the study service, build the feature, then start or expire it."""
        reason = LifecycleReason.parse(reason)
        if self.is_terminal:
            self.logger.info("startup_ignored", reason=reason.name, state=self.state.value)
            return self.state

        if self.variation is None:
            await self._resolve_variation()

        await self.study.startup(reason)

        if self.feature is not None:
            # Restart after an ordinary close; the previous handle is ours to stop
            previous, self.feature = self.feature, None
            previous.shutdown()

        self.feature = self.feature_factory(
            self.variation,
            self.study,
            reason,
            self.config.study_prefs,
            self.prefs.branch(self.config.prefs_branch),
            self.logger,
        )
        if self.feature.has_expired():
            self.logger.info("study_expired", variation=self.variation.name)
            await self._end(EndingReason.EXPIRED)
            return self.state

        await self.feature.start()
        self.state = StudyState.ACTIVE
        self.logger.debug("study_active", info=self.study.info())
        return self.state

    async def shutdown(self, addon: AddonMetadata, reason: Reason) -> StudyState:
        """
        Host shutdown entry point.

        Only UNINSTALL and DISABLE tear the study down; an ordinary browser
        close leaves it active. The first teardown request, when the study
        service is not already ending, came from the user.
        """
        reason = LifecycleReason.parse(reason)
        self.logger.debug("lifecycle_shutdown", reason=reason.name, addon_id=addon.id)

        if reason not in TEARDOWN_REASONS:
            self.logger.debug("shutdown_ignored", reason=reason.name, state=self.state.value)
            return self.state

        try:
            if not self.study.is_ending:
                self.logger.info("user_requested_shutdown", reason=reason.name)
                self._ensure_study_setup(addon)
                await self._end(EndingReason.USER_DISABLE)
        finally:
            await self._cleanup()
        return self.state

    def on_install(self, addon: AddonMetadata, reason: Reason) -> None:
        """Host install notification; observation only."""
        self.logger.debug("lifecycle_install", reason=LifecycleReason.parse(reason).name, addon_id=addon.id)

    def on_uninstall(self, addon: AddonMetadata, reason: Reason) -> None:
        """Host uninstall notification; observation only."""
        self.logger.debug("lifecycle_uninstall", reason=LifecycleReason.parse(reason).name, addon_id=addon.id)

    def snapshot(self) -> Dict[str, Any]:
        """Coordinator state for observability."""
        return {
            "state": self.state.value,
            "ending_reason": self.ending_reason.value if self.ending_reason else None,
            "variation": self.variation.name if self.variation else None,
            "has_feature": self.feature is not None,
            # The host should uninstall the add-on, then send shutdown(UNINSTALL)
            "uninstall_requested": self.state is StudyState.ENDING,
        }

    def _ensure_study_setup(self, addon: AddonMetadata) -> None:
        """Set up the study service when teardown arrives before any startup."""
        if not self._study_ready:
            self.study.setup(self.config, addon)
            self._study_ready = True

    async def _resolve_variation(self) -> Variation:
        override = self.prefs.get_char_pref(VARIATION_OVERRIDE_PREF, "")
        self.variation = await self.resolver.resolve_for_study(
            self.config.weighted_variations,
            self.study,
            override_name=override
        )
        self.study.set_variation(self.variation)
        self.logger.debug("variation_resolved", variation=self.variation.name, forced=bool(override))
        return self.variation

    async def _end(self, reason: EndingReason) -> None:
        """Enter `ending` and ask the study service to end the study, once."""
        if self.is_terminal:
            self.logger.info(
                "ending_ignored",
                reason=reason.value,
                ending_reason=self.ending_reason.value if self.ending_reason else None
            )
            return

        self.state = StudyState.ENDING
        self.ending_reason = reason
        self.logger.info("study_ending", reason=reason.value)
        await self.study.end_study(reason)

    async def _cleanup(self) -> None:
        """Stop the feature and release collaborators; safe to repeat."""
        if self.feature is not None:
            feature, self.feature = self.feature, None
            feature.shutdown()

        if not self._released:
            self._released = True
            await self.study.close()

        self.state = StudyState.ENDED
        self.logger.debug("study_cleaned_up", ending_reason=self.ending_reason.value if self.ending_reason else None)
