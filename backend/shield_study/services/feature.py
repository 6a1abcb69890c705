"""Base feature for shield studies.

Studies subclass BaseFeature to add their experimental behavior. The base
class applies the variation's prefs on start, removes them on shutdown and
decides expiry from the first-run timestamp kept in the feature's prefs
branch.
"""
import time
from typing import Any, Dict, List, Optional

from shield_study.middleware.logging import get_logger
from shield_study.models.lifecycle import LifecycleReason
from shield_study.schemas.study import Variation
from shield_study.services.prefs import PrefStore

FIRST_RUN_PREF = "first_run_timestamp"
SECONDS_PER_DAY = 86400


class BaseFeature:
    """Feature that sets per-variation prefs and expires after N days."""

    def __init__(
        self,
        variation: Variation,
        study_service: Any,
        reason: LifecycleReason,
        prefs_config: Dict[str, Any],
        prefs_branch: PrefStore,
        logger: Optional[Any] = None,
        clock=time.time
    ):
        self.variation = variation
        self.study_service = study_service
        self.reason = reason
        self.prefs_config = prefs_config or {}
        self.prefs = prefs_branch
        self.logger = logger or get_logger()
        self.clock = clock
        self._applied_prefs: List[str] = []

        if reason is LifecycleReason.INSTALL or self.prefs.get_int_pref(FIRST_RUN_PREF) is None:
            self.prefs.set_int_pref(FIRST_RUN_PREF, int(self.clock()))

    def has_expired(self) -> bool:
        """True when `expire_after_days` have passed since the first run."""
        expire_after_days = self.prefs_config.get("expire_after_days")
        if expire_after_days is None:
            return False

        first_run = self.prefs.get_int_pref(FIRST_RUN_PREF)
        if first_run is None:
            return False

        elapsed = self.clock() - first_run
        return elapsed > expire_after_days * SECONDS_PER_DAY

    async def start(self) -> None:
        """Apply the prefs configured for this variation."""
        variation_prefs = self.prefs_config.get("variations", {}).get(self.variation.name, {})
        for name, value in variation_prefs.items():
            if isinstance(value, int) and not isinstance(value, bool):
                self.prefs.set_int_pref(name, value)
            else:
                self.prefs.set_char_pref(name, str(value))
            self._applied_prefs.append(name)

        self.logger.info(
            "feature_started",
            variation=self.variation.name,
            reason=self.reason.name,
            prefs=sorted(variation_prefs)
        )

    def shutdown(self) -> None:
        """Remove the prefs applied by start()."""
        for name in self._applied_prefs:
            self.prefs.clear_user_pref(name)
        self._applied_prefs = []
        self.logger.info("feature_shutdown", variation=self.variation.name)
