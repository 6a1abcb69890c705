"""
Study service for shield studies.

Owns the persisted enrollment record, the shield-study telemetry pings and
the per-user deterministic variation pick. The coordinator only talks to it
through the StudyService interface.
"""
import structlog
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union
from sqlalchemy.orm import Session, sessionmaker

from shield_study.models.lifecycle import EndingReason, LifecycleReason
from shield_study.models.study import StudyRecord
from shield_study.schemas.study import AddonMetadata, StudyConfig, Variation
from shield_study.services.prefs import PrefStore
from shield_study.services.telemetry import TelemetryClient
from shield_study.services.variations import hash_fraction, weighted_choice

logger = structlog.get_logger()

SHIELD_STUDY_PING = "shield-study"
PING_VERSION = 3

# Pref holding the stable client identifier used for bucketing
CLIENT_ID_PREF = "toolkit.telemetry.cachedClientID"

# Ending reasons that are also valid study_state values; anything else is
# reported as ended-neutral with its own name attached
KNOWN_ENDING_STATES = {reason.value for reason in EndingReason}


class StudyUtils:
    """Study service backed by SQLAlchemy, Redis prefs and httpx telemetry."""

    def __init__(
        self,
        session_factory: sessionmaker,
        prefs: PrefStore,
        telemetry: TelemetryClient,
        uninstall_hook: Optional[Callable[[], Awaitable[None]]] = None
    ):
        """
        Args:
            session_factory: Factory for database sessions
            prefs: Preference store (client id lives here)
            telemetry: Client used to send study pings
            uninstall_hook: Called after the ending pings so the host can
                remove the add-on; when absent the request is only logged
        """
        self.session_factory = session_factory
        self.prefs = prefs
        self.telemetry = telemetry
        self.uninstall_hook = uninstall_hook

        self.config: Optional[StudyConfig] = None
        self.addon: Optional[AddonMetadata] = None
        self.variation: Optional[Variation] = None
        self._is_ending = False
        self._ending_reason: Optional[str] = None
        self._is_first_run = False

    @property
    def is_ending(self) -> bool:
        return self._is_ending

    @property
    def study_name(self) -> str:
        self._require_setup()
        return self.config.study.study_name

    def setup(self, config: StudyConfig, addon: AddonMetadata) -> None:
        """Configure the service for one add-on instance."""
        self.config = config
        self.addon = addon
        logger.debug(
            "study_utils_setup",
            study_name=config.study.study_name,
            addon_id=addon.id,
            addon_version=addon.version
        )

    def _require_setup(self) -> None:
        if self.config is None or self.addon is None:
            raise StudyNotConfiguredError("setup() must be called before using the study service")

    def _require_variation(self) -> None:
        self._require_setup()
        if self.variation is None:
            raise StudyNotConfiguredError("set_variation() must be called before sending study pings")

    def client_id(self) -> str:
        """Get the stable client id, creating and storing one on first use."""
        client_id = self.prefs.get_char_pref(CLIENT_ID_PREF, "")
        if not client_id:
            client_id = str(uuid.uuid4())
            self.prefs.set_char_pref(CLIENT_ID_PREF, client_id)
        return client_id

    async def deterministic_variation(self, weighted_variations: Sequence[Variation]) -> Variation:
        """
        Deterministically pick a variation for this client.

        Hashes study name + client id, so the same client always lands in the
        same arm of the same study, across restarts and reinstalls.
        """
        self._require_setup()
        fraction = hash_fraction(self.study_name, self.client_id())
        return weighted_choice(weighted_variations, fraction)

    def set_variation(self, variation: Variation) -> None:
        """Record the variation for this run and persist it."""
        self._require_setup()
        self.variation = variation
        self._update_record(
            variation=variation.name,
            addon_id=self.addon.id,
            addon_version=self.addon.version
        )
        logger.debug("study_variation_set", variation=variation.name)

    async def first_seen(self) -> None:
        """Record first sight of the study and send the `enter` ping."""
        self._require_variation()
        self._is_first_run = True
        self._update_record(first_seen_at=datetime.utcnow())
        await self._send_study_state("enter")

    async def startup(self, reason: Union[LifecycleReason, int, str]) -> None:
        """Send the `installed` ping iff this startup is exactly an INSTALL."""
        self._require_variation()
        reason = LifecycleReason.parse(reason)
        if reason is LifecycleReason.INSTALL:
            self._update_record(installed_at=datetime.utcnow())
            await self._send_study_state("installed")
        logger.debug("study_startup", reason=reason.name)

    async def end_study(self, reason: Union[EndingReason, str]) -> None:
        """
        End the study.

        Only the first call does anything: it records the ending reason,
        reports the ending and requests the add-on uninstall. Later calls
        (for example from the uninstall that the first call triggered) are
        ignored.
        """
        reason_value = reason.value if isinstance(reason, EndingReason) else str(reason)

        if self._is_ending:
            logger.info("end_study_ignored", reason=reason_value, ending_reason=self._ending_reason)
            return

        self._require_setup()
        self._is_ending = True
        self._ending_reason = reason_value
        self._record_ending(reason_value)

        ending = self.config.study.endings.get(reason_value)
        if ending is not None and ending.url:
            logger.info("study_ending_url", reason=reason_value, url=ending.url)

        if reason_value in KNOWN_ENDING_STATES:
            await self._send_study_state(reason_value)
        else:
            await self._send_study_state("ended-neutral", ending_name=reason_value)
        await self._send_study_state("exit")

        if self.uninstall_hook is not None:
            await self.uninstall_hook()
        else:
            logger.info("addon_uninstall_requested", addon_id=self.addon.id)

    def info(self) -> Dict[str, Any]:
        """Serializable snapshot of study state."""
        self._require_setup()
        return {
            "study_name": self.study_name,
            "addon": {"id": self.addon.id, "version": self.addon.version},
            "variation": self.variation.model_dump() if self.variation else None,
            "client_id": self.client_id(),
            "is_first_run": self._is_first_run,
            "is_ending": self._is_ending,
            "ending_reason": self._ending_reason,
            "is_testing": self.config.study.is_testing,
        }

    def enrollment(self) -> Optional[StudyRecord]:
        """Load the persisted enrollment record, if any."""
        db: Session = self.session_factory()
        try:
            return self._find_record(db)
        finally:
            db.close()

    async def close(self) -> None:
        """Release the telemetry client."""
        await self.telemetry.close()

    def _find_record(self, db: Session) -> Optional[StudyRecord]:
        return db.query(StudyRecord).filter(
            StudyRecord.study_name == self.study_name,
            StudyRecord.client_id == self.client_id()
        ).first()

    def _update_record(self, **fields: Any) -> None:
        """Create or update this client's enrollment record."""
        db: Session = self.session_factory()
        try:
            record = self._find_record(db)
            if record is None:
                record = StudyRecord(study_name=self.study_name, client_id=self.client_id())
                db.add(record)
            for key, value in fields.items():
                setattr(record, key, value)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _record_ending(self, reason: str) -> None:
        """Persist the ending reason unless one was already recorded."""
        record = self.enrollment()
        if record is not None and record.ending_reason is not None:
            return
        self._update_record(ending_reason=reason, ended_at=datetime.utcnow())

    async def _send_study_state(self, study_state: str, **extra: Any) -> None:
        """Send one shield-study ping carrying `study_state`."""
        data = {"study_state": study_state, **extra}
        payload = {
            "type": SHIELD_STUDY_PING,
            "version": PING_VERSION,
            "study_name": self.study_name,
            "branch": self.variation.name if self.variation else None,
            "addon_version": self.addon.version,
            "client_id": self.client_id(),
            "testing": self.config.study.is_testing,
            "data": data,
        }
        logger.info("study_state_ping", study_state=study_state, branch=payload["branch"])
        await self.telemetry.send(SHIELD_STUDY_PING, payload)


class StudyNotConfiguredError(Exception):
    """Raised when the study service is used before it is set up."""
    pass
