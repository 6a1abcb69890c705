"""Lifecycle enums shared by the coordinator and the study service."""
from typing import Union
import enum


class LifecycleReason(enum.IntEnum):
    """Reason codes supplied by the host runtime with every lifecycle event."""
    STARTUP = 1
    SHUTDOWN = 2
    ENABLE = 3
    DISABLE = 4
    INSTALL = 5
    UNINSTALL = 6
    UPGRADE = 7
    DOWNGRADE = 8

    @classmethod
    def parse(cls, value: Union[int, str, "LifecycleReason"]) -> "LifecycleReason":
        """
        Map a host reason code onto a LifecycleReason.

        Accepts the integer code, the bare name ("INSTALL") or the host's
        prefixed names ("ADDON_INSTALL", "APP_STARTUP").

        Raises:
            ValueError: If the code is not a known reason
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Unknown lifecycle reason: {value!r}")
        if isinstance(value, int):
            return cls(value)

        name = str(value).strip().upper()
        if name.isdigit():
            return cls(int(name))
        for prefix in ("ADDON_", "APP_"):
            if name.startswith(prefix):
                name = name[len(prefix):]
                break
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown lifecycle reason: {value!r}") from None


# Reasons that (re)initialize a study and trigger the eligibility gate
INSTALL_REASONS = frozenset({LifecycleReason.INSTALL, LifecycleReason.UPGRADE})

# Shutdown reasons that tear the study down; anything else is an ordinary close
TEARDOWN_REASONS = frozenset({LifecycleReason.UNINSTALL, LifecycleReason.DISABLE})


class StudyState(str, enum.Enum):
    """Coordinator state over one study's life."""
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"


TERMINAL_STATES = frozenset({StudyState.ENDING, StudyState.ENDED})


class EndingReason(str, enum.Enum):
    """Recorded cause for why a study instance stopped running."""
    INELIGIBLE = "ineligible"
    EXPIRED = "expired"
    USER_DISABLE = "user-disable"
    ENDED_POSITIVE = "ended-positive"
    ENDED_NEUTRAL = "ended-neutral"
    ENDED_NEGATIVE = "ended-negative"
