"""Preference store backed by Redis.

Preferences are plain string values under `prefs:<name>`. A store can be
scoped to a branch (a key prefix such as "extensions.my-study.") so a
feature only sees its own prefs.
"""
import redis
from typing import Optional


class PrefStore:
    """Redis-based string/int preference store."""

    def __init__(self, redis_client: redis.Redis, branch: str = ""):
        self.redis = redis_client
        self.branch_name = branch

    def _get_pref_key(self, name: str) -> str:
        """Get Redis key for a pref in this branch."""
        return f"prefs:{self.branch_name}{name}"

    def branch(self, prefix: str) -> "PrefStore":
        """Return a store scoped to `prefix` beneath this branch."""
        return PrefStore(self.redis, branch=f"{self.branch_name}{prefix}")

    def get_char_pref(self, name: str, default: str = "") -> str:
        """Get a string pref, or `default` when unset."""
        value = self.redis.get(self._get_pref_key(name))
        if value is None:
            return default
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def get_int_pref(self, name: str, default: Optional[int] = None) -> Optional[int]:
        """Get an int pref; unset or unparsable values return `default`."""
        value = self.get_char_pref(name, "")
        if value == "":
            return default
        try:
            return int(value)
        except ValueError:
            return default

    def set_char_pref(self, name: str, value: str) -> None:
        """Set a string pref."""
        self.redis.set(self._get_pref_key(name), value)

    def set_int_pref(self, name: str, value: int) -> None:
        """Set an int pref."""
        self.redis.set(self._get_pref_key(name), str(int(value)))

    def clear_user_pref(self, name: str) -> None:
        """Remove a pref."""
        self.redis.delete(self._get_pref_key(name))
