"""Initialize the enrollment database and optionally force a variation."""
import sys
import redis

from shield_study.config import get_settings
from shield_study.database import engine, Base
from shield_study.models import StudyRecord  # noqa: F401  registers the table
from shield_study.services.prefs import PrefStore
from shield_study.services.variations import VARIATION_OVERRIDE_PREF


def init_database(variation_override: str = ""):
    """Create tables and set (or clear) the variation override pref."""
    settings = get_settings()

    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print(f"✓ Tables ready at {settings.database_url}")

    prefs = PrefStore(redis.from_url(settings.redis_url))
    known = {v["name"] for v in settings.weighted_variations}

    if variation_override:
        if variation_override not in known:
            print(f"✗ Unknown variation {variation_override!r}; expected one of {sorted(known)}")
            sys.exit(1)
        prefs.set_char_pref(VARIATION_OVERRIDE_PREF, variation_override)
        print(f"✓ {VARIATION_OVERRIDE_PREF} = {variation_override}")
    else:
        prefs.clear_user_pref(VARIATION_OVERRIDE_PREF)
        print(f"✓ {VARIATION_OVERRIDE_PREF} cleared")


if __name__ == "__main__":
    init_database(sys.argv[1] if len(sys.argv) > 1 else "")
