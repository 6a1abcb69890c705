"""Variation resolution for shield studies."""
import hashlib
import random
from typing import Optional, Sequence, TYPE_CHECKING

from shield_study.schemas.study import Variation

if TYPE_CHECKING:
    from shield_study.services.interfaces import StudyService

# Pref that lets dev/QA force a variation by name
VARIATION_OVERRIDE_PREF = "shield.test.variation"


def weighted_choice(variations: Sequence[Variation], fraction: float) -> Variation:
    """
    Pick the variation whose cumulative weight band contains `fraction`.

    Weights need not sum to 1; each variation owns a share of [0, 1)
    proportional to its weight, in list order.

    Args:
        variations: Weighted variations
        fraction: Number in [0, 1)

    Returns:
        Selected Variation

    Raises:
        ConfigurationError: If the list is empty or the weights sum to zero
    """
    total = sum(v.weight for v in variations)
    if not variations or total <= 0:
        raise ConfigurationError(
            "weighted variations must contain at least one variation with a positive weight"
        )

    target = fraction * total
    cumulative = 0.0
    for variation in variations:
        cumulative += variation.weight
        if target < cumulative:
            return variation

    # Float rounding at the upper edge; give it to the last weighted arm
    return [v for v in variations if v.weight > 0][-1]


def hash_fraction(*parts: str) -> float:
    """
    Map strings to a stable fraction in [0, 1).

    Uses the first 8 hex chars of a SHA256 digest, so the same input always
    lands in the same bucket.
    """
    hash_input = "".join(parts).encode("utf-8")
    hash_digest = hashlib.sha256(hash_input).hexdigest()
    return int(hash_digest[:8], 16) / 0x100000000


def variation_from_override(
    variations: Sequence[Variation],
    override_name: Optional[str]
) -> Optional[Variation]:
    """
    Look up the operator-forced variation.

    Returns None when no override is set. An override that names no
    variation is an operator error and never falls back to a default.

    Raises:
        ConfigurationError: If `override_name` matches no variation
    """
    if not override_name:
        return None

    for variation in variations:
        if variation.name == override_name:
            return variation

    raise ConfigurationError(
        f"{VARIATION_OVERRIDE_PREF} set to {override_name!r}, "
        f"but no variation with that name exists"
    )


class VariationResolver:
    """Selects the variation for the current run."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def resolve(
        self,
        weighted_variations: Sequence[Variation],
        override_name: Optional[str] = None
    ) -> Variation:
        """
        Resolve a variation, honouring an override before random selection.

        Example:
            >>> resolver = VariationResolver()
            >>> resolver.resolve([Variation(name="a"), Variation(name="b")], "b").name
            'b'
        """
        forced = variation_from_override(weighted_variations, override_name)
        if forced is not None:
            return forced
        return weighted_choice(weighted_variations, self.rng.random())

    async def resolve_for_study(
        self,
        weighted_variations: Sequence[Variation],
        study_service: "StudyService",
        override_name: Optional[str] = None
    ) -> Variation:
        """Resolve with the study service supplying the per-user deterministic pick."""
        forced = variation_from_override(weighted_variations, override_name)
        if forced is not None:
            return forced
        return await study_service.deterministic_variation(weighted_variations)


class ConfigurationError(Exception):
    """Raised when the study configuration or an operator override is invalid."""
    pass
