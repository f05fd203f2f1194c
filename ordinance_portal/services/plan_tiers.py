"""Subscription tier vocabulary.

Synopsis:
Defines the three viewer tiers, their privilege order, and coercion from raw
profile values.

Glossary:
- Tier: A viewer's subscription level controlling content visibility.
- Plan target: A tier a viewer may switch to through a plan change.
"""

from __future__ import annotations

from enum import Enum


class Tier(str, Enum):
    """Viewer subscription tier, ordered unregistered < free < premium."""

    UNREGISTERED = "unregistered"
    FREE = "free"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def outranks(self, other: "Tier") -> bool:
        return self.rank > coerce_tier(other).rank


_TIER_RANK = {
    Tier.UNREGISTERED: 0,
    Tier.FREE: 1,
    Tier.PREMIUM: 2,
}

# Only free and premium can be requested; unregistered is the absence of a profile.
PLAN_TARGETS = frozenset({Tier.FREE, Tier.PREMIUM})


class InvalidPlanTarget(ValueError):
    """Raised when a plan change targets a tier that cannot be requested."""


def coerce_tier(value) -> Tier:
    """Map a raw tier value to a Tier; unknown or missing values are unregistered."""
    if isinstance(value, Tier):
        return value
    if isinstance(value, str):
        try:
            return Tier(value.strip().lower())
        except ValueError:
            return Tier.UNREGISTERED
    return Tier.UNREGISTERED


def require_plan_target(value) -> Tier:
    if isinstance(value, Tier):
        tier = value
    else:
        try:
            tier = Tier(str(value or "").strip().lower())
        except ValueError:
            raise InvalidPlanTarget(f"Unknown plan {value!r}") from None
    if tier not in PLAN_TARGETS:
        raise InvalidPlanTarget(f"Plan {tier.value!r} cannot be requested")
    return tier
