"""Tiered visibility decisions for ordinance records.

Synopsis:
Maps (viewer tier, record, grouping context) to a single visibility decision
so every listing renders the same progressive-disclosure funnel.

Glossary:
- Revealed: Record content shown unobscured.
- Partial: Reduced content rendered but visually obscured (free tier).
- Obscured: First-line teaser rendered but visually obscured (unregistered).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Sequence

from .ordinance_grouping import GroupingContext
from .plan_tiers import Tier, coerce_tier


# --- Visibility enum ---
# Purpose: Name the three rendering treatments a record can receive.
class Visibility(str, Enum):
    REVEALED = "revealed"
    PARTIAL = "partial"
    OBSCURED = "obscured"


# --- Visibility decision ---
# Purpose: Carry one record's rendering decision to the presentation layer.
# Inputs: record id, reveal flag, content to display, exemplar flag.
# Outputs: Immutable decision; derived per request, never persisted.
@dataclass(frozen=True)
class VisibilityDecision:
    record_id: object
    is_revealed: bool
    displayed_content: str
    is_group_exemplar: bool
    visibility: Visibility
    group_key: str

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "is_revealed": self.is_revealed,
            "displayed_content": self.displayed_content,
            "is_group_exemplar": self.is_group_exemplar,
            "visibility": self.visibility.value,
            "group_key": self.group_key,
        }


_UPGRADE_PROMPTS = {
    Tier.FREE: "Upgrade to the premium plan to read every ordinance in full.",
    Tier.UNREGISTERED: (
        "Register for free to read the survey category. "
        "Upgrade to the premium plan to read every ordinance."
    ),
}


def _text(record, attribute: str) -> str:
    value = getattr(record, attribute, None)
    return value if isinstance(value, str) else ("" if value is None else str(value))


# --- Visibility policy service ---
# Purpose: Single decision source for tiered record visibility.
# Inputs: tier (raw or Tier), record-like object, GroupingContext.
# Outputs: VisibilityDecision; never raises on missing fields.
class VisibilityPolicyService:
    """Pure policy engine for tier-gated record visibility."""

    @classmethod
    def decide(cls, tier, record, context: Optional[GroupingContext] = None) -> VisibilityDecision:
        """Return the visibility decision for one record under a tier."""
        tier = coerce_tier(tier)
        context = context or GroupingContext()
        group_key = context.group_key(record)
        is_exemplar = context.is_exemplar(record)

        if tier is Tier.PREMIUM:
            return VisibilityDecision(
                record_id=record.id,
                is_revealed=True,
                displayed_content=_text(record, "content"),
                is_group_exemplar=is_exemplar,
                visibility=Visibility.REVEALED,
                group_key=group_key,
            )

        if tier is Tier.FREE:
            revealed = context.is_survey_group(record)
            return VisibilityDecision(
                record_id=record.id,
                is_revealed=revealed,
                displayed_content=_text(record, "content" if revealed else "survey_group"),
                is_group_exemplar=is_exemplar,
                visibility=Visibility.REVEALED if revealed else Visibility.PARTIAL,
                group_key=group_key,
            )

        # Unregistered: the municipality exemplar is the only unobscured teaser.
        return VisibilityDecision(
            record_id=record.id,
            is_revealed=is_exemplar,
            displayed_content=_text(record, "first_line"),
            is_group_exemplar=is_exemplar,
            visibility=Visibility.REVEALED if is_exemplar else Visibility.OBSCURED,
            group_key=group_key,
        )

    @classmethod
    def get_visibility_decisions(
        cls,
        tier,
        records: Sequence,
        *,
        exemplar_ids: Optional[FrozenSet] = None,
        context: Optional[GroupingContext] = None,
    ) -> List[VisibilityDecision]:
        """Decide every record in order.

        Exemplars come from ``context`` or ``exemplar_ids`` when the caller
        holds a precomputed set for the unfiltered catalog; otherwise they are
        computed once from ``records`` as given.
        """
        if context is None:
            if exemplar_ids is None:
                context = GroupingContext.from_records(records)
            else:
                context = GroupingContext(exemplar_ids=frozenset(exemplar_ids))
        return [cls.decide(tier, record, context) for record in records]

    @staticmethod
    def upgrade_prompt(tier) -> Optional[str]:
        """Upsell banner text for the tier; None when nothing is locked."""
        return _UPGRADE_PROMPTS.get(coerce_tier(tier))

    @staticmethod
    def revealed_ids(decisions: Iterable[VisibilityDecision]) -> List:
        return [decision.record_id for decision in decisions if decision.is_revealed]
