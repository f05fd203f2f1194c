"""Display grouping and per-municipality exemplar tracking.

Synopsis:
Partitions ordinance records into department groups and computes, once per
full unfiltered record set, which record is each municipality's exemplar.

Glossary:
- Display group: Records sharing a department, in first-seen order.
- Exemplar record: The first record per municipality in original input order;
  the single record shown unobscured to unregistered viewers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Sequence

DEFAULT_SURVEY_GROUP_KEY = "調査"
DEFAULT_UNCATEGORIZED_GROUP_KEY = "未分類"


def group_key_for(record, uncategorized: str = DEFAULT_UNCATEGORIZED_GROUP_KEY) -> str:
    return getattr(record, "department", None) or uncategorized


def group_records(records: Iterable, uncategorized: str = DEFAULT_UNCATEGORIZED_GROUP_KEY) -> Dict[str, List]:
    """Return group key -> records, preserving first-seen group and record order."""
    groups: Dict[str, List] = {}
    for record in records:
        groups.setdefault(group_key_for(record, uncategorized), []).append(record)
    return groups


def exemplar_for(records: Iterable) -> FrozenSet:
    """Return the ids of the first record per municipality, scoped across the whole set."""
    seen_municipalities = set()
    exemplar_ids = set()
    for record in records:
        municipality = getattr(record, "municipality_name", None) or ""
        if municipality in seen_municipalities:
            continue
        seen_municipalities.add(municipality)
        exemplar_ids.add(record.id)
    return frozenset(exemplar_ids)


# --- Grouping context ---
# Purpose: Carry the precomputed exemplar set and group keys into the policy.
# Inputs: Full unfiltered record sequence (for exemplars) and configured keys.
# Outputs: Immutable context reused across every decision for that record set.
@dataclass(frozen=True)
class GroupingContext:
    exemplar_ids: FrozenSet = field(default_factory=frozenset)
    survey_group_key: str = DEFAULT_SURVEY_GROUP_KEY
    uncategorized_group_key: str = DEFAULT_UNCATEGORIZED_GROUP_KEY

    @classmethod
    def from_records(
        cls,
        records: Sequence,
        *,
        survey_group_key: str = DEFAULT_SURVEY_GROUP_KEY,
        uncategorized_group_key: str = DEFAULT_UNCATEGORIZED_GROUP_KEY,
    ) -> "GroupingContext":
        return cls(
            exemplar_ids=exemplar_for(records),
            survey_group_key=survey_group_key,
            uncategorized_group_key=uncategorized_group_key,
        )

    def is_exemplar(self, record) -> bool:
        return record.id in self.exemplar_ids

    def group_key(self, record) -> str:
        return group_key_for(record, self.uncategorized_group_key)

    def is_survey_group(self, record) -> bool:
        return self.group_key(record) == self.survey_group_key
