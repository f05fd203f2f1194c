"""Per-viewer cached tier cell.

Synopsis:
Holds the best-known tier for one viewer together with its confirmation
status. Every write is a settlement candidate checked against the latest
request sequence so an older, slower request can never clobber a newer one.

Glossary:
- Settlement candidate: A proposed tier from optimistic update, verification,
  realtime push, or rollback.
- Sequence: Monotonic request number; None marks an authoritative push.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .plan_tiers import Tier, coerce_tier


class PlanStatus(str, Enum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class SettlementSource(str, Enum):
    SESSION = "session"
    OPTIMISTIC = "optimistic"
    VERIFICATION = "verification"
    PUSH = "push"
    EXHAUSTION = "exhaustion"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class SettlementCandidate:
    tier: Tier
    status: PlanStatus
    source: SettlementSource
    sequence: Optional[int] = None


@dataclass(frozen=True)
class PlanSnapshot:
    viewer_id: str
    tier: Tier
    status: PlanStatus
    sequence: int
    pending_change: bool
    in_flight_state: Optional[str] = None
    target_tier: Optional[Tier] = None

    def to_dict(self) -> dict:
        return {
            "viewer_id": self.viewer_id,
            "plan": self.tier.value,
            "status": self.status.value,
            "sequence": self.sequence,
            "pending_change": self.pending_change,
            "in_flight_state": self.in_flight_state,
            "target_plan": self.target_tier.value if self.target_tier else None,
        }


class PlanStateCell:
    """Single-writer tier cell for one viewer. Callers hold ``lock`` around writes."""

    def __init__(self, viewer_id: str, tier=Tier.UNREGISTERED, status: PlanStatus = PlanStatus.CONFIRMED):
        self.viewer_id = viewer_id
        self.tier = coerce_tier(tier)
        self.status = status
        self.latest_sequence = 0
        self.in_flight = None
        self.held_push: Optional[Tier] = None
        self.last_seen = 0.0
        self.lock = threading.RLock()

    def apply(self, candidate: SettlementCandidate) -> bool:
        """Adopt the candidate unless it belongs to a superseded request."""
        if candidate.sequence is not None and candidate.sequence != self.latest_sequence:
            return False
        self.tier = candidate.tier
        self.status = candidate.status
        return True

    @property
    def pending_change(self) -> bool:
        return self.status is PlanStatus.OPTIMISTIC

    def snapshot(self) -> PlanSnapshot:
        request = self.in_flight
        return PlanSnapshot(
            viewer_id=self.viewer_id,
            tier=self.tier,
            status=self.status,
            sequence=self.latest_sequence,
            pending_change=self.pending_change,
            in_flight_state=request.state.value if request is not None else None,
            target_tier=request.requested_tier if request is not None else None,
        )
