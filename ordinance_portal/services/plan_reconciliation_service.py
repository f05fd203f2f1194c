"""Plan reconciliation state machine.

Synopsis:
Drives a viewer's tier change through optimistic local update, submission,
bounded verification polling, and realtime push correction, so the UI reacts
at once while the eventually-consistent store catches up.

Glossary:
- Reconciliation request: One in-flight tier change for a viewer.
- Settlement: The point at which a requested tier is confirmed authoritative.
- Supersession: A newer request for the same viewer abandons the older one.
- Exhaustion: Verification budget spent; the latest authoritative read wins.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from .errors import MutationRejected, NotFound, RecordStoreError, StoreUnavailable
from .notifications import NotificationSink
from .plan_state import (
    PlanSnapshot,
    PlanStateCell,
    PlanStatus,
    SettlementCandidate,
    SettlementSource,
)
from .plan_tiers import Tier, coerce_tier, require_plan_target
from .record_store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_DELAY_SECONDS = 1.0


class ReconciliationState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    VERIFYING = "verifying"
    SETTLED = "settled"
    EXHAUSTED = "exhausted"
    SUPERSEDED = "superseded"
    ROLLED_BACK = "rolled_back"


TERMINAL_STATES = frozenset({
    ReconciliationState.SETTLED,
    ReconciliationState.EXHAUSTED,
    ReconciliationState.SUPERSEDED,
    ReconciliationState.ROLLED_BACK,
})


# --- Reconciliation status ---
# Purpose: One entry in a viewer's observable status stream.
# Outputs: Immutable event published on every transition and every push.
@dataclass(frozen=True)
class ReconciliationStatus:
    viewer_id: str
    sequence: int
    state: ReconciliationState
    tier: Tier
    target: Optional[Tier]
    attempt_count: int = 0
    source: Optional[str] = None
    uncertain: bool = False

    def to_dict(self) -> dict:
        return {
            "viewer_id": self.viewer_id,
            "sequence": self.sequence,
            "state": self.state.value,
            "plan": self.tier.value,
            "target_plan": self.target.value if self.target else None,
            "attempt_count": self.attempt_count,
            "source": self.source,
            "uncertain": self.uncertain,
        }


@dataclass
class ReconciliationRequest:
    viewer_id: str
    requested_tier: Tier
    sequence: int
    previous_tier: Tier
    submitted_at: datetime
    attempt_count: int = 0
    state: ReconciliationState = ReconciliationState.SUBMITTING
    uncertain: bool = False
    settled_tier: Optional[Tier] = None
    history: List[ReconciliationStatus] = field(default_factory=list)
    future: Optional[Future] = field(default=None, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict:
        return {
            "viewer_id": self.viewer_id,
            "sequence": self.sequence,
            "state": self.state.value,
            "target_plan": self.requested_tier.value,
            "previous_plan": self.previous_tier.value,
            "settled_plan": self.settled_tier.value if self.settled_tier else None,
            "attempt_count": self.attempt_count,
            "uncertain": self.uncertain,
            "submitted_at": self.submitted_at.isoformat(),
        }


StatusListener = Callable[[ReconciliationStatus], None]


class PlanReconciliationService:
    """Keeps each tracked viewer's cached tier consistent with the record store."""

    def __init__(
        self,
        store: RecordStore,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        notifier: Optional[NotificationSink] = None,
        executor: Optional[Executor] = None,
        idle_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self.max_attempts = max(1, int(max_attempts))
        self.delay_seconds = max(0.0, float(delay_seconds))
        self._sleep = sleep
        self._notifier = notifier
        self._executor = executor
        self.idle_ttl_seconds = float(idle_ttl_seconds) if idle_ttl_seconds else None
        self._clock = clock
        self._cells: Dict[str, PlanStateCell] = {}
        self._push_unsubscribers: Dict[str, Callable[[], None]] = {}
        self._listeners: Dict[str, List[StatusListener]] = {}
        self._registry_lock = threading.Lock()
        self._sequence = itertools.count(1)

    @classmethod
    def from_config(cls, config, store: RecordStore, **kwargs) -> "PlanReconciliationService":
        return cls(
            store,
            max_attempts=config.get("PLAN_VERIFY_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            delay_seconds=config.get("PLAN_VERIFY_DELAY_SECONDS", DEFAULT_DELAY_SECONDS),
            idle_ttl_seconds=config.get("PLAN_VIEWER_IDLE_SECONDS"),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Viewer tracking
    # ------------------------------------------------------------------

    def track_viewer(self, viewer_id: str, tier=None) -> PlanSnapshot:
        """Start holding a cached tier for viewer_id and listen for pushes."""
        cell = self._get_cell(viewer_id)
        if cell is not None:
            return cell.snapshot()
        self.evict_idle()

        initial = coerce_tier(tier) if tier is not None else self._initial_tier(viewer_id)
        with self._registry_lock:
            cell = self._cells.get(viewer_id)
            if cell is not None:
                return cell.snapshot()
            cell = PlanStateCell(viewer_id, initial)
            cell.last_seen = self._clock()
            self._cells[viewer_id] = cell

        unsubscribe = self._store.subscribe_tier_changes(viewer_id, self.handle_push)
        with self._registry_lock:
            self._push_unsubscribers[viewer_id] = unsubscribe
        logger.info("Tracking viewer %s at tier %s", viewer_id, initial.value)
        return cell.snapshot()

    def release_viewer(self, viewer_id: str) -> None:
        """Forget a viewer whose session ended; any in-flight request is abandoned."""
        with self._registry_lock:
            cell = self._cells.pop(viewer_id, None)
            unsubscribe = self._push_unsubscribers.pop(viewer_id, None)
            self._listeners.pop(viewer_id, None)
        if unsubscribe is not None:
            unsubscribe()
        if cell is None:
            return
        with cell.lock:
            request = cell.in_flight
            if request is not None and not request.is_terminal:
                self._record(cell, request, ReconciliationState.SUPERSEDED, SettlementSource.SESSION)
            cell.in_flight = None
        logger.info("Released viewer %s", viewer_id)

    def evict_idle(self) -> List[str]:
        """Release viewers unseen for idle_ttl_seconds that have nothing in flight."""
        if self.idle_ttl_seconds is None:
            return []
        cutoff = self._clock() - self.idle_ttl_seconds
        with self._registry_lock:
            idle = [
                viewer_id
                for viewer_id, cell in self._cells.items()
                if cell.last_seen < cutoff and (cell.in_flight is None or cell.in_flight.is_terminal)
            ]
        for viewer_id in idle:
            logger.info("Evicting idle viewer %s", viewer_id)
            self.release_viewer(viewer_id)
        return idle

    def is_tracking(self, viewer_id: str) -> bool:
        with self._registry_lock:
            return viewer_id in self._cells

    def current_tier(self, viewer_id: Optional[str]) -> Tier:
        if not viewer_id:
            return Tier.UNREGISTERED
        cell = self._get_cell(viewer_id)
        return cell.tier if cell is not None else Tier.UNREGISTERED

    def snapshot(self, viewer_id: str) -> Optional[PlanSnapshot]:
        cell = self._get_cell(viewer_id)
        if cell is None:
            return None
        with cell.lock:
            return cell.snapshot()

    def in_flight(self, viewer_id: str) -> Optional[ReconciliationRequest]:
        cell = self._get_cell(viewer_id)
        return cell.in_flight if cell is not None else None

    def subscribe(self, viewer_id: str, listener: StatusListener) -> Callable[[], None]:
        """Register a status stream listener; returns an unsubscribe callable."""
        with self._registry_lock:
            self._listeners.setdefault(viewer_id, []).append(listener)

        def _unsubscribe():
            with self._registry_lock:
                listeners = self._listeners.get(viewer_id, [])
                if listener in listeners:
                    listeners.remove(listener)

        return _unsubscribe

    def shutdown(self) -> None:
        with self._registry_lock:
            viewer_ids = list(self._cells)
        for viewer_id in viewer_ids:
            self.release_viewer(viewer_id)
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Tier change lifecycle
    # ------------------------------------------------------------------

    def change_plan(self, viewer_id: str, target) -> ReconciliationRequest:
        """Request a change and verify it, on the executor when one is configured."""
        request = self.request_change(viewer_id, target)
        if request.is_terminal:
            return request
        if self._executor is not None:
            request.future = self._executor.submit(self.verify, request)
            request.future.add_done_callback(_log_verification_failure)
            return request
        return self.verify(request)

    def request_change(self, viewer_id: str, target) -> ReconciliationRequest:
        """Supersede any in-flight request, update optimistically, and submit.

        Returns the request in ``verifying`` state. Raises MutationRejected
        after rolling the cached tier back when the submission fails.
        """
        target = require_plan_target(target)
        cell = self._cell_for(viewer_id)

        with cell.lock:
            previous = cell.in_flight
            if previous is not None and not previous.is_terminal:
                self._record(cell, previous, ReconciliationState.SUPERSEDED)
                logger.info(
                    "Request %s for viewer %s superseded by a newer plan change",
                    previous.sequence,
                    viewer_id,
                )
            with self._registry_lock:
                sequence = next(self._sequence)
            request = ReconciliationRequest(
                viewer_id=viewer_id,
                requested_tier=target,
                sequence=sequence,
                previous_tier=cell.tier,
                submitted_at=datetime.now(timezone.utc),
            )
            cell.latest_sequence = sequence
            cell.in_flight = request
            cell.held_push = None
            cell.apply(SettlementCandidate(target, PlanStatus.OPTIMISTIC, SettlementSource.OPTIMISTIC, sequence))
            self._record(cell, request, ReconciliationState.SUBMITTING, SettlementSource.OPTIMISTIC)

        try:
            self._store.mutate_tier(viewer_id, target)
        except Exception as exc:
            if not isinstance(exc, RecordStoreError):
                logger.exception("Unexpected failure submitting plan change for viewer %s", viewer_id)
            self._rollback(cell, request, exc)
            if isinstance(exc, MutationRejected):
                raise
            raise MutationRejected(str(exc)) from exc

        settled = False
        with cell.lock:
            if request.state is ReconciliationState.SUBMITTING:
                self._record(cell, request, ReconciliationState.VERIFYING)
                held, cell.held_push = cell.held_push, None
                if held is not None:
                    settled = self._apply_push_locked(cell, held)
        if settled:
            self._notify_outcome(request)
        return request

    def verify(self, request: ReconciliationRequest) -> ReconciliationRequest:
        """Poll the store until the request settles, is superseded, or exhausts."""
        viewer_id = request.viewer_id
        target = request.requested_tier
        last_read: Optional[Tier] = None

        for _ in range(self.max_attempts):
            if not self._is_current(request):
                return request
            self._sleep(self.delay_seconds)
            if not self._is_current(request):
                return request

            try:
                observed = self._read_tier(viewer_id)
            except StoreUnavailable as exc:
                self._count_attempt(request, f"unavailable: {exc}")
                continue

            last_read = observed
            if observed is target:
                if self._settle(request, observed, ReconciliationState.SETTLED, SettlementSource.VERIFICATION):
                    self._notify_outcome(request)
                return request
            self._count_attempt(request, f"observed {observed.value}")

        return self._exhaust(request, last_read)

    def handle_push(self, viewer_id: str, tier) -> None:
        """Realtime correction: an authoritative tier change for viewer_id."""
        cell = self._get_cell(viewer_id)
        if cell is None:
            return
        tier = coerce_tier(tier)
        with cell.lock:
            request = cell.in_flight
            if request is not None and request.state is ReconciliationState.SUBMITTING:
                cell.held_push = tier
                return
            settled = self._apply_push_locked(cell, tier)
        if settled:
            self._notify_outcome(request)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _initial_tier(self, viewer_id: str) -> Tier:
        try:
            return self._read_tier(viewer_id)
        except StoreUnavailable:
            logger.warning("Tier unavailable for viewer %s; starting as unregistered", viewer_id)
            return Tier.UNREGISTERED

    def _read_tier(self, viewer_id: str) -> Tier:
        try:
            return coerce_tier(self._store.fetch_tier(viewer_id))
        except NotFound:
            return Tier.UNREGISTERED

    def _get_cell(self, viewer_id: str) -> Optional[PlanStateCell]:
        with self._registry_lock:
            cell = self._cells.get(viewer_id)
            if cell is not None:
                cell.last_seen = self._clock()
            return cell

    def _cell_for(self, viewer_id: str) -> PlanStateCell:
        cell = self._get_cell(viewer_id)
        if cell is None:
            self.track_viewer(viewer_id)
            cell = self._get_cell(viewer_id)
        return cell

    def _is_current(self, request: ReconciliationRequest) -> bool:
        cell = self._get_cell(request.viewer_id)
        if cell is None:
            return False
        with cell.lock:
            return (
                request.state is ReconciliationState.VERIFYING
                and cell.latest_sequence == request.sequence
            )

    def _count_attempt(self, request: ReconciliationRequest, reason: str) -> None:
        cell = self._get_cell(request.viewer_id)
        if cell is None:
            return
        with cell.lock:
            if request.is_terminal or cell.latest_sequence != request.sequence:
                return
            request.attempt_count += 1
            self._record(cell, request, ReconciliationState.VERIFYING, SettlementSource.VERIFICATION)
        logger.warning(
            "Plan verification attempt %s/%s for viewer %s not confirmed (%s)",
            request.attempt_count,
            self.max_attempts,
            request.viewer_id,
            reason,
        )

    def _settle(
        self,
        request: ReconciliationRequest,
        tier: Tier,
        state: ReconciliationState,
        source: SettlementSource,
        status: PlanStatus = PlanStatus.CONFIRMED,
    ) -> bool:
        cell = self._get_cell(request.viewer_id)
        if cell is None:
            return False
        with cell.lock:
            return self._settle_locked(cell, request, tier, state, source, status)

    def _settle_locked(self, cell, request, tier, state, source, status=PlanStatus.CONFIRMED) -> bool:
        if request.is_terminal:
            return False
        if not cell.apply(SettlementCandidate(tier, status, source, request.sequence)):
            return False
        cell.in_flight = None
        request.settled_tier = tier
        request.uncertain = state is ReconciliationState.EXHAUSTED
        self._record(cell, request, state, source)
        logger.info(
            "Plan change %s for viewer %s %s at tier %s via %s",
            request.sequence,
            request.viewer_id,
            state.value,
            tier.value,
            source.value,
        )
        return True

    def _apply_push_locked(self, cell: PlanStateCell, tier: Tier) -> bool:
        """Apply a push under cell.lock; True when it settled the in-flight request."""
        request = cell.in_flight
        if (
            request is not None
            and request.state is ReconciliationState.VERIFYING
            and tier is request.requested_tier
        ):
            return self._settle_locked(cell, request, tier, ReconciliationState.SETTLED, SettlementSource.PUSH)

        cell.apply(SettlementCandidate(tier, PlanStatus.CONFIRMED, SettlementSource.PUSH))
        state = request.state if request is not None else ReconciliationState.IDLE
        self._publish(ReconciliationStatus(
            viewer_id=cell.viewer_id,
            sequence=cell.latest_sequence,
            state=state,
            tier=cell.tier,
            target=request.requested_tier if request is not None else None,
            attempt_count=request.attempt_count if request is not None else 0,
            source=SettlementSource.PUSH.value,
        ))
        logger.info("Realtime push set viewer %s to tier %s", cell.viewer_id, tier.value)
        return False

    def _exhaust(self, request: ReconciliationRequest, last_read: Optional[Tier]) -> ReconciliationRequest:
        if not self._is_current(request):
            return request
        try:
            final = self._read_tier(request.viewer_id)
        except StoreUnavailable:
            logger.warning("Final tier read failed for viewer %s", request.viewer_id)
            final = last_read

        if final is request.requested_tier:
            settled = self._settle(request, final, ReconciliationState.SETTLED, SettlementSource.VERIFICATION)
        elif final is None:
            settled = self._settle(
                request,
                request.previous_tier,
                ReconciliationState.EXHAUSTED,
                SettlementSource.EXHAUSTION,
                status=PlanStatus.ROLLED_BACK,
            )
        else:
            settled = self._settle(request, final, ReconciliationState.EXHAUSTED, SettlementSource.EXHAUSTION)

        if settled:
            if request.uncertain:
                logger.warning(
                    "Plan change %s for viewer %s unconfirmed after %s attempts; adopted tier %s",
                    request.sequence,
                    request.viewer_id,
                    request.attempt_count,
                    request.settled_tier.value,
                )
            self._notify_outcome(request)
        return request

    def _rollback(self, cell: PlanStateCell, request: ReconciliationRequest, exc: Exception) -> None:
        with cell.lock:
            if request.is_terminal:
                logger.info("Submission for superseded request %s failed: %s", request.sequence, exc)
                return
            if cell.apply(SettlementCandidate(
                request.previous_tier, PlanStatus.ROLLED_BACK, SettlementSource.ROLLBACK, request.sequence
            )):
                cell.in_flight = None
                cell.held_push = None
                request.settled_tier = request.previous_tier
            self._record(cell, request, ReconciliationState.ROLLED_BACK, SettlementSource.ROLLBACK)
        logger.warning(
            "Plan change %s for viewer %s rejected; reverted to tier %s: %s",
            request.sequence,
            request.viewer_id,
            request.previous_tier.value,
            exc,
        )
        self._notify_outcome(request)

    def _record(self, cell: PlanStateCell, request: ReconciliationRequest, state: ReconciliationState,
                source: Optional[SettlementSource] = None) -> None:
        request.state = state
        status = ReconciliationStatus(
            viewer_id=request.viewer_id,
            sequence=request.sequence,
            state=state,
            tier=cell.tier,
            target=request.requested_tier,
            attempt_count=request.attempt_count,
            source=source.value if source is not None else None,
            uncertain=request.uncertain,
        )
        request.history.append(status)
        self._publish(status)

    def _publish(self, status: ReconciliationStatus) -> None:
        with self._registry_lock:
            listeners = list(self._listeners.get(status.viewer_id, ()))
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("Plan status listener failed for viewer %s", status.viewer_id)

    def _notify_outcome(self, request: ReconciliationRequest) -> None:
        if self._notifier is None:
            return
        target = request.requested_tier
        viewer_id = request.viewer_id
        if request.state is ReconciliationState.SETTLED:
            if target.outranks(request.previous_tier):
                self._notifier.success(f"Your plan has been upgraded to {target.value}.", viewer_id)
            else:
                self._notifier.success(f"Your plan has been changed to {target.value}.", viewer_id)
        elif request.state is ReconciliationState.EXHAUSTED:
            current = request.settled_tier or request.previous_tier
            self._notifier.warning(
                f"We could not confirm your plan change yet. Your current plan is {current.value}.",
                viewer_id,
            )
        elif request.state is ReconciliationState.ROLLED_BACK:
            self._notifier.error("Your plan could not be updated. No changes were made.", viewer_id)


def _log_verification_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background plan verification failed", exc_info=exc)
