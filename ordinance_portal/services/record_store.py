"""Record store adapter for ordinances and viewer tiers.

Synopsis:
Defines the RecordStore contract consumed by the visibility and plan
reconciliation services, an in-process push feed for tier changes, and the
SQLAlchemy-backed implementation used by the application.

Glossary:
- Record: Immutable ordinance snapshot handed to the visibility policy.
- Tier change feed: Row-level change notifications for a viewer's plan.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Ordinance, Profile
from .errors import MutationRejected, NotFound, StoreUnavailable
from .plan_tiers import Tier, coerce_tier

logger = logging.getLogger(__name__)

TierCallback = Callable[[str, Tier], None]
Unsubscribe = Callable[[], None]

TIER_CHANGE_FEED_KEY = "tier_change_feed"


# --- Ordinance record ---
# Purpose: Immutable, cache-safe snapshot of an ordinance row.
# Inputs: ORM row or plain keyword values.
# Outputs: Frozen dataclass; optional text fields degrade to "".
@dataclass(frozen=True)
class OrdinanceRecord:
    id: object
    municipality_name: str = ""
    department: str = ""
    content: str = ""
    survey_group: str = ""
    first_line: str = ""
    title: str = ""
    category: str = ""
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, row: Ordinance) -> "OrdinanceRecord":
        updated_at = row.updated_at
        return cls(
            id=row.id,
            municipality_name=row.municipality_name or "",
            department=row.department or "",
            content=row.content or "",
            survey_group=row.survey_group or "",
            first_line=row.first_line or "",
            title=row.title or "",
            category=row.category or "",
            updated_at=updated_at.isoformat() if isinstance(updated_at, datetime) else None,
        )


# --- Record store contract ---
# Purpose: Abstract the backing store the core engine consumes.
class RecordStore(ABC):
    """Contract for the record store collaborator."""

    @abstractmethod
    def fetch_all(self) -> List[OrdinanceRecord]:
        """Return every record in store order. Raises StoreUnavailable."""

    @abstractmethod
    def fetch_tier(self, viewer_id: str) -> Tier:
        """Return the authoritative tier. Raises StoreUnavailable or NotFound."""

    @abstractmethod
    def mutate_tier(self, viewer_id: str, tier: Tier) -> None:
        """Write a new tier. Raises MutationRejected."""

    @abstractmethod
    def subscribe_tier_changes(self, viewer_id: str, callback: TierCallback) -> Unsubscribe:
        """Push (viewer_id, tier) events to callback until unsubscribed."""


class TierChangeFeed:
    """Thread-safe fan-out of tier change events keyed by viewer."""

    def __init__(self):
        self._subscribers: Dict[str, List[TierCallback]] = {}
        self._lock = threading.Lock()

    def subscribe(self, viewer_id: str, callback: TierCallback) -> Unsubscribe:
        with self._lock:
            self._subscribers.setdefault(viewer_id, []).append(callback)

        def _unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(viewer_id)
                if not callbacks:
                    return
                try:
                    callbacks.remove(callback)
                except ValueError:
                    return
                if not callbacks:
                    del self._subscribers[viewer_id]

        return _unsubscribe

    def subscriber_count(self, viewer_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(viewer_id, ()))

    def publish(self, viewer_id: str, tier) -> int:
        """Deliver an event to every subscriber of viewer_id; returns deliveries."""
        tier = coerce_tier(tier)
        with self._lock:
            callbacks = list(self._subscribers.get(viewer_id, ()))
        delivered = 0
        for callback in callbacks:
            try:
                callback(viewer_id, tier)
                delivered += 1
            except Exception:
                logger.exception("Tier change subscriber failed for viewer %s", viewer_id)
        logger.debug("Published tier %s for viewer %s to %s subscriber(s)", tier.value, viewer_id, delivered)
        return delivered


def get_tier_change_feed(app=None) -> Optional[TierChangeFeed]:
    if app is None:
        if not has_app_context():
            return None
        app = current_app
    return app.extensions.get(TIER_CHANGE_FEED_KEY)


def dispatch_tier_changes(changes: Iterable[tuple]) -> None:
    """Publish committed (viewer_id, plan) pairs to the active app's feed."""
    feed = get_tier_change_feed()
    if feed is None:
        return
    for viewer_id, plan in changes:
        feed.publish(viewer_id, plan)


class SqlAlchemyRecordStore(RecordStore):
    """RecordStore over the Flask-SQLAlchemy session."""

    def __init__(self, app=None, feed: Optional[TierChangeFeed] = None):
        self._app = app
        self._feed = feed or TierChangeFeed()

    @property
    def feed(self) -> TierChangeFeed:
        return self._feed

    def _context(self):
        if self._app is not None and not has_app_context():
            return self._app.app_context()
        return contextlib.nullcontext()

    def fetch_all(self) -> List[OrdinanceRecord]:
        with self._context():
            try:
                rows = db.session.execute(select(Ordinance).order_by(Ordinance.id)).scalars().all()
                return [OrdinanceRecord.from_model(row) for row in rows]
            except SQLAlchemyError as exc:
                _rollback_safely()
                logger.warning("Ordinance fetch failed: %s", exc)
                raise StoreUnavailable("Ordinance records are temporarily unavailable") from exc

    def fetch_tier(self, viewer_id: str) -> Tier:
        with self._context():
            try:
                # Column select bypasses the identity map so each read is fresh.
                plan = db.session.execute(
                    select(Profile.plan).where(Profile.id == viewer_id)
                ).scalar_one_or_none()
            except SQLAlchemyError as exc:
                _rollback_safely()
                logger.warning("Tier read failed for viewer %s: %s", viewer_id, exc)
                raise StoreUnavailable(f"Tier for viewer {viewer_id} is temporarily unavailable") from exc
            if plan is None:
                raise NotFound(f"No profile for viewer {viewer_id}")
            return coerce_tier(plan)

    def mutate_tier(self, viewer_id: str, tier: Tier) -> None:
        tier = coerce_tier(tier)
        with self._context():
            try:
                profile = db.session.get(Profile, viewer_id)
                if profile is None:
                    raise MutationRejected(f"No profile for viewer {viewer_id}")
                profile.plan = tier.value
                db.session.commit()
            except SQLAlchemyError as exc:
                _rollback_safely()
                logger.warning("Tier update rejected for viewer %s: %s", viewer_id, exc)
                raise MutationRejected(f"Plan update for viewer {viewer_id} failed") from exc
        logger.info("Submitted tier %s for viewer %s", tier.value, viewer_id)

    def subscribe_tier_changes(self, viewer_id: str, callback: TierCallback) -> Unsubscribe:
        return self._feed.subscribe(viewer_id, callback)


def _rollback_safely() -> None:
    try:
        db.session.rollback()
    except SQLAlchemyError:
        logger.debug("Session rollback after store failure also failed", exc_info=True)
