import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session

from ..extensions import db

_PENDING_TIER_CHANGES_KEY = "pending_tier_changes"


class Profile(UserMixin, db.Model):
    """A viewer's profile row; ``plan`` is the authoritative tier."""
    __tablename__ = 'profile'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = db.Column(db.String(64), unique=True, nullable=True)
    full_name = db.Column(db.String(128), nullable=True)
    company_name = db.Column(db.String(128), nullable=True)
    department = db.Column(db.String(128), nullable=True)
    phone_number = db.Column(db.String(32), nullable=True)
    plan = db.Column(db.String(16), nullable=False, default='free')

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def display_name(self):
        return self.full_name or self.username or self.id

    def __repr__(self):
        return f'<Profile {self.id} plan={self.plan}>'


# Tier changes are collected during flush and published only once the
# transaction commits, so subscribers never observe a rolled-back plan.
@event.listens_for(Profile, "after_update")
def _profile_after_update(mapper, connection, target):
    history = inspect(target).attrs.plan.history
    if not history.has_changes():
        return
    session = object_session(target)
    if session is None:
        return
    session.info.setdefault(_PENDING_TIER_CHANGES_KEY, []).append((target.id, target.plan))


@event.listens_for(Session, "after_commit")
def _publish_tier_changes_after_commit(session):
    changes = session.info.pop(_PENDING_TIER_CHANGES_KEY, None)
    if not changes:
        return
    from ..services.record_store import dispatch_tier_changes

    dispatch_tier_changes(changes)


@event.listens_for(Session, "after_rollback")
def _discard_tier_changes_after_rollback(session):
    session.info.pop(_PENDING_TIER_CHANGES_KEY, None)
