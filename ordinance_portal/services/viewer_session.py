"""Viewer session context backed by Flask-Login.

Synopsis:
Resolves the current viewer from the login session and keeps the plan
reconciliation service's tracked viewers in step with logins and logouts.

Glossary:
- Viewer: The identity browsing the catalog plus its best-known tier.
- Session observation: First time a request or login signal sees a viewer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from flask import has_request_context
from flask_login import current_user, user_logged_in, user_logged_out

from .plan_reconciliation_service import PlanReconciliationService
from .plan_tiers import Tier, coerce_tier

logger = logging.getLogger(__name__)

SessionCallback = Callable[[Optional["Viewer"], Optional[str]], None]


@dataclass(frozen=True)
class Viewer:
    viewer_id: str
    tier: Tier
    pending_change: bool = False

    def to_dict(self) -> dict:
        return {
            "viewer_id": self.viewer_id,
            "plan": self.tier.value,
            "pending_change": self.pending_change,
        }


class ViewerSessionContext:
    """Current viewer lookup and session change notifications for one app."""

    def __init__(self, app, reconciliation: PlanReconciliationService):
        self._app = app
        self._reconciliation = reconciliation

    def current_viewer(self) -> Optional[Viewer]:
        """Return the logged-in viewer, tracking it on first observation."""
        if not has_request_context():
            return None
        if not getattr(current_user, "is_authenticated", False):
            return None

        viewer_id = current_user.get_id()
        if not self._reconciliation.is_tracking(viewer_id):
            self._reconciliation.track_viewer(viewer_id, coerce_tier(getattr(current_user, "plan", None)))

        snapshot = self._reconciliation.snapshot(viewer_id)
        if snapshot is None:
            return Viewer(viewer_id=viewer_id, tier=Tier.UNREGISTERED)
        return Viewer(viewer_id=viewer_id, tier=snapshot.tier, pending_change=snapshot.pending_change)

    def current_tier(self) -> Tier:
        viewer = self.current_viewer()
        return viewer.tier if viewer is not None else Tier.UNREGISTERED

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        """Call callback(viewer, viewer_id) on login and callback(None, viewer_id) on logout."""

        def _logged_in(sender, user=None, **extra):
            if user is None:
                return
            viewer = Viewer(viewer_id=user.get_id(), tier=coerce_tier(getattr(user, "plan", None)))
            callback(viewer, viewer.viewer_id)

        def _logged_out(sender, user=None, **extra):
            viewer_id = user.get_id() if user is not None and hasattr(user, "get_id") else None
            callback(None, viewer_id)

        user_logged_in.connect(_logged_in, self._app, weak=False)
        user_logged_out.connect(_logged_out, self._app, weak=False)

        def _disconnect():
            user_logged_in.disconnect(_logged_in, self._app)
            user_logged_out.disconnect(_logged_out, self._app)

        return _disconnect


class SessionPlanBinder:
    """Tracks viewers in the reconciliation service as sessions start and end."""

    def __init__(self, reconciliation: PlanReconciliationService, session_context: ViewerSessionContext):
        self._reconciliation = reconciliation
        self._session_context = session_context
        self._disconnect = None

    def bind(self) -> "SessionPlanBinder":
        if self._disconnect is None:
            self._disconnect = self._session_context.on_session_change(self._on_session_change)
        return self

    def unbind(self) -> None:
        if self._disconnect is not None:
            self._disconnect()
            self._disconnect = None

    def _on_session_change(self, viewer: Optional[Viewer], viewer_id: Optional[str]) -> None:
        if viewer is not None:
            self._reconciliation.track_viewer(viewer.viewer_id, viewer.tier)
            return
        if viewer_id:
            logger.debug("Session ended for viewer %s", viewer_id)
            self._reconciliation.release_viewer(viewer_id)
