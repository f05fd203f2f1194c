"""Toast notification sinks for plan change outcomes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from flask import flash, has_request_context

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
WARNING = "warning"

PLAN_NOTIFICATIONS_KEY = "plan_notifications"


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    code: str
    viewer_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message}


class NotificationSink:
    """Base sink; subclasses deliver notifications to the viewer."""

    def notify(self, notification: Notification) -> None:
        raise NotImplementedError

    def success(self, message: str, viewer_id: Optional[str] = None, code: str = "plan_settled") -> None:
        self.notify(Notification(SUCCESS, message, code, viewer_id))

    def error(self, message: str, viewer_id: Optional[str] = None, code: str = "plan_rolled_back") -> None:
        self.notify(Notification(ERROR, message, code, viewer_id))

    def warning(self, message: str, viewer_id: Optional[str] = None, code: str = "plan_unconfirmed") -> None:
        self.notify(Notification(WARNING, message, code, viewer_id))


class MemoryNotificationSink(NotificationSink):
    """Collects notifications in order."""

    def __init__(self):
        self._items: List[Notification] = []
        self._lock = threading.Lock()

    def notify(self, notification: Notification) -> None:
        with self._lock:
            self._items.append(notification)

    @property
    def notifications(self) -> List[Notification]:
        with self._lock:
            return list(self._items)

    def drain(self, viewer_id: Optional[str] = None) -> List[Notification]:
        """Remove and return pending notifications, only viewer_id's when given."""
        with self._lock:
            if viewer_id is None:
                items, self._items = self._items, []
                return items
            items = [n for n in self._items if n.viewer_id == viewer_id]
            self._items = [n for n in self._items if n.viewer_id != viewer_id]
            return items


class FlashNotificationSink(MemoryNotificationSink):
    """Flashes into the session during a request.

    Outcomes reached on a verification worker have no session to flash into;
    they are queued per viewer and drained by the next plan request.
    """

    def notify(self, notification: Notification) -> None:
        if has_request_context():
            flash(notification.message, notification.level)
            return
        logger.info("Queued plan notification for viewer %s (%s)", notification.viewer_id, notification.code)
        super().notify(notification)
