import logging

from flask import current_app, get_flashed_messages
from flask_login import current_user, login_required

from . import plan_bp
from ...services.notifications import PLAN_NOTIFICATIONS_KEY
from ...services.plan_tiers import require_plan_target
from ...utils.api_responses import APIResponse

logger = logging.getLogger(__name__)


def _reconciliation():
    return current_app.extensions['plan_reconciliation']


def _drain_notifications(viewer_id):
    """Flashed outcomes from this session, then outcomes queued by background verification."""
    flashed = [
        {'level': level, 'message': message}
        for level, message in get_flashed_messages(with_categories=True)
    ]
    queued = current_app.extensions[PLAN_NOTIFICATIONS_KEY].drain(viewer_id)
    return flashed + [notification.to_dict() for notification in queued]


@plan_bp.route('/plan', methods=['GET'])
@login_required
def get_plan():
    """Current best-known plan for the logged-in viewer."""
    viewer = current_app.extensions['viewer_session'].current_viewer()
    service = _reconciliation()
    snapshot = service.snapshot(viewer.viewer_id)
    request_obj = service.in_flight(viewer.viewer_id)
    return APIResponse.success({
        'snapshot': snapshot.to_dict() if snapshot else None,
        'request': request_obj.to_dict() if request_obj else None,
        'notifications': _drain_notifications(viewer.viewer_id),
    })


@plan_bp.route('/plan', methods=['POST'])
@login_required
def change_plan():
    """Request a plan change; the checkout step before an upgrade is a stub."""
    data = APIResponse.request_payload()
    target = require_plan_target(data.get('plan'))

    viewer = current_app.extensions['viewer_session'].current_viewer()
    service = _reconciliation()
    logger.info("Plan change to %s requested by viewer %s", target.value, current_user.get_id())
    change = service.change_plan(viewer.viewer_id, target)
    snapshot = service.snapshot(viewer.viewer_id)

    status_code = 202 if not change.is_terminal else 200
    return APIResponse.success({
        'request': change.to_dict(),
        'snapshot': snapshot.to_dict() if snapshot else None,
        'notifications': _drain_notifications(viewer.viewer_id),
    }, message=f"Plan change {change.state.value}", status_code=status_code)
