"""
Plan change endpoint tests: optimistic submission, push settlement, and rollback.
"""
from ordinance_portal.extensions import db
from ordinance_portal.models import Profile
from ordinance_portal.services.errors import MutationRejected

from .conftest import FREE_VIEWER_ID, PREMIUM_VIEWER_ID


def test_plan_requires_login(client):
    assert client.get('/api/plan').status_code == 401
    response = client.post('/api/plan', json={'plan': 'premium'})
    assert response.status_code == 401
    assert response.get_json()['message'] == 'Authentication required'


def test_get_plan_tracks_viewer_on_first_request(app, free_client):
    response = free_client.get('/api/plan')
    assert response.status_code == 200
    snapshot = response.get_json()['data']['snapshot']
    assert snapshot['viewer_id'] == FREE_VIEWER_ID
    assert snapshot['plan'] == 'free'
    assert snapshot['pending_change'] is False
    assert app.extensions['plan_reconciliation'].is_tracking(FREE_VIEWER_ID)


def test_upgrade_settles_through_commit_push(app, free_client):
    response = free_client.post('/api/plan', json={'plan': 'premium'})

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['request']['state'] == 'settled'
    assert data['request']['settled_plan'] == 'premium'
    assert data['snapshot']['plan'] == 'premium'
    assert data['snapshot']['status'] == 'confirmed'
    assert data['notifications'] == [
        {'level': 'success', 'message': 'Your plan has been upgraded to premium.'}
    ]

    with app.app_context():
        assert db.session.get(Profile, FREE_VIEWER_ID).plan == 'premium'

    listing = free_client.get('/api/ordinances').get_json()
    assert listing['data']['plan'] == 'premium'


def test_downgrade_accepts_form_payload(premium_client):
    response = premium_client.post('/api/plan', data={'plan': 'free'})
    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['snapshot']['plan'] == 'free'
    assert data['notifications'][0]['message'] == 'Your plan has been changed to free.'


def test_invalid_plan_is_a_validation_error(app, free_client):
    for target in ('unregistered', 'platinum', None):
        response = free_client.post('/api/plan', json={'plan': target})
        assert response.status_code == 422
        assert 'plan' in response.get_json()['errors']

    with app.app_context():
        assert db.session.get(Profile, FREE_VIEWER_ID).plan == 'free'


def test_rejected_write_rolls_back_cached_plan(app, free_client, monkeypatch):
    def _reject(viewer_id, tier):
        raise MutationRejected('write refused')

    monkeypatch.setattr(app.extensions['record_store'], 'mutate_tier', _reject)

    response = free_client.post('/api/plan', json={'plan': 'premium'})
    assert response.status_code == 409
    body = response.get_json()
    assert body['success'] is False
    assert body['message'] == 'Your plan could not be updated. No changes were made.'

    # The rollback notice is delivered once, by the 409 itself.
    snapshot = free_client.get('/api/plan').get_json()['data']
    assert snapshot['snapshot']['plan'] == 'free'
    assert snapshot['snapshot']['status'] == 'rolled_back'
    assert snapshot['notifications'] == []


def test_background_verification_returns_accepted(app, monkeypatch):
    from concurrent.futures import Future

    from .conftest import login_client

    service = app.extensions['plan_reconciliation']

    class _DeferredExecutor:
        def __init__(self):
            self.submitted = []

        def submit(self, fn, *args):
            self.submitted.append((fn, args))
            return Future()

        def shutdown(self, wait=True):
            pass

    executor = _DeferredExecutor()
    monkeypatch.setattr(service, '_executor', executor)
    monkeypatch.setattr(app.extensions['record_store'], 'mutate_tier', lambda viewer_id, tier: None)

    client = login_client(app, PREMIUM_VIEWER_ID)
    response = client.post('/api/plan', json={'plan': 'free'})

    assert response.status_code == 202
    data = response.get_json()['data']
    assert data['request']['state'] == 'verifying'
    assert data['snapshot']['plan'] == 'free'
    assert data['snapshot']['pending_change'] is True
    assert len(executor.submitted) == 1


def test_background_exhaustion_notice_reaches_next_plan_request(app, free_client, monkeypatch):
    import threading
    from concurrent.futures import ThreadPoolExecutor

    service = app.extensions['plan_reconciliation']
    executor = ThreadPoolExecutor(max_workers=1)
    released = threading.Event()

    monkeypatch.setattr(service, '_executor', executor)
    monkeypatch.setattr(service, 'max_attempts', 1)
    # Hold the worker until the POST has answered.
    monkeypatch.setattr(service, '_sleep', lambda seconds: released.wait(5))
    # The write is accepted but never becomes visible to reads.
    monkeypatch.setattr(app.extensions['record_store'], 'mutate_tier', lambda viewer_id, tier: None)

    response = free_client.post('/api/plan', json={'plan': 'premium'})
    assert response.status_code == 202
    assert response.get_json()['data']['notifications'] == []

    released.set()
    executor.shutdown(wait=True)

    data = free_client.get('/api/plan').get_json()['data']
    assert data['snapshot']['plan'] == 'free'
    assert data['snapshot']['pending_change'] is False
    assert data['notifications'] == [
        {'level': 'warning', 'message': 'We could not confirm your plan change yet. Your current plan is free.'}
    ]
    # Drained once.
    assert free_client.get('/api/plan').get_json()['data']['notifications'] == []
