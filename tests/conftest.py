"""
Pytest configuration and shared fixtures for the ordinance portal tests.
"""
import os
import tempfile

import pytest
from flask_login import FlaskLoginClient

from ordinance_portal import create_app
from ordinance_portal.extensions import db
from ordinance_portal.models import Ordinance, Profile

FREE_VIEWER_ID = 'viewer-free'
PREMIUM_VIEWER_ID = 'viewer-premium'


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'WTF_CSRF_ENABLED': False,
        'SECRET_KEY': 'test-secret-key',
        'PLAN_VERIFY_DELAY_SECONDS': 0.0,
        'PLAN_VERIFY_IN_BACKGROUND': False,
    })
    app.test_client_class = FlaskLoginClient

    with app.app_context():
        db.create_all()
        _create_test_data()

    yield app

    app.extensions['plan_reconciliation'].shutdown()
    with app.app_context():
        db.drop_all()
        db.engine.dispose()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """An anonymous test client."""
    return app.test_client()


@pytest.fixture
def free_client(app):
    return login_client(app, FREE_VIEWER_ID)


@pytest.fixture
def premium_client(app):
    return login_client(app, PREMIUM_VIEWER_ID)


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


def login_client(app, viewer_id):
    """Test client with viewer_id already logged in through Flask-Login."""
    with app.app_context():
        user = db.session.get(Profile, viewer_id)
        assert user.id == viewer_id
    return app.test_client(user=user)


def _create_test_data():
    """Two municipalities, each with one survey-group and one other ordinance."""
    db.session.add_all([
        Profile(id=FREE_VIEWER_ID, username='free_viewer', plan='free'),
        Profile(id=PREMIUM_VIEWER_ID, username='premium_viewer', plan='premium'),
    ])
    db.session.add_all([
        Ordinance(
            id=1,
            municipality_name='札幌市',
            title='Sapporo landscape ordinance',
            first_line='Sapporo landscape first line',
            survey_group='Sapporo landscape summary',
            content='Sapporo landscape full text',
            department='調査',
            category='landscape',
        ),
        Ordinance(
            id=2,
            municipality_name='札幌市',
            title='Sapporo signage ordinance',
            first_line='Sapporo signage first line',
            survey_group='Sapporo signage summary',
            content='Sapporo signage full text',
            department='協議',
            category='signage',
        ),
        Ordinance(
            id=3,
            municipality_name='仙台市',
            title='Sendai development ordinance',
            first_line='Sendai development first line',
            survey_group='Sendai development summary',
            content='Sendai development full text',
            department='協議',
            category='development',
        ),
        Ordinance(
            id=4,
            municipality_name='仙台市',
            title='Sendai survey ordinance',
            first_line='Sendai survey first line',
            survey_group='Sendai survey summary',
            content='Sendai survey full text',
            department='調査',
            category='landscape',
        ),
    ])
    db.session.commit()
