import logging

import pytest

from ordinance_portal import create_app
from ordinance_portal.config import EnvReader, resolve_environment
from ordinance_portal.logging_config import PiiRedactionFilter, _coerce_level


def test_env_reader_parses_typed_values():
    reader = EnvReader({
        'PLAN_VERIFY_MAX_ATTEMPTS': '7',
        'PLAN_VERIFY_DELAY_SECONDS': '0.5',
        'PLAN_VERIFY_IN_BACKGROUND': 'yes',
        'BLANK': '   ',
    })
    assert reader.int('PLAN_VERIFY_MAX_ATTEMPTS', 5) == 7
    assert reader.float('PLAN_VERIFY_DELAY_SECONDS', 1.0) == 0.5
    assert reader.bool('PLAN_VERIFY_IN_BACKGROUND') is True
    assert reader.str('BLANK', 'fallback') == 'fallback'
    assert reader.warnings == []


def test_env_reader_warns_and_falls_back_on_bad_values():
    reader = EnvReader({'PLAN_VERIFY_MAX_ATTEMPTS': 'many', 'PLAN_VERIFY_IN_BACKGROUND': 'maybe'})
    assert reader.int('PLAN_VERIFY_MAX_ATTEMPTS', 5) == 5
    assert reader.bool('PLAN_VERIFY_IN_BACKGROUND', False) is False
    assert len(reader.warnings) == 2


def test_resolve_environment_rejects_unknown_env():
    assert resolve_environment(EnvReader({'FLASK_ENV': ' Production '})).name == 'production'
    with pytest.raises(RuntimeError):
        resolve_environment(EnvReader({'FLASK_ENV': 'qa'}))


def test_app_exposes_plan_settings(app):
    assert app.config['PLAN_VERIFY_MAX_ATTEMPTS'] == 5
    assert app.config['SURVEY_GROUP_KEY'] == '調査'
    assert app.extensions['plan_reconciliation'].delay_seconds == 0.0


def test_background_verification_builds_executor():
    app = create_app({
        'TESTING': True,
        'DATABASE_URL': 'sqlite:///:memory:',
        'PLAN_VERIFY_IN_BACKGROUND': True,
        'PLAN_VERIFY_WORKERS': 2,
    })
    service = app.extensions['plan_reconciliation']
    try:
        assert service._executor is not None
    finally:
        service.shutdown()


def test_pii_redaction_filter_masks_contact_details():
    record = logging.LogRecord(
        'ordinance_portal', logging.INFO, __file__, 1,
        'viewer %s phone %s token=%s', ('someone@example.com', '03-1234-5678', 'abc123'), None,
    )

    assert PiiRedactionFilter().filter(record) is True

    message = record.getMessage()
    assert 'someone@example.com' not in message
    assert '[REDACTED_EMAIL]' in message
    assert '[REDACTED_PHONE]' in message
    assert 'token=[REDACTED]' in message


@pytest.mark.parametrize('raw,expected', [
    ('debug', logging.DEBUG),
    (logging.ERROR, logging.ERROR),
    ('nonsense', logging.INFO),
    (None, logging.INFO),
])
def test_coerce_level(raw, expected):
    assert _coerce_level(raw) == expected


def test_seed_demo_command_is_idempotent(runner):
    first = runner.invoke(args=['seed-demo', '--premium-viewer', 'demo_premium'])
    second = runner.invoke(args=['seed-demo'])

    assert first.exit_code == 0
    assert 'Ordinances already present' in first.output
    assert 'Created premium viewer: demo_premium' in first.output
    assert second.exit_code == 0
    assert 'Created' not in second.output
