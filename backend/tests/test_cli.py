"""
Tests for the pipeline CLI (click).
"""

import json

import pytest
from click.testing import CliRunner

import cli as cli_module
from models.admin_session import AdminSession
from models.database import db


@pytest.fixture
def runner(app, monkeypatch):
    """CLI bound to the test app instead of a freshly built one."""
    monkeypatch.setattr(cli_module, 'get_app_context', lambda: app.app_context())
    return CliRunner()


def test_sessions_add_from_stdin(runner):
    result = runner.invoke(
        cli_module.cli,
        ['sessions-add', 'arka', '--label', 'ops laptop'],
        input="-H 'authorization: Bearer abc' \\\n-H 'accept: */*'\n",
    )

    assert result.exit_code == 0, result.output
    assert 'Registered arka session' in result.output
    row = db.session.query(AdminSession).one()
    assert row.label == 'ops laptop'
    assert row.headers == {'authorization': 'Bearer abc', 'accept': '*/*'}


def test_sessions_add_rejects_empty_headers(runner):
    result = runner.invoke(cli_module.cli, ['sessions-add', 'divar'], input="\n")
    assert result.exit_code == 1
    assert 'Headers are required' in result.output


def test_sessions_list(runner):
    runner.invoke(cli_module.cli, ['sessions-add', 'arka'], input="Authorization: Bearer abc\n")

    result = runner.invoke(cli_module.cli, ['sessions-list'])

    assert result.exit_code == 0
    sessions = json.loads(result.output)
    assert sessions[0]['service'] == 'arka'
    assert sessions[0]['header_names'] == ['Authorization']


def test_fetch_next_without_session_exits_nonzero(runner, clock):
    result = runner.invoke(cli_module.cli, ['fetch-next', '--force'])

    assert result.exit_code == 1
    assert json.loads(result.output)['reason'] == 'missing_headers'


def test_transfer_one_forced(runner, clock):
    result = runner.invoke(cli_module.cli, ['transfer-one', '--force'])

    assert result.exit_code == 0
    assert json.loads(result.output) == {'kind': 'skipped', 'reason': 'no_pending_records'}


def test_status(runner, clock):
    result = runner.invoke(cli_module.cli, ['status'])

    assert result.exit_code == 0
    assert json.loads(result.output)['posts']['pending'] == 0
