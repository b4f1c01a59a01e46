from datetime import datetime, timezone

import pytest

from agentbuy.cli.admin_cli import build_parser, run
from agentbuy.database import collections
from agentbuy.errors import ConfigurationError
from tests.conftest import FakeCursor


def test_parser_defaults():
    parser = build_parser()
    assert parser.parse_args(["approve-agent"]).email
    assert parser.parse_args(["set-agent", "a@example.com"]).email == "a@example.com"
    assert parser.parse_args(["reconcile-cards", "--fix"]).fix is True
    with pytest.raises(SystemExit):
        parser.parse_args(["set-agent"])


def test_approve_agent_success(mock_db, user_doc, capsys):
    users = mock_db.collections[collections.USERS]
    users.find_one.return_value = user_doc
    approved = {**user_doc, "role": "agent", "is_approved": True, "approved_at": datetime.now(timezone.utc)}
    users.find_one_and_update.side_effect = [{**user_doc, "role": "agent"}, approved]

    assert run(["approve-agent", "buyer@example.com"], db=mock_db) == 0

    out = capsys.readouterr().out
    assert "Agent buyer@example.com is now approved!" in out
    assert "Is Approved: True" in out
    mock_db.connect.assert_awaited_once()
    mock_db.disconnect.assert_awaited_once()


def test_unknown_user_exits_non_zero(mock_db, capsys):
    mock_db.collections[collections.USERS].find_one.return_value = None

    assert run(["set-admin", "ghost@example.com"], db=mock_db) == 1
    assert "ghost@example.com not found" in capsys.readouterr().err
    mock_db.disconnect.assert_awaited_once()


def test_missing_database_uri_exits_non_zero(mock_db):
    mock_db.connect.side_effect = ConfigurationError("MONGODB_URI or DATABASE_URL environment variable must be set")

    assert run(["check-agents"], db=mock_db) == 1
    mock_db.disconnect.assert_awaited_once()


def test_check_agents_report(mock_db, user_doc, capsys):
    mock_db.collections[collections.USERS].find.return_value = FakeCursor([user_doc])

    assert run(["check-agents"], db=mock_db) == 0

    out = capsys.readouterr().out
    assert "Total users in database: 1" in out
    assert "No agents found in database!" in out


def test_seed_cargos(mock_db, capsys):
    assert run(["seed-cargos"], db=mock_db) == 0
    assert "Seeded 5 cargos" in capsys.readouterr().out


def test_no_command_prints_help(mock_db):
    assert run([], db=mock_db) == 1
    mock_db.connect.assert_not_awaited()
