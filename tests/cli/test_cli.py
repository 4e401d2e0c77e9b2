"""Tests for the agentoverflow command line."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from agentoverflow.cli import app, main
from agentoverflow.core.exceptions import StorageUnavailableError
from agentoverflow.core.fingerprint import generate_fingerprint


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            app().parse_args([])

    def test_fingerprint_args(self):
        args = app().parse_args(["fingerprint", "-t", "TypeError", "-m", "boom", "-r", "node@20.1.0"])
        assert (args.type, args.message, args.runtime) == ("TypeError", "boom", "node@20.1.0")


class TestFingerprintCommand:
    def test_json_output(self, capsys):
        assert main(["fingerprint", "-t", "TypeError", "-m", "x is undefined", "-r", "node@20.1.0", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["fingerprint"] == generate_fingerprint("TypeError", "x is undefined", "node@20.1.0")
        assert data["signature"] == "type|x is undefined|node@20"

    def test_text_output(self, capsys):
        main(["fingerprint", "-m", "boom"])
        assert "fingerprint: " in capsys.readouterr().out


class TestConfidenceCommand:
    def test_unverified(self, capsys):
        assert main(["confidence", "0", "0", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data == {"confidence": 0.3, "label": "low", "solved": False}

    def test_solved(self, capsys):
        main(["confidence", "2", "6", "--json"])
        assert json.loads(capsys.readouterr().out)["solved"] is True

    def test_rejects_negative(self, capsys):
        assert main(["confidence", "-1", "0"]) == 1
        assert "non-negative" in capsys.readouterr().err


class TestDatabaseCommands:
    def test_init_db(self, capsys):
        with patch("agentoverflow.core.db.init_schema") as mock_init, patch("agentoverflow.core.db.close_pool"):
            assert main(["init-db"]) == 0
        mock_init.assert_called_once_with(None)
        assert "Schema initialized" in capsys.readouterr().out

    def test_init_db_unavailable(self, capsys):
        with (
            patch("agentoverflow.core.db.init_schema", side_effect=StorageUnavailableError("Database unreachable")),
            patch("agentoverflow.core.db.close_pool"),
        ):
            assert main(["init-db"]) == 1
        assert "Database unreachable" in capsys.readouterr().err

    def test_check_db(self, capsys):
        with patch("agentoverflow.core.db.check_connection", return_value=False), patch("agentoverflow.core.db.close_pool"):
            assert main(["check-db"]) == 1
        assert "unreachable" in capsys.readouterr().out
