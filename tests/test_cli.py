"""Tests for the CLI module."""

import asyncio
import csv
import json

import pytest
from click.testing import CliRunner

import gmail_phish_guard.constants as constants
from conftest import NOW, scored
from gmail_phish_guard.aggregator import merge
from gmail_phish_guard.cli import cli
from gmail_phish_guard.models import RiskLevel
from gmail_phish_guard.store import SqliteStore


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point the store and token paths at a temporary directory."""
    monkeypatch.setattr(constants, "STORE_DB_PATH", tmp_path / "store.db")
    monkeypatch.setattr(constants, "TOKENS_DIR", tmp_path / "tokens")
    monkeypatch.setattr(constants, "CREDENTIALS_PATH", tmp_path / "credentials.json")
    return tmp_path


@pytest.fixture
def stored_record(isolated_config):
    record = merge(
        "alice",
        None,
        [scored("a", RiskLevel.HIGH), scored("b", RiskLevel.LOW, minutes_ago=10)],
        NOW,
    )
    asyncio.run(SqliteStore(db_path=constants.STORE_DB_PATH).put_scan_record("alice", record))
    return record


def test_cli_help():
    """CLI --help should work and show commands."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("scan", "analyze", "results", "history", "export", "sweep", "run", "settings", "store"):
        assert command in result.output


def test_cli_version():
    runner = CliRunner()
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_store_info_empty(isolated_config):
    """Store info on an empty store should not crash."""
    runner = CliRunner()
    result = runner.invoke(cli, ["store", "info"])
    assert result.exit_code == 0
    assert "Store is empty" in result.output


def test_store_info_and_clear(stored_record):
    runner = CliRunner()
    result = runner.invoke(cli, ["store", "info"])
    assert result.exit_code == 0
    assert "Users with results:" in result.output

    result = runner.invoke(cli, ["store", "clear"])
    assert result.exit_code == 0
    assert "Store cleared" in result.output

    result = runner.invoke(cli, ["results", "alice"])
    assert result.exit_code != 0


def test_analyze_plain_fields(tmp_path):
    path = tmp_path / "message.json"
    path.write_text(
        json.dumps(
            {
                "subject": "Urgent: verify your account",
                "sender": "PayPal <support@paypal-secure1.com>",
                "urls": ["http://192.168.1.5/login"],
            }
        )
    )

    runner = CliRunner()
    result = runner.invoke(cli, ["analyze", str(path)])
    assert result.exit_code == 0
    assert "HIGH" in result.output
    assert "192.168.1.5" in result.output


def test_analyze_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")

    runner = CliRunner()
    result = runner.invoke(cli, ["analyze", str(path)])
    assert result.exit_code != 0
    assert "Invalid JSON" in result.output


def test_analyze_rejects_non_object(tmp_path):
    path = tmp_path / "list.json"
    path.write_text("[]")

    runner = CliRunner()
    result = runner.invoke(cli, ["analyze", str(path)])
    assert result.exit_code != 0
    assert "Expected a JSON object" in result.output


def test_results_without_record(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["results", "alice"])
    assert result.exit_code != 0
    assert "No scan results found for alice" in result.output


def test_results_filtered_by_level(stored_record):
    runner = CliRunner()
    result = runner.invoke(cli, ["results", "alice", "--level", "high"])
    assert result.exit_code == 0
    assert "HIGH" in result.output
    assert "LOW" not in result.output


def test_export_csv(stored_record, tmp_path):
    output = tmp_path / "out.csv"
    runner = CliRunner()
    result = runner.invoke(cli, ["export", "alice", "-o", str(output)])
    assert result.exit_code == 0
    assert "Exported 2 emails" in result.output

    with open(output, newline="") as f:
        rows = list(csv.DictReader(f))
    assert [r["id"] for r in rows] == ["a", "b"]
    assert rows[0]["risk_level"] == "HIGH"


def test_export_json(stored_record, tmp_path):
    output = tmp_path / "out.json"
    runner = CliRunner()
    result = runner.invoke(cli, ["export", "alice", "--format", "json", "-o", str(output)])
    assert result.exit_code == 0

    data = json.loads(output.read_text())
    assert data["user_id"] == "alice"
    assert data["summary"] == {"total": 2, "high": 1, "medium": 0, "low": 1}


def test_history_empty(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["history", "alice"])
    assert result.exit_code == 0
    assert "No scan history found" in result.output


def test_settings_set_and_show(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["settings", "set", "alice", "--interval", "30", "--disable"])
    assert result.exit_code == 0

    result = runner.invoke(cli, ["settings", "show", "alice"])
    assert result.exit_code == 0
    assert "30 minutes" in result.output
    assert "disabled" in result.output


def test_settings_set_rejects_unknown_interval(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["settings", "set", "alice", "--interval", "7"])
    assert result.exit_code != 0


def test_settings_set_requires_an_option(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["settings", "set", "alice"])
    assert result.exit_code != 0
    assert "Nothing to update" in result.output


def test_scan_not_connected(isolated_config):
    """Scanning without a stored token should show a clear error."""
    runner = CliRunner()
    result = runner.invoke(cli, ["scan", "alice"])
    assert result.exit_code != 0
    assert "GMAIL_NOT_CONNECTED" in result.output


def test_trigger_not_connected(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["trigger", "alice"])
    assert result.exit_code == 0
    assert "Nothing stored for alice" in result.output


def test_sweep_with_no_users(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["sweep"])
    assert result.exit_code == 0
    assert "Sweep finished" in result.output


def test_disconnect_without_token(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["disconnect", "alice"])
    assert result.exit_code == 0
    assert "no connected Gmail account" in result.output


def test_connect_without_credentials(isolated_config):
    runner = CliRunner()
    result = runner.invoke(cli, ["connect", "alice"])
    assert result.exit_code != 0
    assert "Credentials file not found" in result.output
