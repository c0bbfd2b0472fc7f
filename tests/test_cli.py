"""Tests for CLI commands using click CliRunner. No network; paper venue and a static source."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from cli.main import cli
from conftest import AGENT, raw_position
from data.source import StaticSignalSource


@pytest.fixture
def tmp_config(tmp_path: Path) -> Path:
    """Write a temp config.yaml for the paper venue."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
exchange:
  venue: paper
  paper_balance: 10000
follow:
  interval_seconds: 0.01
journal:
  path: "{tmp_path / 'journal.jsonl'}"
notifications:
  structured_logs: false
  sinks: [log]
"""
    )
    return config_path


@pytest.fixture(autouse=True)
def no_secrets(monkeypatch) -> None:
    for name in ("BINANCE_API_KEY", "BINANCE_API_SECRET", "BINANCE_TESTNET", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def static_source():
    src = StaticSignalSource({
        AGENT: [{"BTC": raw_position("BTC", "0.5", profit_target=115000, stop_loss=105000)}],
        "gpt-5": [{}],
    })
    with patch("data.get_signal_source", return_value=src):
        yield src


def test_cli_follow_once_risk_only(tmp_config: Path, static_source) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "follow", AGENT, "--once", "--risk-only"])
    assert result.exit_code == 0, result.output
    assert "RISK-ONLY" in result.output
    assert "ENTER(BTC)" in result.output
    assert "Stopped after 1 cycle(s)." in result.output

    journal = tmp_config.parent / "journal.jsonl"
    events = [json.loads(line)["event"] for line in journal.read_text().splitlines()]
    assert events == ["signal", "trade_plan", "execution"]


def test_cli_follow_unknown_agent(tmp_config: Path, static_source) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "follow", "ghost", "--once"])
    assert result.exit_code == 1
    assert "Unknown agent" in result.output


def test_cli_follow_bad_notifier(tmp_config: Path, static_source) -> None:
    tmp_config.write_text("notifications:\n  sinks: [webhook]\n")
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "follow", AGENT, "--once"])
    assert result.exit_code == 1
    assert "webhook_url" in result.output


def test_cli_agents(tmp_config: Path, static_source) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "agents", "--show", AGENT])
    assert result.exit_code == 0, result.output
    assert "Agents (2):" in result.output
    assert "gpt-5" in result.output
    assert "BTC" in result.output


def test_cli_status(tmp_config: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "status"])
    assert result.exit_code == 0, result.output
    assert "=== Account Status ===" in result.output
    assert "$10,000.00" in result.output
    assert "flat" in result.output


def test_cli_orders_empty(tmp_config: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "orders"])
    assert result.exit_code == 0, result.output
    assert "No open orders." in result.output


def test_cli_orders_id_requires_symbol(tmp_config: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "orders", "--order-id", "1"])
    assert result.exit_code == 2


def test_cli_cancel_all(tmp_config: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "cancel-all", "BTC", "--yes"])
    assert result.exit_code == 0, result.output
    assert "Cancelled all open orders for BTC." in result.output


def test_cli_cancel_all_aborts_without_confirmation(tmp_config: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "cancel-all", "BTC"], input="n\n")
    assert result.exit_code == 1
    assert "Cancelled" not in result.output


def test_cli_binance_without_keys(tmp_config: Path) -> None:
    tmp_config.write_text("exchange:\n  venue: binance\n")
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "status"])
    assert result.exit_code == 1
    assert "BINANCE_API_KEY" in result.output


def test_cli_missing_config(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "status"])
    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_cli_health_healthy(tmp_config: Path, static_source) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(tmp_config), "health"])
    assert result.exit_code == 0, result.output
    assert "[OK] config" in result.output
    assert "[OK] venue: paper reachable" in result.output
    assert "HEALTHY" in result.output


def test_cli_health_unhealthy_source(tmp_config: Path) -> None:
    from follow_core.errors import SignalSourceError

    with patch("data.get_signal_source") as get_source:
        get_source.return_value.list_agents.side_effect = SignalSourceError("feed down")
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(tmp_config), "health"])
    assert result.exit_code == 1
    assert "[FAIL] source: feed down" in result.output
    assert "UNHEALTHY" in result.output


def test_cli_health_bad_config(tmp_path: Path) -> None:
    bad = tmp_path / "config.yaml"
    bad.write_text("exchange:\n  venue: kraken\n")
    runner = CliRunner()
    result = runner.invoke(cli, ["--config", str(bad), "health"])
    assert result.exit_code == 1
    assert "[FAIL] config" in result.output
