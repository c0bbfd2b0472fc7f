"""
Config loader: YAML file -> frozen dataclass tree.

Secrets are resolved from environment variables (BINANCE_API_KEY,
BINANCE_API_SECRET, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID); BINANCE_TESTNET
overrides ``exchange.testnet``. The config file holds only non-secret
values and is validated against CONFIG_SCHEMA before it is read.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from follow_core.errors import ConfigError

logger = logging.getLogger("follow.config")

_NUMBER_OR_NULL = {"type": ["number", "null"]}

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "source": {
            "type": "object",
            "properties": {
                "base_url": {"type": "string", "minLength": 1},
                "timeout": {"type": "number", "exclusiveMinimum": 0},
                "retries": {"type": "integer", "minimum": 0},
                "backoff": {"type": "number", "minimum": 0},
                "last_hourly_marker": {"type": ["integer", "null"]},
            },
        },
        "exchange": {
            "type": "object",
            "properties": {
                "venue": {"enum": ["binance", "paper"]},
                "testnet": {"type": "boolean"},
                "timeout": {"type": "number", "exclusiveMinimum": 0},
                "retries": {"type": "integer", "minimum": 0},
                "backoff": {"type": "number", "minimum": 0},
                "recv_window": {"type": "integer", "minimum": 1, "maximum": 60000},
                "paper_balance": {"type": "number", "minimum": 0},
                "paper_live_prices": {"type": "boolean"},
            },
        },
        "execution": {
            "type": "object",
            "properties": {
                "fallback_price": {"type": "number", "exclusiveMinimum": 0},
                "margin_warning_ratio": {"type": "number", "exclusiveMinimum": 0, "maximum": 1},
                "max_workers": {"type": "integer", "minimum": 1},
            },
        },
        "follow": {
            "type": "object",
            "properties": {
                "interval_seconds": {"type": "number", "exclusiveMinimum": 0},
                "price_tolerance_pct": _NUMBER_OR_NULL,
                "total_margin": _NUMBER_OR_NULL,
                "risk_only": {"type": "boolean"},
            },
        },
        "journal": {
            "type": "object",
            "properties": {
                "path": {"type": "string"},
                "echo_stdout": {"type": "boolean"},
            },
        },
        "notifications": {
            "type": "object",
            "properties": {
                "structured_logs": {"type": "boolean"},
                "sinks": {
                    "type": "array",
                    "items": {"enum": ["log", "webhook", "telegram"]},
                    "uniqueItems": True,
                },
                "webhook_url": {"type": "string"},
            },
        },
    },
}


@dataclass(frozen=True)
class SourceConfig:
    base_url: str = "https://nof1.ai/api"
    timeout: float = 10.0
    retries: int = 2
    backoff: float = 1.0
    last_hourly_marker: int | None = None


@dataclass(frozen=True)
class ExchangeConfig:
    venue: str = "paper"
    testnet: bool = True
    timeout: float = 10.0
    retries: int = 2
    backoff: float = 0.5
    recv_window: int = 5000
    paper_balance: float = 10_000.0
    paper_live_prices: bool = False
    api_key: str = field(default="", repr=False)
    api_secret: str = field(default="", repr=False)


@dataclass(frozen=True)
class ExecutionConfig:
    fallback_price: float = 1000.0
    margin_warning_ratio: float = 0.8
    max_workers: int = 4


@dataclass(frozen=True)
class FollowConfig:
    interval_seconds: float = 30.0
    price_tolerance_pct: float | None = 1.0
    total_margin: float | None = None
    risk_only: bool = False


@dataclass(frozen=True)
class JournalConfig:
    path: str = "data/journal.jsonl"
    echo_stdout: bool = False


@dataclass(frozen=True)
class NotificationConfig:
    structured_logs: bool = True
    sinks: tuple[str, ...] = ("log",)
    webhook_url: str = ""
    telegram_bot_token: str = field(default="", repr=False)
    telegram_chat_id: str = ""


@dataclass(frozen=True)
class AppConfig:
    source: SourceConfig = SourceConfig()
    exchange: ExchangeConfig = ExchangeConfig()
    execution: ExecutionConfig = ExecutionConfig()
    follow: FollowConfig = FollowConfig()
    journal: JournalConfig = JournalConfig()
    notifications: NotificationConfig = NotificationConfig()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    Secrets are resolved from environment variables:
      - BINANCE_API_KEY / BINANCE_API_SECRET
      - BINANCE_TESTNET (overrides exchange.testnet)
      - TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID

    Raises
    ------
    ConfigError
        Missing file, non-mapping document, or a value rejected by CONFIG_SCHEMA.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    try:
        jsonschema.validate(instance=raw, schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as exc:
        location = ".".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ConfigError(f"Invalid config at {location}: {exc.message}") from exc

    src_raw = raw.get("source") or {}
    src_cfg = SourceConfig(
        base_url=str(src_raw.get("base_url", SourceConfig.base_url)).rstrip("/"),
        timeout=float(src_raw.get("timeout", 10.0)),
        retries=int(src_raw.get("retries", 2)),
        backoff=float(src_raw.get("backoff", 1.0)),
        last_hourly_marker=src_raw.get("last_hourly_marker"),
    )

    ex_raw = raw.get("exchange") or {}
    ex_cfg = ExchangeConfig(
        venue=ex_raw.get("venue", "paper"),
        testnet=_env_bool("BINANCE_TESTNET", bool(ex_raw.get("testnet", True))),
        timeout=float(ex_raw.get("timeout", 10.0)),
        retries=int(ex_raw.get("retries", 2)),
        backoff=float(ex_raw.get("backoff", 0.5)),
        recv_window=int(ex_raw.get("recv_window", 5000)),
        paper_balance=float(ex_raw.get("paper_balance", 10_000)),
        paper_live_prices=bool(ex_raw.get("paper_live_prices", False)),
        api_key=os.environ.get("BINANCE_API_KEY", ""),
        api_secret=os.environ.get("BINANCE_API_SECRET", ""),
    )

    exe_raw = raw.get("execution") or {}
    exe_cfg = ExecutionConfig(
        fallback_price=float(exe_raw.get("fallback_price", 1000.0)),
        margin_warning_ratio=float(exe_raw.get("margin_warning_ratio", 0.8)),
        max_workers=int(exe_raw.get("max_workers", 4)),
    )

    f_raw = raw.get("follow") or {}
    f_cfg = FollowConfig(
        interval_seconds=float(f_raw.get("interval_seconds", 30.0)),
        price_tolerance_pct=_optional_float(f_raw.get("price_tolerance_pct", 1.0)),
        total_margin=_optional_float(f_raw.get("total_margin")),
        risk_only=bool(f_raw.get("risk_only", False)),
    )

    j_raw = raw.get("journal") or {}
    j_cfg = JournalConfig(
        path=j_raw.get("path", "data/journal.jsonl"),
        echo_stdout=bool(j_raw.get("echo_stdout", False)),
    )

    n_raw = raw.get("notifications") or {}
    n_cfg = NotificationConfig(
        structured_logs=bool(n_raw.get("structured_logs", True)),
        sinks=tuple(n_raw.get("sinks", ["log"])),
        webhook_url=str(n_raw.get("webhook_url", "")),
        telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
        telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID", ""),
    )

    if ex_cfg.venue == "binance" and not (ex_cfg.api_key and ex_cfg.api_secret):
        logger.warning("exchange.venue is binance but BINANCE_API_KEY/BINANCE_API_SECRET are not set")

    return AppConfig(
        source=src_cfg,
        exchange=ex_cfg,
        execution=exe_cfg,
        follow=f_cfg,
        journal=j_cfg,
        notifications=n_cfg,
    )
