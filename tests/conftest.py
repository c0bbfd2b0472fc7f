"""Pytest fixtures: raw feed positions and snapshots for deterministic tests."""

from decimal import Decimal
from typing import Any

import pytest

from follow_core.contracts import AgentSnapshot, ExitPlan, Position
from follow_core.snapshot import parse_snapshot

AGENT = "deepseek-chat-v3.1"


def raw_position(
    symbol: str = "BTC",
    quantity: Any = 0.5,
    entry_oid: int = 1001,
    entry_price: Any = 110000,
    current_price: Any = 111000,
    leverage: int = 10,
    profit_target: Any = None,
    stop_loss: Any = None,
    **extra: Any,
) -> dict:
    """One position as the signal feed reports it."""
    raw = {
        "symbol": symbol,
        "quantity": quantity,
        "entry_oid": entry_oid,
        "entry_price": entry_price,
        "current_price": current_price,
        "leverage": leverage,
        "exit_plan": {"profit_target": profit_target, "stop_loss": stop_loss},
        "tp_oid": -1,
        "sl_oid": -1,
    }
    raw.update(extra)
    return raw


def make_position(
    symbol: str = "BTC",
    quantity: str = "0.5",
    entry_oid: int = 1001,
    entry_price: str = "110000",
    current_price: str = "111000",
    leverage: int = 10,
    profit_target: str | None = None,
    stop_loss: str | None = None,
) -> Position:
    return Position(
        symbol=symbol,
        quantity=Decimal(quantity),
        entry_oid=entry_oid,
        entry_price=Decimal(entry_price),
        current_price=Decimal(current_price),
        leverage=leverage,
        exit_plan=ExitPlan(
            profit_target=Decimal(profit_target) if profit_target is not None else None,
            stop_loss=Decimal(stop_loss) if stop_loss is not None else None,
        ),
    )


def make_snapshot(*positions: Position, agent_id: str = AGENT) -> AgentSnapshot:
    return AgentSnapshot(agent_id=agent_id, positions={p.symbol: p for p in positions})


@pytest.fixture
def agent_id() -> str:
    return AGENT


@pytest.fixture
def btc_long() -> Position:
    return make_position("BTC", "0.5", entry_oid=1001, profit_target="115000", stop_loss="105000")


@pytest.fixture
def eth_short() -> Position:
    return make_position("ETH", "-2", entry_oid=2001, entry_price="4000", current_price="3950", leverage=5)


@pytest.fixture
def raw_snapshot() -> dict:
    return {
        "BTC": raw_position("BTC", 0.5, profit_target=115000, stop_loss=105000),
        "ETH": raw_position("ETH", "-2", entry_oid=2001, entry_price="4000", current_price="3950", leverage=5),
    }


@pytest.fixture
def parsed_snapshot(raw_snapshot: dict) -> AgentSnapshot:
    return parse_snapshot(AGENT, raw_snapshot)
