"""Tests for snapshot parsing: feed payload -> AgentSnapshot, malformed input."""

from decimal import Decimal

import pytest

from conftest import AGENT, raw_position
from follow_core.contracts import PositionSide
from follow_core.errors import MalformedSnapshotError
from follow_core.snapshot import parse_position, parse_snapshot


def test_parse_snapshot_basic(raw_snapshot: dict) -> None:
    snap = parse_snapshot(AGENT, raw_snapshot)
    assert snap.agent_id == AGENT
    assert set(snap.positions) == {"BTC", "ETH"}
    btc = snap.get("BTC")
    assert btc.quantity == Decimal("0.5")
    assert btc.side is PositionSide.LONG
    assert btc.exit_plan.profit_target == Decimal("115000")
    assert btc.exit_plan.stop_loss == Decimal("105000")
    assert snap.get("ETH").side is PositionSide.SHORT


def test_decimal_strings_kept_exact() -> None:
    pos = parse_position(raw_position(quantity="0.123456789", entry_price="112880.2"))
    assert pos.quantity == Decimal("0.123456789")
    assert pos.entry_price == Decimal("112880.2")


def test_unset_oid_sentinel_maps_to_none() -> None:
    pos = parse_position(raw_position(tp_oid=-1, sl_oid=555))
    assert pos.tp_oid is None
    assert pos.sl_oid == 555


def test_zero_thresholds_mean_unset() -> None:
    pos = parse_position(raw_position(profit_target=0, stop_loss="0"))
    assert pos.exit_plan.profit_target is None
    assert pos.exit_plan.stop_loss is None


def test_missing_exit_plan_is_allowed() -> None:
    raw = raw_position()
    del raw["exit_plan"]
    pos = parse_position(raw)
    assert pos.exit_plan.profit_target is None


def test_flat_position_is_not_open() -> None:
    snap = parse_snapshot(AGENT, {"SOL": raw_position("SOL", 0)})
    assert snap.get("SOL").side is PositionSide.FLAT
    assert snap.open_positions() == []


def test_open_positions_sorted_by_symbol(raw_snapshot: dict) -> None:
    snap = parse_snapshot(AGENT, raw_snapshot)
    assert [p.symbol for p in snap.open_positions()] == ["BTC", "ETH"]


def test_snapshot_positions_are_read_only(raw_snapshot: dict) -> None:
    snap = parse_snapshot(AGENT, raw_snapshot)
    with pytest.raises(TypeError):
        snap.positions["XRP"] = snap.get("BTC")


@pytest.mark.parametrize("missing", ["symbol", "quantity", "entry_oid", "current_price", "leverage"])
def test_missing_required_field_raises(missing: str) -> None:
    raw = raw_position()
    del raw[missing]
    with pytest.raises(MalformedSnapshotError):
        parse_snapshot(AGENT, {"BTC": raw})


def test_non_numeric_quantity_raises() -> None:
    with pytest.raises(MalformedSnapshotError, match="quantity"):
        parse_snapshot(AGENT, {"BTC": raw_position(quantity="lots")})


def test_fractional_leverage_raises() -> None:
    with pytest.raises(MalformedSnapshotError, match="leverage"):
        parse_snapshot(AGENT, {"BTC": raw_position(leverage=2.5)})


def test_key_symbol_mismatch_raises() -> None:
    with pytest.raises(MalformedSnapshotError, match="holds position"):
        parse_snapshot(AGENT, {"ETH": raw_position("BTC")})


def test_payload_must_be_mapping() -> None:
    with pytest.raises(MalformedSnapshotError):
        parse_snapshot(AGENT, [raw_position()])
