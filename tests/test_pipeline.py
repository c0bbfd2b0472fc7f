"""Tests for the pure pipeline: detect -> plan -> risk -> tolerance."""

from decimal import Decimal

import pytest

from conftest import AGENT, make_position, make_snapshot
from follow_core.contracts import AgentSnapshot, Position
from follow_core.errors import MalformedSnapshotError
from follow_core.pipeline import run_pipeline
from follow_core.session import SessionState


def test_first_poll_plans_every_position(btc_long, eth_short) -> None:
    result = run_pipeline(SessionState(), make_snapshot(btc_long, eth_short))
    assert result.first_poll is True
    assert [p.symbol for p in result.plans] == ["BTC", "ETH"]
    assert result.state.cycles == 1


def test_risk_annotation_and_warnings(btc_long) -> None:
    result = run_pipeline(SessionState(), make_snapshot(btc_long))
    [plan] = result.plans
    assert plan.risk.score == 100
    assert "High leverage detected" in plan.warnings


def test_entry_skipped_when_price_drifted() -> None:
    drifted = make_position("BTC", "0.5", entry_price="100000", current_price="103000")
    result = run_pipeline(SessionState(), make_snapshot(drifted), price_tolerance_pct=1.0)
    assert result.plans == []
    assert len(result.skipped) == 1
    assert "exceeds" in result.skipped[0].reason
    # Baseline still advances so the position is not re-entered next poll.
    assert result.state.has_baseline(AGENT)


def test_exit_never_skipped_by_tolerance() -> None:
    prev = make_snapshot(make_position("BTC", "0.5", entry_price="100000", current_price="90000"))
    state = run_pipeline(SessionState(), prev).state
    result = run_pipeline(state, make_snapshot(), price_tolerance_pct=0.1)
    assert [p.symbol for p in result.plans] == ["BTC"]
    assert result.skipped == []


def test_total_margin_scales_plans() -> None:
    btc = make_position("BTC", "0.5", entry_price="100000", current_price="100000", leverage=10)
    result = run_pipeline(SessionState(), make_snapshot(btc), total_margin=1000)
    assert result.plans[0].quantity == Decimal("0.1")
    assert result.allocations["BTC"].allocated_margin == Decimal("1000")


def test_malformed_snapshot_leaves_state_untouched(btc_long) -> None:
    state = run_pipeline(SessionState(), make_snapshot(btc_long)).state
    bad = AgentSnapshot(
        agent_id=AGENT,
        positions={"ETH": Position("BTC", Decimal("1"), 1, Decimal("1"), Decimal("1"), 1)},
    )
    with pytest.raises(MalformedSnapshotError):
        run_pipeline(state, bad)
    assert state.cycles == 1
    assert state.previous(AGENT).get("BTC") == btc_long
