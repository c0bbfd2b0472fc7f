"""Tests for the plan builder and total-margin allocation."""

from decimal import Decimal

from conftest import make_position, make_snapshot
from follow_core.capital import allocate_margin
from follow_core.contracts import OrderSide, Signal, SignalKind
from follow_core.detector import detect_signals
from follow_core.plans import PlanKind, build_plans


def test_enter_long_builds_buy_entry(btc_long) -> None:
    [plan] = build_plans([Signal(SignalKind.ENTER, "BTC", btc_long, "new")])
    assert plan.kind is PlanKind.ENTRY
    assert plan.side is OrderSide.BUY
    assert plan.quantity == Decimal("0.5")
    assert plan.leverage == 10
    assert plan.take_profit == Decimal("115000")
    assert plan.stop_loss == Decimal("105000")
    assert plan.has_protective_legs
    assert plan.reference_price == btc_long.entry_price
    assert plan.plan_id == "BTC-enter-1001"


def test_enter_short_builds_sell_entry(eth_short) -> None:
    [plan] = build_plans([Signal(SignalKind.ENTER, "ETH", eth_short, "new")])
    assert plan.side is OrderSide.SELL
    assert plan.quantity == Decimal("2")
    assert not plan.has_protective_legs


def test_exit_uses_opposite_side_and_abs_quantity(eth_short) -> None:
    [plan] = build_plans([Signal(SignalKind.EXIT, "ETH", eth_short, "closed")])
    assert plan.kind is PlanKind.EXIT
    assert plan.side is OrderSide.BUY
    assert plan.quantity == Decimal("2")
    assert plan.take_profit is None


def test_stop_trigger_records_trigger_price(btc_long) -> None:
    [plan] = build_plans([Signal(SignalKind.STOP_TRIGGER, "BTC", btc_long, "crossed")])
    assert plan.kind is PlanKind.EXIT
    assert plan.side is OrderSide.SELL
    assert plan.stop_price == btc_long.current_price


def test_switch_plans_close_before_open() -> None:
    prev = make_snapshot(make_position("BTC", "0.5", entry_oid=1))
    cur = make_snapshot(make_position("BTC", "-0.3", entry_oid=2))
    plans = build_plans(detect_signals(prev, cur))
    assert [(p.signal_kind, p.side, p.quantity) for p in plans] == [
        (SignalKind.SWITCH_EXIT, OrderSide.SELL, Decimal("0.5")),
        (SignalKind.SWITCH_ENTER, OrderSide.SELL, Decimal("0.3")),
    ]


def test_no_netting_across_symbols(btc_long, eth_short) -> None:
    signals = detect_signals(None, make_snapshot(btc_long, eth_short))
    assert [p.symbol for p in build_plans(signals)] == ["BTC", "ETH"]


# ---------------------------------------------------------------------------
# Total-margin allocation
# ---------------------------------------------------------------------------


def test_allocation_proportional_to_agent_margin() -> None:
    # BTC margin 0.5*100000/10 = 5000, ETH margin 5*4000/4 = 5000
    btc = make_position("BTC", "0.5", entry_price="100000", leverage=10)
    eth = make_position("ETH", "-5", entry_price="4000", leverage=4)
    alloc = allocate_margin([btc, eth], Decimal("1000"))
    assert alloc["BTC"].share == Decimal("0.5")
    assert alloc["BTC"].allocated_margin == Decimal("500")
    assert alloc["ETH"].allocated_margin == Decimal("500")
    assert alloc["BTC"].quantity == Decimal("0.05")
    assert alloc["ETH"].quantity == Decimal("-0.5")


def test_allocation_scales_entry_quantity() -> None:
    btc = make_position("BTC", "0.5", entry_price="100000", leverage=10)
    signals = detect_signals(None, make_snapshot(btc))
    [plan] = build_plans(signals, allocations=allocate_margin([btc], Decimal("1000")))
    assert plan.quantity == Decimal("0.1")
    assert any("margin budget" in w for w in plan.warnings)


def test_allocation_empty_budget() -> None:
    assert allocate_margin([make_position()], Decimal("0")) == {}
