"""
Plan Builder: Signal[] -> TradingPlan[].

One plan per signal, in detector order, so a SWITCH_EXIT plan always
precedes its SWITCH_ENTER plan. No netting across symbols or signals.

    ENTER / SWITCH_ENTER              -> ENTRY plan, side from sign of qty,
                                         protective prices from the exit plan
    EXIT / SWITCH_EXIT / STOP_TRIGGER -> EXIT plan, opposite side, |qty|
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence

from follow_core.capital import Allocation
from follow_core.contracts import OrderSide, Position, Signal, SignalKind
from follow_core.risk import RiskAssessment


class PlanKind(str, Enum):
    ENTRY = "ENTRY"    # market entry, optionally with protective legs
    EXIT = "EXIT"      # reduce-only market close


@dataclass(frozen=True)
class TradingPlan:
    """One independent unit of work for the Execution Engine."""

    plan_id: str
    symbol: str
    side: OrderSide
    quantity: Decimal                      # absolute
    leverage: int
    kind: PlanKind
    signal_kind: SignalKind
    reference_price: Decimal               # agent's entry price (ENTRY) or last seen price (EXIT)
    reason: str = ""
    stop_price: Decimal | None = None      # threshold that fired a STOP_TRIGGER
    take_profit: Decimal | None = None
    stop_loss: Decimal | None = None
    risk: RiskAssessment | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_entry(self) -> bool:
        return self.kind is PlanKind.ENTRY

    @property
    def has_protective_legs(self) -> bool:
        return self.is_entry and (self.take_profit is not None or self.stop_loss is not None)

    def with_warnings(self, *extra: str) -> TradingPlan:
        return replace(self, warnings=self.warnings + tuple(extra))


def _side_of(position: Position) -> OrderSide:
    return OrderSide.BUY if position.quantity > 0 else OrderSide.SELL


def _entry_plan(signal: Signal, allocation: Allocation | None) -> TradingPlan:
    pos = signal.position
    quantity = abs(pos.quantity)
    warnings: tuple[str, ...] = ()
    if allocation is not None:
        quantity = abs(allocation.quantity)
        warnings = (f"Scaled from {abs(pos.quantity)} to {quantity:.8f} by margin budget",)
    return TradingPlan(
        plan_id=f"{pos.symbol}-{signal.kind.value.lower()}-{pos.entry_oid}",
        symbol=pos.symbol,
        side=_side_of(pos),
        quantity=quantity,
        leverage=pos.leverage,
        kind=PlanKind.ENTRY,
        signal_kind=signal.kind,
        reference_price=pos.entry_price,
        reason=signal.reason,
        take_profit=pos.exit_plan.profit_target,
        stop_loss=pos.exit_plan.stop_loss,
        warnings=warnings,
    )


def _exit_plan(signal: Signal) -> TradingPlan:
    pos = signal.position
    stop_price = None
    if signal.kind is SignalKind.STOP_TRIGGER:
        stop_price = pos.current_price
    return TradingPlan(
        plan_id=f"{pos.symbol}-{signal.kind.value.lower()}-{pos.entry_oid}",
        symbol=pos.symbol,
        side=_side_of(pos).opposite,
        quantity=abs(pos.quantity),
        leverage=pos.leverage,
        kind=PlanKind.EXIT,
        signal_kind=signal.kind,
        reference_price=pos.current_price,
        reason=signal.reason,
        stop_price=stop_price,
    )


def build_plan(signal: Signal, allocation: Allocation | None = None) -> TradingPlan:
    if signal.kind.opens:
        return _entry_plan(signal, allocation)
    return _exit_plan(signal)


def build_plans(
    signals: Sequence[Signal],
    *,
    allocations: Mapping[str, Allocation] | None = None,
) -> list[TradingPlan]:
    """Map signals to plans, preserving order.

    Parameters
    ----------
    signals:
        Detector output for one poll.
    allocations:
        Optional symbol -> Allocation from ``allocate_margin``; when present,
        entry quantities are taken from it instead of the agent's size.
    """
    allocations = allocations or {}
    return [build_plan(sig, allocations.get(sig.symbol) if sig.kind.opens else None) for sig in signals]
