"""
Signal Detector: previous AgentSnapshot + new AgentSnapshot -> Signal[].

Per symbol, evaluated in strict priority order (first match wins):

    1. Switch        previous open, entry_oid changed, new open
                     -> SWITCH_EXIT(previous), SWITCH_ENTER(new)
    2. New entry     no previous open position, new open -> ENTER(new)
    3. Close         previous open, new flat or missing -> EXIT(previous)
    4. Stop trigger  same entry_oid, price crosses the exit plan -> STOP_TRIGGER(new)
    5. Otherwise     no signal

A flat (quantity 0) position is treated exactly like an absent one.
Symbols are visited in sorted order so the output is deterministic.

Pure: no I/O, never raises for a well-formed pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from follow_core.contracts import AgentSnapshot, Position, Signal, SignalKind
from follow_core.errors import MalformedSnapshotError
from follow_core.session import SessionState

logger = logging.getLogger("follow.detector")


@dataclass(frozen=True)
class Detection:
    """Signals for one poll plus the session state advanced to that poll."""

    signals: list[Signal]
    state: SessionState
    first_poll: bool = False


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_position(key: str, pos: Position) -> None:
    if not isinstance(pos, Position):
        raise MalformedSnapshotError(f"{key}: expected Position, got {type(pos).__name__}")
    if pos.symbol != key:
        raise MalformedSnapshotError(f"{key}: position carries symbol {pos.symbol!r}")
    if not isinstance(pos.quantity, Decimal) or not isinstance(pos.current_price, Decimal):
        raise MalformedSnapshotError(f"{key}: quantity and current_price must be Decimal")
    if pos.leverage is None or pos.leverage <= 0:
        raise MalformedSnapshotError(f"{key}: leverage must be positive, got {pos.leverage!r}")
    if pos.entry_oid is None:
        raise MalformedSnapshotError(f"{key}: entry_oid is required")


def _check_snapshot(snapshot: AgentSnapshot) -> None:
    if not snapshot.agent_id:
        raise MalformedSnapshotError("Snapshot has no agent_id")
    for key, pos in snapshot.positions.items():
        _check_position(key, pos)


# ---------------------------------------------------------------------------
# Stop trigger
# ---------------------------------------------------------------------------


def crossed_exit_plan(position: Position, price: Decimal) -> str | None:
    """Return which threshold *price* is beyond for *position*'s exit plan, if any.

    LONG:  price >= profit_target  or  price <= stop_loss
    SHORT: price <= profit_target  or  price >= stop_loss
    """
    target = position.exit_plan.profit_target
    stop = position.exit_plan.stop_loss
    if position.quantity > 0:
        if target is not None and price >= target:
            return "profit_target"
        if stop is not None and price <= stop:
            return "stop_loss"
    elif position.quantity < 0:
        if target is not None and price <= target:
            return "profit_target"
        if stop is not None and price >= stop:
            return "stop_loss"
    return None


def _stop_trigger(previous: Position, current: Position) -> str | None:
    """Edge-triggered crossing: the new price is beyond a threshold, the old one was not."""
    hit = crossed_exit_plan(current, current.current_price)
    if hit is None:
        return None
    if crossed_exit_plan(current, previous.current_price) == hit:
        return None
    return hit


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _classify(symbol: str, previous: Position | None, current: Position | None) -> list[Signal]:
    prev_open = previous is not None and previous.is_open
    cur_open = current is not None and current.is_open

    if prev_open and cur_open and previous.entry_oid != current.entry_oid:
        return [
            Signal(
                SignalKind.SWITCH_EXIT, symbol, previous,
                f"entry order rotated {previous.entry_oid} -> {current.entry_oid}: "
                f"close {previous.side.value} {abs(previous.quantity)}",
            ),
            Signal(
                SignalKind.SWITCH_ENTER, symbol, current,
                f"entry order rotated {previous.entry_oid} -> {current.entry_oid}: "
                f"open {current.side.value} {abs(current.quantity)}",
            ),
        ]

    if not prev_open and cur_open:
        return [
            Signal(
                SignalKind.ENTER, symbol, current,
                f"new {current.side.value} position {abs(current.quantity)} @ {current.entry_price} "
                f"(oid {current.entry_oid})",
            )
        ]

    if prev_open and not cur_open:
        return [
            Signal(
                SignalKind.EXIT, symbol, previous,
                f"position closed: was {previous.side.value} {abs(previous.quantity)} "
                f"(oid {previous.entry_oid})",
            )
        ]

    if prev_open and cur_open:
        hit = _stop_trigger(previous, current)
        if hit is not None:
            level = getattr(current.exit_plan, hit)
            return [
                Signal(
                    SignalKind.STOP_TRIGGER, symbol, current,
                    f"{hit} {level} crossed at {current.current_price}",
                )
            ]
        if previous.quantity != current.quantity:
            # Same entry order with a different size is left alone.
            logger.debug(
                "%s: quantity %s -> %s with unchanged oid %s; no signal",
                symbol, previous.quantity, current.quantity, current.entry_oid,
            )

    return []


def detect_signals(previous: AgentSnapshot | None, current: AgentSnapshot) -> list[Signal]:
    """Diff two snapshots of one agent into an ordered list of Signals.

    Parameters
    ----------
    previous:
        Last retained snapshot for the agent, or None if never polled.
    current:
        Newly fetched snapshot.

    Raises
    ------
    MalformedSnapshotError
        If either snapshot is structurally invalid or they belong to
        different agents.
    """
    _check_snapshot(current)
    if previous is not None:
        _check_snapshot(previous)
        if previous.agent_id != current.agent_id:
            raise MalformedSnapshotError(
                f"Cannot diff snapshots of different agents: {previous.agent_id} vs {current.agent_id}"
            )

    prev_positions = previous.positions if previous is not None else {}
    symbols = sorted(set(prev_positions) | set(current.positions))

    signals: list[Signal] = []
    for symbol in symbols:
        signals.extend(_classify(symbol, prev_positions.get(symbol), current.positions.get(symbol)))
    return signals


def detect(state: SessionState, snapshot: AgentSnapshot) -> Detection:
    """Diff *snapshot* against the session's previous snapshot for the same agent.

    Returns the signals and a new SessionState holding *snapshot* as the
    baseline. The input state is never modified; on MalformedSnapshotError
    the caller keeps its old state.
    """
    previous = state.previous(snapshot.agent_id)
    signals = detect_signals(previous, snapshot)
    if signals:
        logger.info(
            "%s: %d signal(s): %s",
            snapshot.agent_id, len(signals),
            ", ".join(f"{s.kind.value}({s.symbol})" for s in signals),
        )
    return Detection(signals=signals, state=state.with_snapshot(snapshot), first_poll=previous is None)
