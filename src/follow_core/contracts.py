"""
Data contracts for follow-core: Position, AgentSnapshot, Signal.

follow-core consumes AgentSnapshots and produces Signals and TradingPlans.
No I/O; these are plain frozen dataclasses. Prices and quantities are
Decimal so venue precision is never lost in float round-trips.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class PositionSide(str, Enum):
    """Direction encoded by the sign of a position's quantity."""

    LONG = "LONG"
    SHORT = "SHORT"
    FLAT = "FLAT"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> OrderSide:
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class SignalKind(str, Enum):
    """Classification of one position change between two snapshots."""

    ENTER = "ENTER"
    EXIT = "EXIT"
    SWITCH_EXIT = "SWITCH_EXIT"
    SWITCH_ENTER = "SWITCH_ENTER"
    STOP_TRIGGER = "STOP_TRIGGER"

    @property
    def opens(self) -> bool:
        return self in (SignalKind.ENTER, SignalKind.SWITCH_ENTER)


@dataclass(frozen=True)
class ExitPlan:
    """Agent's declared exit thresholds. Either may be unset."""

    profit_target: Decimal | None = None
    stop_loss: Decimal | None = None


@dataclass(frozen=True)
class Position:
    """One agent position at one poll instant."""

    symbol: str
    quantity: Decimal              # signed; > 0 long, < 0 short, 0 flat
    entry_oid: int
    entry_price: Decimal
    current_price: Decimal
    leverage: int
    exit_plan: ExitPlan = ExitPlan()
    tp_oid: int | None = None      # wire sentinel -1 maps to None
    sl_oid: int | None = None
    margin: Decimal | None = None
    unrealized_pnl: Decimal | None = None
    confidence: float | None = None

    @property
    def side(self) -> PositionSide:
        if self.quantity > 0:
            return PositionSide.LONG
        if self.quantity < 0:
            return PositionSide.SHORT
        return PositionSide.FLAT

    @property
    def is_open(self) -> bool:
        return self.quantity != 0

    def margin_used(self) -> Decimal:
        """Margin the agent committed: reported margin, else |qty| * entry / leverage."""
        if self.margin is not None and self.margin > 0:
            return self.margin
        return abs(self.quantity) * self.entry_price / Decimal(self.leverage)


@dataclass(frozen=True)
class AgentSnapshot:
    """All positions of one agent at one poll instant. Immutable once built."""

    agent_id: str
    positions: Mapping[str, Position]
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not isinstance(self.positions, MappingProxyType):
            object.__setattr__(self, "positions", MappingProxyType(dict(self.positions)))

    def get(self, symbol: str) -> Position | None:
        return self.positions.get(symbol)

    def open_positions(self) -> list[Position]:
        return [p for _, p in sorted(self.positions.items()) if p.is_open]


@dataclass(frozen=True)
class Signal:
    """One typed change for one symbol, with the position it refers to.

    For EXIT and SWITCH_EXIT the position is the *previous* one; for every
    other kind it is the *new* one.
    """

    kind: SignalKind
    symbol: str
    position: Position
    reason: str
