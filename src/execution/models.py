"""Order, account and result models shared by gateways and the execution engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from follow_core.contracts import OrderSide
from follow_core.errors import FollowError, ProtectiveLegError
from follow_core.plans import TradingPlan


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_MARKET = "STOP_MARKET"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: OrderSide
    type: OrderType
    quantity: Decimal | None
    leverage: int = 0
    price: Decimal | None = None
    stop_price: Decimal | None = None
    close_position: bool = False
    reduce_only: bool = False


@dataclass(frozen=True)
class OrderResponse:
    order_id: str
    symbol: str
    status: str
    avg_price: Decimal = Decimal(0)
    executed_qty: Decimal = Decimal(0)
    side: OrderSide | None = None
    type: OrderType | None = None
    stop_price: Decimal | None = None


@dataclass(frozen=True)
class AccountInfo:
    available_balance: Decimal
    total_wallet_balance: Decimal = Decimal(0)
    total_unrealized_pnl: Decimal = Decimal(0)


@dataclass(frozen=True)
class VenuePosition:
    """A position as the venue reports it (signed quantity)."""

    symbol: str
    quantity: Decimal
    entry_price: Decimal
    leverage: int
    unrealized_pnl: Decimal = Decimal(0)
    mark_price: Decimal | None = None


@dataclass(frozen=True)
class Ticker:
    symbol: str
    last_price: Decimal


@dataclass
class ExecutionResult:
    """Outcome of one TradingPlan.

    ``success`` reflects the primary order only. Protective-leg failures are
    listed in ``leg_errors`` and leave the matching order id as None.
    """

    plan: TradingPlan
    success: bool
    order_id: str | None = None
    take_profit_order_id: str | None = None
    stop_loss_order_id: str | None = None
    error: FollowError | None = None
    executed_quantity: Decimal = Decimal(0)
    avg_price: Decimal | None = None
    required_margin: Decimal | None = None
    warnings: list[str] = field(default_factory=list)
    leg_errors: list[ProtectiveLegError] = field(default_factory=list)
    dry_run: bool = False

    @property
    def symbol(self) -> str:
        return self.plan.symbol

    @property
    def error_kind(self) -> str | None:
        return type(self.error).__name__ if self.error is not None else None
