"""
Paper venue: in-memory simulated futures account.

Market orders fill immediately at the ticker price. Stop and take-profit
orders rest as open orders until cancelled or until ``mark_price`` moves
through them. Prices come from ``set_price`` or, when given, a real
gateway used for market data only. Single process; nothing is persisted.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, replace
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from execution.gateway import ExchangeGateway
from execution.models import (
    AccountInfo,
    OrderRequest,
    OrderResponse,
    OrderType,
    Ticker,
    VenuePosition,
)
from follow_core.contracts import OrderSide
from follow_core.errors import GatewayError

logger = logging.getLogger("follow.paper")

QUANTITY_STEP = Decimal("0.001")
PRICE_TICK = Decimal("0.01")


@dataclass
class _PaperPosition:
    quantity: Decimal
    entry_price: Decimal
    leverage: int


class PaperGateway(ExchangeGateway):
    """Simulated venue. Thread-safe; the engine may call it from several workers."""

    name = "paper"

    def __init__(
        self,
        *,
        initial_balance: Decimal | float = Decimal(10_000),
        prices: dict[str, Decimal | float] | None = None,
        market_data: ExchangeGateway | None = None,
        default_leverage: int = 1,
    ) -> None:
        self._wallet = Decimal(str(initial_balance))
        self._prices = {k: Decimal(str(v)) for k, v in (prices or {}).items()}
        self._market = market_data
        self._default_leverage = default_leverage
        self._leverage: dict[str, int] = {}
        self._positions: dict[str, _PaperPosition] = {}
        self._orders: dict[str, OrderResponse] = {}
        self._resting_qty: dict[str, Decimal | None] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # ----------------------------------------------------------
    # Simulation controls
    # ----------------------------------------------------------

    def set_price(self, symbol: str, price: Decimal | float) -> None:
        with self._lock:
            self._prices[symbol] = Decimal(str(price))

    def mark_price(self, symbol: str, price: Decimal | float) -> list[OrderResponse]:
        """Set *price* and fill any resting stop/take-profit orders it crosses."""
        price = Decimal(str(price))
        filled = []
        with self._lock:
            self._prices[symbol] = price
            for oid, order in list(self._orders.items()):
                if order.symbol != symbol or order.status != "NEW" or order.stop_price is None:
                    continue
                if self._crossed(order, price):
                    filled.append(self._fill_resting(oid, order, price))
        return filled

    @staticmethod
    def _crossed(order: OrderResponse, price: Decimal) -> bool:
        # Closing a long sells; TP fires above, SL fires below. Mirrored for shorts.
        if order.type is OrderType.TAKE_PROFIT_MARKET:
            return price >= order.stop_price if order.side is OrderSide.SELL else price <= order.stop_price
        return price <= order.stop_price if order.side is OrderSide.SELL else price >= order.stop_price

    def _fill_resting(self, oid: str, order: OrderResponse, price: Decimal) -> OrderResponse:
        pos = self._positions.get(order.symbol)
        qty = Decimal(0)
        if pos is not None:
            intended = self._resting_qty.pop(oid, None)
            # None means closePosition: the whole position.
            qty = abs(pos.quantity) if intended is None else min(intended, abs(pos.quantity))
        if qty > 0:
            self._apply_fill(order.symbol, order.side, qty, price)
        done = replace(order, status="FILLED", avg_price=price, executed_qty=qty)
        self._orders[oid] = done
        logger.info("Paper %s %s filled at %s", order.type.value, order.symbol, price)
        return done

    # ----------------------------------------------------------
    # Connectivity / account
    # ----------------------------------------------------------

    def check_connectivity(self) -> int:
        if self._market is not None:
            return self._market.check_connectivity()
        return int(time.time() * 1000)

    def _margin_used(self) -> Decimal:
        return sum(
            (abs(p.quantity) * p.entry_price / Decimal(max(p.leverage, 1)) for p in self._positions.values()),
            Decimal(0),
        )

    def _unrealized(self) -> Decimal:
        total = Decimal(0)
        for symbol, pos in self._positions.items():
            mark = self._prices.get(symbol)
            if mark is not None:
                total += (mark - pos.entry_price) * pos.quantity
        return total

    def get_account(self) -> AccountInfo:
        with self._lock:
            return AccountInfo(
                available_balance=self._wallet - self._margin_used(),
                total_wallet_balance=self._wallet,
                total_unrealized_pnl=self._unrealized(),
            )

    def get_positions(self, symbol: str | None = None) -> list[VenuePosition]:
        with self._lock:
            out = []
            for sym, pos in sorted(self._positions.items()):
                if symbol and sym != symbol:
                    continue
                mark = self._prices.get(sym)
                out.append(
                    VenuePosition(
                        symbol=sym,
                        quantity=pos.quantity,
                        entry_price=pos.entry_price,
                        leverage=pos.leverage,
                        unrealized_pnl=(mark - pos.entry_price) * pos.quantity if mark else Decimal(0),
                        mark_price=mark,
                    )
                )
            return out

    def set_leverage(self, symbol: str, leverage: int) -> None:
        if leverage < 1 or leverage > 125:
            raise GatewayError(f"Leverage {leverage} out of range", code=-4028)
        with self._lock:
            self._leverage[symbol] = int(leverage)

    # ----------------------------------------------------------
    # Orders
    # ----------------------------------------------------------

    def _next_id(self) -> str:
        return f"paper-{next(self._ids)}"

    def _apply_fill(self, symbol: str, side: OrderSide, qty: Decimal, price: Decimal) -> None:
        signed = qty if side is OrderSide.BUY else -qty
        pos = self._positions.get(symbol)
        leverage = self._leverage.get(symbol, self._default_leverage)
        if pos is None:
            self._positions[symbol] = _PaperPosition(signed, price, leverage)
            return

        new_qty = pos.quantity + signed
        if pos.quantity * signed > 0:
            # Adding to the position: weighted average entry.
            pos.entry_price = (pos.entry_price * abs(pos.quantity) + price * qty) / abs(new_qty)
            pos.quantity = new_qty
            return

        closed = min(abs(signed), abs(pos.quantity))
        direction = Decimal(1) if pos.quantity > 0 else Decimal(-1)
        self._wallet += (price - pos.entry_price) * closed * direction
        if new_qty == 0:
            del self._positions[symbol]
        elif new_qty * pos.quantity < 0:
            self._positions[symbol] = _PaperPosition(new_qty, price, leverage)
        else:
            pos.quantity = new_qty

    def place_order(self, request: OrderRequest) -> OrderResponse:
        with self._lock:
            symbol = request.symbol
            pos = self._positions.get(symbol)
            qty = request.quantity or Decimal(0)

            if request.reduce_only or request.close_position:
                if pos is None or (pos.quantity > 0) == (request.side is OrderSide.BUY):
                    raise GatewayError("ReduceOnly Order is rejected.", code=-2022)
                qty = abs(pos.quantity) if request.close_position else min(qty, abs(pos.quantity))
            if qty <= 0:
                raise GatewayError("Quantity less than or equal to zero.", code=-4003)

            oid = self._next_id()
            if request.type is OrderType.MARKET:
                price = self.get_ticker(symbol).last_price
                self._apply_fill(symbol, request.side, qty, price)
                response = OrderResponse(
                    order_id=oid, symbol=symbol, status="FILLED",
                    avg_price=price, executed_qty=qty, side=request.side, type=request.type,
                )
            else:
                if request.type is not OrderType.LIMIT and request.stop_price is None:
                    raise GatewayError(f"{request.type.value} order requires a stop price", code=-1102)
                response = OrderResponse(
                    order_id=oid, symbol=symbol, status="NEW",
                    side=request.side, type=request.type, stop_price=request.stop_price,
                )
                self._resting_qty[oid] = None if request.close_position else qty
            self._orders[oid] = response
            logger.info("Paper %s %s %s %s -> %s", request.type.value, request.side.value, qty, symbol, oid)
            return response

    def cancel_order(self, symbol: str, order_id: str) -> OrderResponse:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.symbol != symbol:
                raise GatewayError("Unknown order sent.", code=-2011)
            if order.status != "NEW":
                raise GatewayError(f"Order {order_id} is {order.status}", code=-2011)
            cancelled = replace(order, status="CANCELED")
            self._orders[order_id] = cancelled
            self._resting_qty.pop(order_id, None)
            return cancelled

    def get_order(self, symbol: str, order_id: str) -> OrderResponse:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.symbol != symbol:
                raise GatewayError("Order does not exist.", code=-2013)
            return order

    def get_open_orders(self, symbol: str | None = None) -> list[OrderResponse]:
        with self._lock:
            return [
                o for o in self._orders.values()
                if o.status == "NEW" and (symbol is None or o.symbol == symbol)
            ]

    def cancel_all_orders(self, symbol: str) -> None:
        with self._lock:
            for oid, order in list(self._orders.items()):
                if order.symbol == symbol and order.status == "NEW":
                    self._orders[oid] = replace(order, status="CANCELED")
                    self._resting_qty.pop(oid, None)

    # ----------------------------------------------------------
    # Market data / precision
    # ----------------------------------------------------------

    def get_ticker(self, symbol: str) -> Ticker:
        with self._lock:
            price = self._prices.get(symbol)
        if price is not None:
            return Ticker(symbol=symbol, last_price=price)
        if self._market is not None:
            ticker = self._market.get_ticker(symbol)
            self.set_price(symbol, ticker.last_price)
            return ticker
        raise GatewayError(f"No price for {symbol}")

    def format_quantity(self, symbol: str, quantity: Decimal) -> Decimal:
        return quantity.quantize(QUANTITY_STEP, rounding=ROUND_DOWN)

    def format_price(self, symbol: str, price: Decimal) -> Decimal:
        return price.quantize(PRICE_TICK, rounding=ROUND_HALF_UP)

    def close(self) -> None:
        if self._market is not None:
            self._market.close()
