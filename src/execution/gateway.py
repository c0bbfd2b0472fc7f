"""
ExchangeGateway: the capability set the Execution Engine is written against.

Concrete venues (execution.binance, execution.paper) implement every method
and are chosen by static configuration through execution.factory. Every
method raises GatewayError on failure; the engine converts those into
ExecutionResults.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum

from execution.models import (
    AccountInfo,
    OrderRequest,
    OrderResponse,
    Ticker,
    VenuePosition,
)


class Venue(str, Enum):
    """Closed set of venue variants selectable from config."""

    BINANCE = "binance"
    PAPER = "paper"


class ExchangeGateway(ABC):
    """Abstract futures venue."""

    name: str = "abstract"

    # ----------------------------------------------------------
    # Connectivity / account
    # ----------------------------------------------------------

    @abstractmethod
    def check_connectivity(self) -> int:
        """Return the venue server time (ms). Raises GatewayError when unreachable."""

    @abstractmethod
    def get_account(self) -> AccountInfo:
        """Balances available for margin."""

    @abstractmethod
    def get_positions(self, symbol: str | None = None) -> list[VenuePosition]:
        """Open positions, optionally for one symbol. Flat positions are omitted."""

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: int) -> None:
        """Set leverage for *symbol*."""

    # ----------------------------------------------------------
    # Orders
    # ----------------------------------------------------------

    @abstractmethod
    def place_order(self, request: OrderRequest) -> OrderResponse:
        """Submit an order. Market orders report executed quantity and avg price."""

    @abstractmethod
    def cancel_order(self, symbol: str, order_id: str) -> OrderResponse:
        """Cancel one order."""

    @abstractmethod
    def get_order(self, symbol: str, order_id: str) -> OrderResponse:
        """Order status."""

    @abstractmethod
    def get_open_orders(self, symbol: str | None = None) -> list[OrderResponse]:
        """Working orders, optionally for one symbol."""

    @abstractmethod
    def cancel_all_orders(self, symbol: str) -> None:
        """Cancel every working order for *symbol*."""

    # ----------------------------------------------------------
    # Market data / precision
    # ----------------------------------------------------------

    @abstractmethod
    def get_ticker(self, symbol: str) -> Ticker:
        """Last traded price."""

    @abstractmethod
    def format_quantity(self, symbol: str, quantity: Decimal) -> Decimal:
        """Round *quantity* down to the venue's step size."""

    @abstractmethod
    def format_price(self, symbol: str, price: Decimal) -> Decimal:
        """Round *price* to the venue's tick size."""

    def close(self) -> None:
        """Release network resources. No-op by default."""
