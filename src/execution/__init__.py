"""
Execution: TradingPlan -> orders on a configured venue.
Gateways are a closed set (Binance futures, paper); the engine never
depends on a concrete venue.
"""

from execution.engine import ExecutionEngine, order_records
from execution.factory import create_gateway
from execution.gateway import ExchangeGateway, Venue
from execution.models import ExecutionResult, OrderRequest, OrderResponse, OrderType

__all__ = [
    "ExchangeGateway",
    "ExecutionEngine",
    "ExecutionResult",
    "OrderRequest",
    "OrderResponse",
    "OrderType",
    "Venue",
    "create_gateway",
    "order_records",
]
