"""
Gateway factory: static config -> one ExchangeGateway variant.

The venue set is closed (``Venue``); adding a venue means adding a branch
here, never runtime discovery.
"""

from __future__ import annotations

from decimal import Decimal

from config.loader import ExchangeConfig
from execution.binance import BinanceFuturesGateway
from execution.gateway import ExchangeGateway, Venue
from execution.paper import PaperGateway
from follow_core.errors import ConfigError


def create_gateway(config: ExchangeConfig) -> ExchangeGateway:
    """Build the gateway named by ``config.venue``.

    Raises
    ------
    ConfigError
        Unknown venue, or Binance selected without API credentials.
    """
    try:
        venue = Venue(config.venue)
    except ValueError:
        raise ConfigError(
            f"Unknown venue {config.venue!r} (choose from {', '.join(v.value for v in Venue)})"
        ) from None

    if venue is Venue.BINANCE:
        if not config.api_key or not config.api_secret:
            raise ConfigError("Binance venue requires BINANCE_API_KEY and BINANCE_API_SECRET")
        return BinanceFuturesGateway(
            config.api_key,
            config.api_secret,
            testnet=config.testnet,
            timeout=config.timeout,
            retries=config.retries,
            backoff=config.backoff,
            recv_window=config.recv_window,
        )

    market = None
    if config.paper_live_prices:
        # Public market-data endpoints need no credentials.
        market = BinanceFuturesGateway(
            testnet=config.testnet,
            timeout=config.timeout,
            retries=config.retries,
            backoff=config.backoff,
        )
    return PaperGateway(initial_balance=Decimal(str(config.paper_balance)), market_data=market)
