"""
Binance USDⓈ-M futures gateway over signed REST.

Agent symbols are bare assets ("BTC"); the venue trades the USDT-margined
perpetual ("BTCUSDT"). Responses are mapped back to the agent symbol so
the engine never sees venue naming.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import random
import threading
import time
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlencode

import requests

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

logger = logging.getLogger("follow.binance")

MAINNET_URL = "https://fapi.binance.com"
TESTNET_URL = "https://testnet.binancefuture.com"
QUOTE_ASSET = "USDT"

DEFAULT_STEP_SIZE = Decimal("0.001")
DEFAULT_TICK_SIZE = Decimal("0.01")
RETRY_STATUS = (408, 429, 500, 502, 503, 504)


def to_venue_symbol(symbol: str) -> str:
    """'BTC' -> 'BTCUSDT'. Already-qualified symbols pass through."""
    s = symbol.strip().upper()
    return s if s.endswith(QUOTE_ASSET) else f"{s}{QUOTE_ASSET}"


def from_venue_symbol(symbol: str) -> str:
    s = symbol.upper()
    return s[: -len(QUOTE_ASSET)] if s.endswith(QUOTE_ASSET) and len(s) > len(QUOTE_ASSET) else s


def _dec(value: Any, default: str = "0") -> Decimal:
    if value in (None, ""):
        return Decimal(default)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(default)


def _plain(value: Decimal) -> str:
    """Decimal -> venue string without exponent or trailing zeros."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


class BinanceFuturesGateway(ExchangeGateway):
    """Signed REST client for Binance USDⓈ-M futures."""

    name = "binance"

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        *,
        testnet: bool = False,
        base_url: str | None = None,
        timeout: float = 10.0,
        retries: int = 2,
        backoff: float = 0.5,
        recv_window: int = 5000,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self.base_url = (base_url or (TESTNET_URL if testnet else MAINNET_URL)).rstrip("/")
        self.testnet = testnet
        self._timeout = timeout
        self._retries = max(0, retries)
        self._backoff = max(0.0, backoff)
        self._recv_window = recv_window
        self._session = session or requests.Session()
        self._filters: dict[str, tuple[Decimal, Decimal]] | None = None
        self._filters_lock = threading.Lock()

    # ----------------------------------------------------------
    # Transport
    # ----------------------------------------------------------

    def _sign(self, params: dict[str, Any]) -> str:
        params = {k: v for k, v in params.items() if v is not None}
        params["timestamp"] = int(time.time() * 1000)
        params["recvWindow"] = self._recv_window
        query = urlencode(params)
        signature = hmac.new(
            self._api_secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256,
        ).hexdigest()
        return f"{query}&signature={signature}"

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        signed: bool = False,
    ) -> Any:
        if signed and not (self._api_key and self._api_secret):
            raise GatewayError("Binance API key/secret not configured")

        params = dict(params or {})
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-MBX-APIKEY"] = self._api_key

        # Writes are sent once: a timeout may still have reached the matching engine.
        retries = self._retries if method == "GET" else 0
        attempt = 0
        while True:
            # Signature embeds a timestamp, so it is recomputed per attempt.
            if signed:
                url = f"{self.base_url}{path}?{self._sign(params)}"
            else:
                clean = {k: v for k, v in params.items() if v is not None}
                url = f"{self.base_url}{path}" + (f"?{urlencode(clean)}" if clean else "")
            try:
                resp = self._session.request(method, url, headers=headers, timeout=self._timeout)
            except requests.RequestException as exc:
                if attempt < retries:
                    delay = self._delay(attempt)
                    logger.warning("%s %s failed: %s; retrying in %.1fs", method, path, exc, delay)
                    time.sleep(delay)
                    attempt += 1
                    continue
                raise GatewayError(f"{method} {path}: {exc}") from exc

            if resp.status_code in RETRY_STATUS and attempt < retries:
                delay = self._delay(attempt, resp.headers.get("Retry-After"))
                logger.warning("%s %s -> %s; retrying in %.1fs", method, path, resp.status_code, delay)
                time.sleep(delay)
                attempt += 1
                continue
            return self._parse(method, path, resp)

    def _delay(self, attempt: int, retry_after: str | None = None) -> float:
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass
        return max(0.1, self._backoff * (attempt + 1) * random.uniform(0.85, 1.15))

    @staticmethod
    def _parse(method: str, path: str, resp: requests.Response) -> Any:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if 200 <= resp.status_code < 300:
            return body
        code = msg = None
        if isinstance(body, dict):
            code, msg = body.get("code"), body.get("msg")
        raise GatewayError(
            f"{method} {path} -> HTTP {resp.status_code}: {msg or resp.text[:200]}",
            code=code,
        )

    # ----------------------------------------------------------
    # Precision
    # ----------------------------------------------------------

    def _load_filters(self) -> dict[str, tuple[Decimal, Decimal]]:
        with self._filters_lock:
            if self._filters is not None:
                return self._filters
            data = self._request("GET", "/fapi/v1/exchangeInfo")
            filters: dict[str, tuple[Decimal, Decimal]] = {}
            for sym in (data or {}).get("symbols", []):
                step, tick = DEFAULT_STEP_SIZE, DEFAULT_TICK_SIZE
                for f in sym.get("filters", []):
                    if f.get("filterType") == "LOT_SIZE":
                        step = _dec(f.get("stepSize"), str(DEFAULT_STEP_SIZE))
                    elif f.get("filterType") == "PRICE_FILTER":
                        tick = _dec(f.get("tickSize"), str(DEFAULT_TICK_SIZE))
                filters[sym["symbol"]] = (step, tick)
            self._filters = filters
            logger.debug("Loaded precision filters for %d symbols", len(filters))
            return filters

    def _precision(self, symbol: str) -> tuple[Decimal, Decimal]:
        try:
            filters = self._load_filters()
        except GatewayError as exc:
            logger.warning("exchangeInfo unavailable, using default precision: %s", exc)
            return DEFAULT_STEP_SIZE, DEFAULT_TICK_SIZE
        return filters.get(to_venue_symbol(symbol), (DEFAULT_STEP_SIZE, DEFAULT_TICK_SIZE))

    def format_quantity(self, symbol: str, quantity: Decimal) -> Decimal:
        step, _ = self._precision(symbol)
        if step <= 0:
            return quantity
        return ((quantity / step).to_integral_value(rounding=ROUND_DOWN) * step).normalize()

    def format_price(self, symbol: str, price: Decimal) -> Decimal:
        _, tick = self._precision(symbol)
        if tick <= 0:
            return price
        return ((price / tick).to_integral_value(rounding=ROUND_HALF_UP) * tick).normalize()

    # ----------------------------------------------------------
    # Connectivity / account
    # ----------------------------------------------------------

    def check_connectivity(self) -> int:
        data = self._request("GET", "/fapi/v1/time")
        return int((data or {}).get("serverTime", 0))

    def get_account(self) -> AccountInfo:
        data = self._request("GET", "/fapi/v2/account", signed=True) or {}
        return AccountInfo(
            available_balance=_dec(data.get("availableBalance")),
            total_wallet_balance=_dec(data.get("totalWalletBalance")),
            total_unrealized_pnl=_dec(data.get("totalUnrealizedProfit")),
        )

    def get_positions(self, symbol: str | None = None) -> list[VenuePosition]:
        params = {"symbol": to_venue_symbol(symbol)} if symbol else None
        rows = self._request("GET", "/fapi/v2/positionRisk", params, signed=True) or []
        positions = []
        for row in rows:
            qty = _dec(row.get("positionAmt"))
            if qty == 0:
                continue
            positions.append(
                VenuePosition(
                    symbol=from_venue_symbol(row.get("symbol", "")),
                    quantity=qty,
                    entry_price=_dec(row.get("entryPrice")),
                    leverage=int(_dec(row.get("leverage"), "1")),
                    unrealized_pnl=_dec(row.get("unRealizedProfit")),
                    mark_price=_dec(row.get("markPrice")) if row.get("markPrice") else None,
                )
            )
        return positions

    def set_leverage(self, symbol: str, leverage: int) -> None:
        self._request(
            "POST", "/fapi/v1/leverage",
            {"symbol": to_venue_symbol(symbol), "leverage": int(leverage)},
            signed=True,
        )

    # ----------------------------------------------------------
    # Orders
    # ----------------------------------------------------------

    @staticmethod
    def _order_response(data: dict) -> OrderResponse:
        order_type = data.get("type") or data.get("origType")
        side = data.get("side")
        stop = _dec(data.get("stopPrice"))
        return OrderResponse(
            order_id=str(data.get("orderId", "")),
            symbol=from_venue_symbol(data.get("symbol", "")),
            status=str(data.get("status", "UNKNOWN")),
            avg_price=_dec(data.get("avgPrice")),
            executed_qty=_dec(data.get("executedQty")),
            side=OrderSide(side) if side in ("BUY", "SELL") else None,
            type=OrderType(order_type) if order_type in OrderType._value2member_map_ else None,
            stop_price=stop if stop > 0 else None,
        )

    def place_order(self, request: OrderRequest) -> OrderResponse:
        params: dict[str, Any] = {
            "symbol": to_venue_symbol(request.symbol),
            "side": request.side.value,
            "type": request.type.value,
            "newOrderRespType": "RESULT",
        }
        if request.close_position:
            params["closePosition"] = "true"
        elif request.quantity is not None:
            params["quantity"] = _plain(request.quantity)
        if request.reduce_only and not request.close_position:
            params["reduceOnly"] = "true"
        if request.type is OrderType.LIMIT:
            if request.price is None:
                raise GatewayError("LIMIT order requires a price")
            params["price"] = _plain(request.price)
            params["timeInForce"] = "GTC"
        if request.type in (OrderType.STOP_MARKET, OrderType.TAKE_PROFIT_MARKET):
            if request.stop_price is None:
                raise GatewayError(f"{request.type.value} order requires a stop price")
            params["stopPrice"] = _plain(request.stop_price)
            params["workingType"] = "MARK_PRICE"

        data = self._request("POST", "/fapi/v1/order", params, signed=True) or {}
        response = self._order_response(data)
        logger.info(
            "Order %s %s %s %s -> %s (%s)",
            request.type.value, request.side.value, params.get("quantity", "close"),
            params["symbol"], response.order_id, response.status,
        )
        return response

    def cancel_order(self, symbol: str, order_id: str) -> OrderResponse:
        data = self._request(
            "DELETE", "/fapi/v1/order",
            {"symbol": to_venue_symbol(symbol), "orderId": order_id},
            signed=True,
        ) or {}
        return self._order_response(data)

    def get_order(self, symbol: str, order_id: str) -> OrderResponse:
        data = self._request(
            "GET", "/fapi/v1/order",
            {"symbol": to_venue_symbol(symbol), "orderId": order_id},
            signed=True,
        ) or {}
        return self._order_response(data)

    def get_open_orders(self, symbol: str | None = None) -> list[OrderResponse]:
        params = {"symbol": to_venue_symbol(symbol)} if symbol else None
        rows = self._request("GET", "/fapi/v1/openOrders", params, signed=True) or []
        return [self._order_response(r) for r in rows]

    def cancel_all_orders(self, symbol: str) -> None:
        self._request(
            "DELETE", "/fapi/v1/allOpenOrders",
            {"symbol": to_venue_symbol(symbol)},
            signed=True,
        )

    # ----------------------------------------------------------
    # Market data
    # ----------------------------------------------------------

    def get_ticker(self, symbol: str) -> Ticker:
        data = self._request("GET", "/fapi/v1/ticker/24hr", {"symbol": to_venue_symbol(symbol)}) or {}
        price = _dec(data.get("lastPrice"))
        if price <= 0:
            raise GatewayError(f"No last price for {symbol}")
        return Ticker(symbol=symbol, last_price=price)

    def close(self) -> None:
        self._session.close()
