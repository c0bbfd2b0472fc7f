"""Tests for exchange gateways: paper simulation, Binance REST mapping, factory."""

import hashlib
import hmac
from decimal import Decimal
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qsl, urlsplit

import pytest
import requests

from config.loader import ExchangeConfig
from execution.binance import (
    MAINNET_URL,
    TESTNET_URL,
    BinanceFuturesGateway,
    from_venue_symbol,
    to_venue_symbol,
)
from execution.factory import create_gateway
from execution.models import OrderRequest, OrderType
from execution.paper import PaperGateway
from follow_core.contracts import OrderSide
from follow_core.errors import ConfigError, GatewayError


def market(symbol: str, side: OrderSide, qty: str, **kw) -> OrderRequest:
    return OrderRequest(symbol=symbol, side=side, type=OrderType.MARKET, quantity=Decimal(qty), **kw)


# ---------------------------------------------------------------------------
# Paper
# ---------------------------------------------------------------------------


def test_paper_market_fill_and_balance() -> None:
    gw = PaperGateway(initial_balance=1000, prices={"BTC": 100})
    gw.set_leverage("BTC", 5)
    resp = gw.place_order(market("BTC", OrderSide.BUY, "2"))
    assert resp.status == "FILLED"
    assert resp.executed_qty == Decimal("2")
    assert resp.order_id.startswith("paper-")
    assert gw.get_account().available_balance == Decimal("960")
    [pos] = gw.get_positions()
    assert pos.quantity == Decimal("2")
    assert pos.leverage == 5


def test_paper_close_realizes_pnl() -> None:
    gw = PaperGateway(initial_balance=1000, prices={"BTC": 100})
    gw.place_order(market("BTC", OrderSide.BUY, "2"))
    gw.set_price("BTC", 110)
    assert gw.get_account().total_unrealized_pnl == Decimal("20")
    gw.place_order(market("BTC", OrderSide.SELL, "2", reduce_only=True))
    assert gw.get_positions() == []
    assert gw.get_account().total_wallet_balance == Decimal("1020")


def test_paper_add_averages_entry() -> None:
    gw = PaperGateway(prices={"ETH": 100})
    gw.place_order(market("ETH", OrderSide.SELL, "1"))
    gw.set_price("ETH", 200)
    gw.place_order(market("ETH", OrderSide.SELL, "1"))
    [pos] = gw.get_positions("ETH")
    assert pos.quantity == Decimal("-2")
    assert pos.entry_price == Decimal("150")


def test_paper_reduce_only_without_position_rejected() -> None:
    gw = PaperGateway(prices={"BTC": 100})
    with pytest.raises(GatewayError) as exc:
        gw.place_order(market("BTC", OrderSide.SELL, "1", reduce_only=True))
    assert exc.value.code == -2022


def test_paper_resting_stop_fills_on_cross() -> None:
    gw = PaperGateway(prices={"BTC": 100})
    gw.place_order(market("BTC", OrderSide.BUY, "1"))
    sl = gw.place_order(OrderRequest("BTC", OrderSide.SELL, OrderType.STOP_MARKET, Decimal("1"),
                                     stop_price=Decimal("90"), reduce_only=True))
    assert sl.status == "NEW"
    assert gw.mark_price("BTC", 95) == []
    [done] = gw.mark_price("BTC", 89)
    assert done.order_id == sl.order_id
    assert done.status == "FILLED"
    assert gw.get_positions() == []


def test_paper_stop_requires_trigger() -> None:
    gw = PaperGateway(prices={"BTC": 100})
    with pytest.raises(GatewayError):
        gw.place_order(OrderRequest("BTC", OrderSide.SELL, OrderType.TAKE_PROFIT_MARKET, Decimal("1")))


def test_paper_cancel_and_lookup() -> None:
    gw = PaperGateway(prices={"BTC": 100})
    gw.place_order(market("BTC", OrderSide.BUY, "1"))
    tp = gw.place_order(OrderRequest("BTC", OrderSide.SELL, OrderType.TAKE_PROFIT_MARKET, Decimal("1"),
                                     stop_price=Decimal("120")))
    assert gw.cancel_order("BTC", tp.order_id).status == "CANCELED"
    assert gw.get_order("BTC", tp.order_id).status == "CANCELED"
    with pytest.raises(GatewayError):
        gw.cancel_order("BTC", tp.order_id)
    with pytest.raises(GatewayError):
        gw.get_order("BTC", "paper-999")


def test_paper_cancel_all() -> None:
    gw = PaperGateway(prices={"BTC": 100, "ETH": 10})
    for symbol in ("BTC", "ETH"):
        gw.place_order(market(symbol, OrderSide.BUY, "1"))
        gw.place_order(OrderRequest(symbol, OrderSide.SELL, OrderType.STOP_MARKET, Decimal("1"),
                                    stop_price=Decimal("1")))
    gw.cancel_all_orders("BTC")
    assert [o.symbol for o in gw.get_open_orders()] == ["ETH"]


def test_paper_leverage_range() -> None:
    with pytest.raises(GatewayError):
        PaperGateway().set_leverage("BTC", 200)


def test_paper_ticker_falls_back_to_market_data() -> None:
    source = PaperGateway(prices={"SOL": 150})
    gw = PaperGateway(market_data=source)
    assert gw.get_ticker("SOL").last_price == Decimal("150")
    with pytest.raises(GatewayError):
        PaperGateway().get_ticker("SOL")


def test_paper_precision() -> None:
    gw = PaperGateway()
    assert gw.format_quantity("BTC", Decimal("0.12345")) == Decimal("0.123")
    assert gw.format_price("BTC", Decimal("112880.205")) == Decimal("112880.21")


# ---------------------------------------------------------------------------
# Binance
# ---------------------------------------------------------------------------


def response(status: int = 200, body=None, headers: dict | None = None) -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.headers = headers or {}
    resp.text = "" if body is None else str(body)
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


def binance(*responses, **kw) -> tuple[BinanceFuturesGateway, MagicMock]:
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = list(responses)
    gw = BinanceFuturesGateway("key", "secret", session=session, backoff=0, **kw)
    return gw, session


def sent(session: MagicMock, n: int = -1) -> tuple[str, str, dict]:
    call = session.request.call_args_list[n]
    method, url = call.args
    parts = urlsplit(url)
    return method, parts.path, dict(parse_qsl(parts.query))


def test_symbol_mapping() -> None:
    assert to_venue_symbol("btc") == "BTCUSDT"
    assert to_venue_symbol("BTCUSDT") == "BTCUSDT"
    assert from_venue_symbol("ETHUSDT") == "ETH"


def test_testnet_base_url() -> None:
    assert BinanceFuturesGateway(testnet=True).base_url == TESTNET_URL
    assert BinanceFuturesGateway().base_url == MAINNET_URL


def test_signed_request_carries_valid_signature() -> None:
    gw, session = binance(response(body={"availableBalance": "123.4", "totalWalletBalance": "200"}))
    account = gw.get_account()
    assert account.available_balance == Decimal("123.4")

    call = session.request.call_args
    assert call.kwargs["headers"]["X-MBX-APIKEY"] == "key"
    query = urlsplit(call.args[1]).query
    payload, signature = query.rsplit("&signature=", 1)
    expected = hmac.new(b"secret", payload.encode(), hashlib.sha256).hexdigest()
    assert signature == expected
    assert "timestamp=" in payload and "recvWindow=5000" in payload


def test_signed_request_without_keys_fails() -> None:
    with pytest.raises(GatewayError, match="not configured"):
        BinanceFuturesGateway(session=MagicMock()).get_account()


def test_place_entry_order_maps_fields() -> None:
    gw, session = binance(response(body={
        "orderId": 42, "symbol": "BTCUSDT", "status": "FILLED",
        "avgPrice": "100000.5", "executedQty": "0.010", "side": "BUY", "type": "MARKET",
    }))
    resp = gw.place_order(market("BTC", OrderSide.BUY, "0.010"))
    assert (resp.order_id, resp.symbol, resp.status) == ("42", "BTC", "FILLED")
    assert resp.executed_qty == Decimal("0.010")
    method, path, params = sent(session)
    assert (method, path) == ("POST", "/fapi/v1/order")
    assert params["symbol"] == "BTCUSDT"
    assert params["quantity"] == "0.01"
    assert params["newOrderRespType"] == "RESULT"
    assert "reduceOnly" not in params


def test_protective_leg_params() -> None:
    gw, session = binance(response(body={"orderId": 7, "symbol": "BTCUSDT", "status": "NEW"}))
    gw.place_order(OrderRequest("BTC", OrderSide.SELL, OrderType.STOP_MARKET, Decimal("0.5"),
                                stop_price=Decimal("105000.00"), reduce_only=True))
    _, _, params = sent(session)
    assert params["type"] == "STOP_MARKET"
    assert params["stopPrice"] == "105000"
    assert params["reduceOnly"] == "true"
    assert params["workingType"] == "MARK_PRICE"


def test_error_body_becomes_gateway_error() -> None:
    gw, _ = binance(response(400, {"code": -2019, "msg": "Margin is insufficient."}))
    with pytest.raises(GatewayError, match="Margin is insufficient") as exc:
        gw.place_order(market("BTC", OrderSide.BUY, "1"))
    assert exc.value.code == -2019


def test_retries_transient_status() -> None:
    gw, session = binance(response(503), response(body={"serverTime": 1700000000000}), retries=2)
    with patch("execution.binance.time.sleep") as sleep:
        assert gw.check_connectivity() == 1700000000000
    assert session.request.call_count == 2
    sleep.assert_called_once()


def test_honours_retry_after() -> None:
    gw, _ = binance(response(429, headers={"Retry-After": "3"}), response(body={"serverTime": 1}))
    with patch("execution.binance.time.sleep") as sleep:
        gw.check_connectivity()
    sleep.assert_called_once_with(3.0)


def test_transport_error_after_retries() -> None:
    gw, session = binance(*[requests.ConnectionError("down")] * 2, retries=1)
    with patch("execution.binance.time.sleep"), pytest.raises(GatewayError):
        gw.check_connectivity()
    assert session.request.call_count == 2


def test_order_post_sent_once_on_timeout() -> None:
    filled = response(body={"orderId": 1, "symbol": "BTCUSDT", "status": "FILLED"})
    gw, session = binance(requests.ReadTimeout("read timed out"), filled, retries=2)
    with patch("execution.binance.time.sleep") as sleep, pytest.raises(GatewayError, match="timed out"):
        gw.place_order(market("BTC", OrderSide.BUY, "1"))
    assert session.request.call_count == 1
    sleep.assert_not_called()


@pytest.mark.parametrize("status", [502, 503])
def test_order_post_not_retried_on_server_error(status: int) -> None:
    filled = response(body={"orderId": 1, "symbol": "BTCUSDT", "status": "FILLED"})
    gw, session = binance(response(status), filled, retries=2)
    with patch("execution.binance.time.sleep"), pytest.raises(GatewayError, match=str(status)):
        gw.place_order(market("BTC", OrderSide.BUY, "1"))
    assert session.request.call_count == 1


def test_cancel_not_retried() -> None:
    gw, session = binance(requests.ConnectionError("reset"), response(body={}), retries=2)
    with patch("execution.binance.time.sleep"), pytest.raises(GatewayError):
        gw.cancel_all_orders("BTC")
    assert session.request.call_count == 1
    assert sent(session)[0] == "DELETE"


def test_positions_skip_flat_rows() -> None:
    gw, _ = binance(response(body=[
        {"symbol": "BTCUSDT", "positionAmt": "-0.5", "entryPrice": "110000", "leverage": "10",
         "unRealizedProfit": "12.5", "markPrice": "109975"},
        {"symbol": "ETHUSDT", "positionAmt": "0", "entryPrice": "0", "leverage": "5"},
    ]))
    [pos] = gw.get_positions()
    assert pos.symbol == "BTC"
    assert pos.quantity == Decimal("-0.5")
    assert pos.leverage == 10


def test_precision_from_exchange_info() -> None:
    info = {"symbols": [{"symbol": "BTCUSDT", "filters": [
        {"filterType": "PRICE_FILTER", "tickSize": "0.10"},
        {"filterType": "LOT_SIZE", "stepSize": "0.001"},
    ]}]}
    gw, session = binance(response(body=info))
    assert gw.format_quantity("BTC", Decimal("0.12345")) == Decimal("0.123")
    assert gw.format_price("BTC", Decimal("112880.26")) == Decimal("112880.3")
    # Unknown symbols fall back to defaults; exchangeInfo is fetched once.
    assert gw.format_quantity("DOGE", Decimal("1.23456")) == Decimal("1.234")
    assert session.request.call_count == 1


def test_ticker_without_price_raises() -> None:
    gw, _ = binance(response(body={"symbol": "BTCUSDT", "lastPrice": "0"}))
    with pytest.raises(GatewayError):
        gw.get_ticker("BTC")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_factory_paper() -> None:
    gw = create_gateway(ExchangeConfig(venue="paper", paper_balance=500))
    assert isinstance(gw, PaperGateway)
    assert gw.get_account().available_balance == Decimal("500")


def test_factory_binance_requires_keys() -> None:
    with pytest.raises(ConfigError, match="BINANCE_API_KEY"):
        create_gateway(ExchangeConfig(venue="binance"))


def test_factory_binance() -> None:
    gw = create_gateway(ExchangeConfig(venue="binance", testnet=True, api_key="k", api_secret="s"))
    assert isinstance(gw, BinanceFuturesGateway)
    assert gw.base_url == TESTNET_URL


def test_factory_unknown_venue() -> None:
    with pytest.raises(ConfigError, match="Unknown venue"):
        create_gateway(ExchangeConfig(venue="kraken"))
