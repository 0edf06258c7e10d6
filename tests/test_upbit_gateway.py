"""Tests for UpbitGateway against a mocked HTTP transport."""

from decimal import Decimal

import httpx
import pytest

from coinguard.constants import OrderStatus
from coinguard.errors import GatewayError, GatewayTimeoutError, MalformedResponseError
from coinguard.gateway.upbit import UpbitGateway

TICKERS = [
    {"market": "KRW-BTC", "trade_price": 50000000.0, "acc_trade_price_24h": 9.1e10, "signed_change_rate": -0.012},
    {"market": "KRW-ETH", "trade_price": 3000000.0, "acc_trade_price_24h": 4.2e10, "signed_change_rate": 0.004},
    {"market": "KRW-XRP", "trade_price": 700.0, "acc_trade_price_24h": 9.5e10, "signed_change_rate": 0.02},
]


def candle(minute: int, price: float, volume: float = 1.5) -> dict:
    return {
        "market": "KRW-BTC",
        "candle_date_time_kst": f"2024-03-10T12:{minute:02d}:00",
        "opening_price": price,
        "high_price": price + 10,
        "low_price": price - 10,
        "trade_price": price,
        "candle_acc_trade_volume": volume,
    }


def make_gateway(handler, dry_run=True) -> UpbitGateway:
    return UpbitGateway(
        markets=[t["market"] for t in TICKERS],
        base_url="https://api.upbit.test",
        timeout_seconds=1.0,
        dry_run=dry_run,
        transport=httpx.MockTransport(handler),
    )


def ticker_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/v1/ticker":
        wanted = request.url.params["markets"].split(",")
        return httpx.Response(200, json=[t for t in TICKERS if t["market"] in wanted])
    if request.url.path == "/v1/candles/minutes/1":
        # Upbit returns newest first
        return httpx.Response(200, json=[candle(2, 102.0), candle(1, 101.0), candle(0, 100.0)])
    return httpx.Response(404, text="not found")


@pytest.mark.asyncio
async def test_ranked_instruments_sorted_by_traded_value():
    gateway = make_gateway(ticker_handler)
    await gateway.connect()
    try:
        instruments = await gateway.ranked_instruments(limit=2)
    finally:
        await gateway.disconnect()

    assert [i.instrument_id for i in instruments] == ["KRW-XRP", "KRW-BTC"]
    assert instruments[1].last_price == Decimal("50000000.0")
    assert instruments[1].change_rate == Decimal("-0.012")


@pytest.mark.asyncio
async def test_price_series_reversed_to_oldest_first():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return ticker_handler(request)

    gateway = make_gateway(handler)
    await gateway.connect()
    bars = await gateway.price_series("KRW-BTC", 3)
    await gateway.disconnect()

    assert [b.close for b in bars] == [Decimal("100.0"), Decimal("101.0"), Decimal("102.0")]
    assert bars[0].timestamp < bars[-1].timestamp
    assert seen["params"] == {"market": "KRW-BTC", "count": "3"}


@pytest.mark.asyncio
async def test_candle_count_capped():
    seen = {}

    def handler(request):
        seen["count"] = request.url.params.get("count")
        return ticker_handler(request)

    gateway = make_gateway(handler)
    await gateway.connect()
    await gateway.price_series("KRW-BTC", 1000)
    await gateway.disconnect()

    assert seen["count"] == "200"


@pytest.mark.asyncio
async def test_timeout_maps_to_typed_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    gateway = make_gateway(handler)
    await gateway.connect()
    with pytest.raises(GatewayTimeoutError):
        await gateway.price_series("KRW-BTC", 20)
    await gateway.disconnect()


@pytest.mark.asyncio
async def test_transport_error_maps_to_gateway_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    gateway = make_gateway(handler)
    await gateway.connect()
    with pytest.raises(GatewayError):
        await gateway.ranked_instruments(limit=5)
    await gateway.disconnect()


@pytest.mark.asyncio
async def test_http_error_status():
    gateway = make_gateway(lambda request: httpx.Response(429, text="Too many requests"))
    await gateway.connect()
    with pytest.raises(GatewayError, match="429"):
        await gateway.ranked_instruments(limit=5)
    await gateway.disconnect()


@pytest.mark.asyncio
async def test_malformed_payloads():
    def handler(request):
        if request.url.path == "/v1/ticker":
            return httpx.Response(200, json={"error": "unexpected"})
        return httpx.Response(200, json=[{"market": "KRW-BTC", "trade_price": "abc"}])

    gateway = make_gateway(handler)
    await gateway.connect()
    with pytest.raises(MalformedResponseError):
        await gateway.ranked_instruments(limit=5)
    with pytest.raises(MalformedResponseError):
        await gateway.price_series("KRW-BTC", 20)
    await gateway.disconnect()


@pytest.mark.asyncio
async def test_invalid_json():
    gateway = make_gateway(lambda request: httpx.Response(200, text="<html>"))
    await gateway.connect()
    with pytest.raises(MalformedResponseError):
        await gateway.ranked_instruments(limit=5)
    await gateway.disconnect()


@pytest.mark.asyncio
async def test_not_connected():
    gateway = make_gateway(ticker_handler)
    with pytest.raises(GatewayError, match="not connected"):
        await gateway.ranked_instruments(limit=5)


@pytest.mark.asyncio
async def test_paper_buy_fills_at_trade_price():
    gateway = make_gateway(ticker_handler)
    await gateway.connect()
    result = await gateway.place_market_buy("KRW-BTC", Decimal("10000"))
    await gateway.disconnect()

    assert result.is_filled
    assert result.price == Decimal("50000000.0")
    assert result.quantity == Decimal("0.0002")


@pytest.mark.asyncio
async def test_paper_limit_sell_pending_above_market():
    gateway = make_gateway(ticker_handler)
    await gateway.connect()
    result = await gateway.place_limit_sell("KRW-ETH", Decimal("3100000"), Decimal("0.01"))
    await gateway.disconnect()

    assert result.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_live_orders_refused():
    gateway = make_gateway(ticker_handler, dry_run=False)
    await gateway.connect()
    with pytest.raises(GatewayError, match="dry_run"):
        await gateway.place_market_buy("KRW-BTC", Decimal("10000"))
    await gateway.disconnect()
