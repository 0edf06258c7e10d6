"""Tests for SimGateway."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from coinguard.constants import OrderSide, OrderStatus
from coinguard.data.bars import Bar
from coinguard.errors import GatewayError, GatewayTimeoutError
from coinguard.gateway.sim import MAX_HISTORY_BARS, SimGateway

MARKETS = ["KRW-BTC", "KRW-ETH", "KRW-XRP"]


@pytest.fixture
def gateway():
    return SimGateway(MARKETS, seed=42, auto_advance=False)


@pytest.mark.asyncio
async def test_same_seed_same_market(gateway):
    other = SimGateway(MARKETS, seed=42, auto_advance=False)

    a = await gateway.price_series("KRW-BTC", 20)
    b = await other.price_series("KRW-BTC", 20)

    assert [bar.close for bar in a] == [bar.close for bar in b]


@pytest.mark.asyncio
async def test_price_series_oldest_first(gateway):
    bars = await gateway.price_series("KRW-ETH", 20)

    assert len(bars) == 20
    assert all(a.timestamp < b.timestamp for a, b in zip(bars, bars[1:]))


@pytest.mark.asyncio
async def test_unknown_instrument_raises(gateway):
    with pytest.raises(GatewayError):
        await gateway.price_series("KRW-NOPE", 20)


@pytest.mark.asyncio
async def test_ranked_by_traded_value(gateway):
    instruments = await gateway.ranked_instruments(limit=2)

    assert len(instruments) == 2
    assert instruments[0].traded_value_24h >= instruments[1].traded_value_24h


@pytest.mark.asyncio
async def test_auto_advance_appends_bar():
    gateway = SimGateway(["KRW-BTC"], seed=1)
    before = await gateway.price_series("KRW-BTC", 500)

    await gateway.ranked_instruments(limit=5)
    after = await gateway.price_series("KRW-BTC", 500)

    assert len(after) == len(before) + 1


@pytest.mark.asyncio
async def test_history_capped_at_one_day(gateway):
    gateway.advance(MAX_HISTORY_BARS + 50)

    bars = await gateway.price_series("KRW-BTC", MAX_HISTORY_BARS * 2)

    assert len(bars) == MAX_HISTORY_BARS
    assert bars[-1].timestamp - bars[0].timestamp == timedelta(minutes=MAX_HISTORY_BARS - 1)


def bar(instrument_id, timestamp, close, volume):
    price = Decimal(close)
    return Bar(instrument_id, timestamp, price, price, price, price, Decimal(volume))


@pytest.mark.asyncio
async def test_ranking_uses_last_24h_only():
    now = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    gateway = SimGateway([], auto_advance=False)
    gateway.set_series(
        "KRW-OLD",
        [bar("KRW-OLD", now - timedelta(days=2), "200", "1000000"), bar("KRW-OLD", now, "100", "1")],
    )
    gateway.set_series("KRW-NEW", [bar("KRW-NEW", now, "100", "5")])

    ranked = await gateway.ranked_instruments(limit=5)

    assert [i.instrument_id for i in ranked] == ["KRW-NEW", "KRW-OLD"]
    assert ranked[1].traded_value_24h == Decimal("100")
    assert ranked[1].change_rate == Decimal("-0.5")
    assert ranked[0].change_rate is None


@pytest.mark.asyncio
async def test_market_buy_fills_at_latest_close(gateway):
    gateway.push_bar("KRW-BTC", Decimal("50000"))

    result = await gateway.place_market_buy("KRW-BTC", Decimal("10000"))

    assert result.is_filled
    assert result.side == OrderSide.BUY
    assert result.price == Decimal("50000")
    assert result.quantity == Decimal("0.2")


@pytest.mark.asyncio
async def test_market_buy_rejects_non_positive_amount(gateway):
    result = await gateway.place_market_buy("KRW-BTC", Decimal("0"))

    assert result.status == OrderStatus.REJECTED
    assert not result.is_filled


@pytest.mark.asyncio
async def test_limit_sell_fills_when_market_at_limit(gateway):
    gateway.push_bar("KRW-BTC", Decimal("101"))

    result = await gateway.place_limit_sell("KRW-BTC", Decimal("101"), Decimal("0.5"))

    assert result.is_filled
    assert result.price == Decimal("101")
    assert result.quantity == Decimal("0.5")


@pytest.mark.asyncio
async def test_limit_sell_above_market_stays_pending(gateway):
    gateway.push_bar("KRW-BTC", Decimal("100"))

    result = await gateway.place_limit_sell("KRW-BTC", Decimal("105"), Decimal("0.5"))

    assert result.status == OrderStatus.PENDING
    assert not result.is_filled


@pytest.mark.asyncio
async def test_fail_on_injects_error(gateway):
    gateway.fail_on("KRW-ETH", GatewayTimeoutError("simulated timeout"))

    with pytest.raises(GatewayTimeoutError):
        await gateway.price_series("KRW-ETH", 20)

    ranked = await gateway.ranked_instruments(limit=5)
    assert "KRW-ETH" not in [i.instrument_id for i in ranked]

    gateway.fail_on("KRW-ETH", None)
    assert len(await gateway.price_series("KRW-ETH", 20)) == 20


@pytest.mark.asyncio
async def test_orders_recorded(gateway):
    await gateway.place_market_buy("KRW-BTC", Decimal("10000"))
    assert len(gateway.orders) == 1
