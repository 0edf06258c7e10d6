"""Upbit market-data gateway over the public REST API."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

import httpx

from coinguard.constants import (
    APP_NAME,
    UPBIT_BASE_URL,
    UPBIT_CANDLES_PATH,
    UPBIT_MAX_CANDLES,
    UPBIT_TICKER_PATH,
    OrderSide,
    OrderStatus,
)
from coinguard.data.bars import Bar
from coinguard.errors import GatewayError, GatewayTimeoutError, MalformedResponseError
from coinguard.gateway.base import OrderGateway
from coinguard.gateway.models import Instrument, OrderResult, generate_id

logger = logging.getLogger(__name__)

QUANTITY_STEP = Decimal("0.00000001")


def _decimal(value: Any) -> Decimal:
    if value is None:
        raise MalformedResponseError("Missing numeric field")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise MalformedResponseError(f"Not a number: {value!r}") from e


class UpbitGateway(OrderGateway):
    """
    Upbit gateway.

    Market data comes from the public quotation endpoints. Authenticated
    order placement is not implemented: in dry-run mode orders are paper
    filled against the latest trade price, otherwise they are refused.
    """

    def __init__(
        self,
        markets: list[str],
        base_url: str = UPBIT_BASE_URL,
        timeout_seconds: float = 5.0,
        dry_run: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.markets = list(markets)
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.dry_run = dry_run
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self._transport,
            headers={"Accept": "application/json", "User-Agent": APP_NAME},
        )
        logger.info(f"UpbitGateway connected to {self.base_url} (dry_run={self.dry_run})")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("UpbitGateway disconnected")

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def ranked_instruments(self, limit: int) -> list[Instrument]:
        if not self.markets:
            return []

        tickers = await self._fetch_tickers(self.markets)
        instruments = [self._parse_ticker(t) for t in tickers]
        instruments.sort(key=lambda i: i.traded_value_24h, reverse=True)
        return instruments[:limit]

    async def price_series(self, instrument_id: str, count: int) -> list[Bar]:
        count = max(1, min(count, UPBIT_MAX_CANDLES))
        payload = await self._get(UPBIT_CANDLES_PATH, {"market": instrument_id, "count": count})

        if not isinstance(payload, list):
            raise MalformedResponseError(f"Expected candle list for {instrument_id}")

        # Upbit returns newest first
        bars = [self._parse_candle(instrument_id, c) for c in payload]
        bars.reverse()
        return bars

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def place_market_buy(self, instrument_id: str, amount: Decimal) -> OrderResult:
        self._require_paper_mode()
        price = await self._last_trade_price(instrument_id)

        if amount <= 0 or price <= 0:
            return OrderResult(
                order_id=generate_id(),
                instrument_id=instrument_id,
                side=OrderSide.BUY,
                status=OrderStatus.REJECTED,
                message=f"Invalid amount {amount} at price {price}",
            )

        quantity = (amount / price).quantize(QUANTITY_STEP, rounding=ROUND_DOWN)
        logger.info(f"Paper BUY {instrument_id}: {quantity} @ {price}")
        return OrderResult(
            order_id=generate_id(),
            instrument_id=instrument_id,
            side=OrderSide.BUY,
            status=OrderStatus.FILLED,
            price=price,
            quantity=quantity,
            message="paper fill",
        )

    async def place_limit_sell(
        self, instrument_id: str, price: Decimal, quantity: Decimal
    ) -> OrderResult:
        self._require_paper_mode()
        last = await self._last_trade_price(instrument_id)

        filled = quantity > 0 and last >= price
        logger.info(
            f"Paper SELL {instrument_id}: {quantity} @ {price} (last {last}) "
            f"-> {'filled' if filled else 'pending'}"
        )
        return OrderResult(
            order_id=generate_id(),
            instrument_id=instrument_id,
            side=OrderSide.SELL,
            status=OrderStatus.FILLED if filled else OrderStatus.PENDING,
            price=price,
            quantity=quantity if filled else Decimal("0"),
            message="paper fill" if filled else "limit not reached",
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_paper_mode(self) -> None:
        if not self.dry_run:
            raise GatewayError("Live order placement is not supported; enable dry_run")

    async def _last_trade_price(self, instrument_id: str) -> Decimal:
        tickers = await self._fetch_tickers([instrument_id])
        if not tickers:
            raise MalformedResponseError(f"No ticker returned for {instrument_id}")
        return self._parse_ticker(tickers[0]).last_price

    async def _fetch_tickers(self, markets: list[str]) -> list[dict[str, Any]]:
        payload = await self._get(UPBIT_TICKER_PATH, {"markets": ",".join(markets)})
        if not isinstance(payload, list):
            raise MalformedResponseError("Expected ticker list")
        return payload

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        if self._client is None:
            raise GatewayError("UpbitGateway is not connected")

        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"Timeout calling {path}: {e}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Transport error calling {path}: {e}") from e

        if response.status_code != 200:
            raise GatewayError(f"Upbit API error {response.status_code} on {path}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {path}") from e

    @staticmethod
    def _parse_ticker(ticker: Any) -> Instrument:
        if not isinstance(ticker, dict) or "market" not in ticker:
            raise MalformedResponseError(f"Malformed ticker: {ticker!r}")

        change_rate = ticker.get("signed_change_rate")
        return Instrument(
            instrument_id=ticker["market"],
            last_price=_decimal(ticker.get("trade_price")),
            traded_value_24h=_decimal(ticker.get("acc_trade_price_24h")),
            change_rate=_decimal(change_rate) if change_rate is not None else None,
        )

    @staticmethod
    def _parse_candle(instrument_id: str, candle: Any) -> Bar:
        if not isinstance(candle, dict):
            raise MalformedResponseError(f"Malformed candle for {instrument_id}: {candle!r}")

        try:
            timestamp = datetime.fromisoformat(candle["candle_date_time_kst"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Bad candle timestamp for {instrument_id}") from e

        return Bar(
            instrument_id=instrument_id,
            timestamp=timestamp,
            open=_decimal(candle.get("opening_price")),
            high=_decimal(candle.get("high_price")),
            low=_decimal(candle.get("low_price")),
            close=_decimal(candle.get("trade_price")),
            volume=_decimal(candle.get("candle_acc_trade_volume")),
        )
