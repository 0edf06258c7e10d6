"""Simulation gateway implementation."""

from __future__ import annotations

import logging
import random
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal

from coinguard.constants import OrderSide, OrderStatus
from coinguard.data.bars import Bar
from coinguard.errors import GatewayError
from coinguard.gateway.base import OrderGateway
from coinguard.gateway.models import Instrument, OrderResult, generate_id

logger = logging.getLogger(__name__)

QUANTITY_STEP = Decimal("0.00000001")
PRICE_STEP = Decimal("0.01")
HISTORY_BARS = 200
# One day of 1-minute bars; older bars are dropped as new ones arrive.
MAX_HISTORY_BARS = 1440
RANKING_WINDOW = timedelta(hours=24)


class SimGateway(OrderGateway):
    """
    In-memory market for testing and dry runs.

    Every market follows a seeded random walk of 1-minute bars, or a series
    set explicitly with set_series(). Orders fill against the latest close.
    """

    def __init__(
        self,
        markets: Iterable[str],
        seed: int = 7,
        start_price: Decimal = Decimal("10000"),
        auto_advance: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        self.markets = list(markets)
        self.auto_advance = auto_advance
        self._rng = random.Random(seed)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._series: dict[str, deque[Bar]] = {}
        self._failures: dict[str, Exception] = {}
        self._orders: list[OrderResult] = []
        self._connected = False

        now = self._clock()
        for i, market in enumerate(self.markets):
            self._series[market] = deque(
                self._random_history(market, start_price * (i + 1), now, HISTORY_BARS),
                maxlen=MAX_HISTORY_BARS,
            )

    async def connect(self) -> None:
        self._connected = True
        logger.info(f"SimGateway connected. Markets: {', '.join(self.markets)}")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("SimGateway disconnected")

    # ------------------------------------------------------------------
    # Test/driver hooks
    # ------------------------------------------------------------------

    def set_series(self, instrument_id: str, bars: list[Bar]) -> None:
        """Replace an instrument's history (oldest first)."""
        if instrument_id not in self.markets:
            self.markets.append(instrument_id)
        self._series[instrument_id] = deque(bars, maxlen=MAX_HISTORY_BARS)

    def push_bar(self, instrument_id: str, close: Decimal, volume: Decimal = Decimal("1")) -> Bar:
        """Append a bar closing at ``close``."""
        series = self._series.setdefault(instrument_id, deque(maxlen=MAX_HISTORY_BARS))
        if instrument_id not in self.markets:
            self.markets.append(instrument_id)
        prev_close = series[-1].close if series else close
        timestamp = series[-1].timestamp + timedelta(minutes=1) if series else self._clock()
        bar = Bar(
            instrument_id=instrument_id,
            timestamp=timestamp,
            open=prev_close,
            high=max(prev_close, close),
            low=min(prev_close, close),
            close=close,
            volume=volume,
        )
        series.append(bar)
        return bar

    def fail_on(self, instrument_id: str, error: Exception | None) -> None:
        """Make every call touching ``instrument_id`` raise ``error`` (None clears)."""
        if error is None:
            self._failures.pop(instrument_id, None)
        else:
            self._failures[instrument_id] = error

    def advance(self, steps: int = 1) -> None:
        """Walk every market forward by ``steps`` bars."""
        for _ in range(steps):
            for market in self.markets:
                series = self._series.get(market)
                if not series:
                    continue
                close = self._step(series[-1].close)
                volume = Decimal(str(round(self._rng.uniform(1.0, 10.0), 4)))
                self.push_bar(market, close, volume)

    @property
    def orders(self) -> list[OrderResult]:
        return list(self._orders)

    # ------------------------------------------------------------------
    # OrderGateway
    # ------------------------------------------------------------------

    async def ranked_instruments(self, limit: int) -> list[Instrument]:
        if self.auto_advance:
            self.advance()

        instruments = []
        for market in self.markets:
            if market in self._failures:
                continue
            series = self._series.get(market)
            if not series:
                continue
            since = series[-1].timestamp - RANKING_WINDOW
            traded_value = sum(
                (b.close * b.volume for b in series if b.timestamp > since), Decimal("0")
            )
            instruments.append(
                Instrument(
                    instrument_id=market,
                    last_price=series[-1].close,
                    traded_value_24h=traded_value,
                    change_rate=_change_rate(series),
                )
            )

        instruments.sort(key=lambda i: i.traded_value_24h, reverse=True)
        return instruments[:limit]

    async def price_series(self, instrument_id: str, count: int) -> list[Bar]:
        self._raise_if_failing(instrument_id)
        series = self._series.get(instrument_id)
        if series is None:
            raise GatewayError(f"Unknown instrument: {instrument_id}")
        return list(series)[-count:]

    async def place_market_buy(self, instrument_id: str, amount: Decimal) -> OrderResult:
        self._raise_if_failing(instrument_id)
        price = self._last_close(instrument_id)

        if amount <= 0 or price <= 0:
            return self._record(
                OrderResult(
                    order_id=generate_id(),
                    instrument_id=instrument_id,
                    side=OrderSide.BUY,
                    status=OrderStatus.REJECTED,
                    message=f"Invalid amount {amount} at price {price}",
                    executed_at=self._clock(),
                )
            )

        quantity = (amount / price).quantize(QUANTITY_STEP, rounding=ROUND_DOWN)
        return self._record(
            OrderResult(
                order_id=generate_id(),
                instrument_id=instrument_id,
                side=OrderSide.BUY,
                status=OrderStatus.FILLED,
                price=price,
                quantity=quantity,
                executed_at=self._clock(),
            )
        )

    async def place_limit_sell(
        self, instrument_id: str, price: Decimal, quantity: Decimal
    ) -> OrderResult:
        self._raise_if_failing(instrument_id)
        last = self._last_close(instrument_id)

        # Limit sell fills only when the market is at or above the limit
        if quantity > 0 and last >= price:
            status = OrderStatus.FILLED
            filled = quantity
        else:
            status = OrderStatus.PENDING
            filled = Decimal("0")

        return self._record(
            OrderResult(
                order_id=generate_id(),
                instrument_id=instrument_id,
                side=OrderSide.SELL,
                status=status,
                price=price,
                quantity=filled,
                executed_at=self._clock(),
            )
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _raise_if_failing(self, instrument_id: str) -> None:
        error = self._failures.get(instrument_id)
        if error is not None:
            raise error

    def _last_close(self, instrument_id: str) -> Decimal:
        series = self._series.get(instrument_id)
        if not series:
            raise GatewayError(f"No market data for {instrument_id}")
        return series[-1].close

    def _record(self, result: OrderResult) -> OrderResult:
        self._orders.append(result)
        logger.info(
            f"Sim order {result.order_id}: {result.side.value} {result.instrument_id} "
            f"{result.quantity} @ {result.price} -> {result.status.value}"
        )
        return result

    def _step(self, price: Decimal) -> Decimal:
        change = Decimal(str(round(self._rng.gauss(0.0, 0.004), 6)))
        new_price = (price * (Decimal("1") + change)).quantize(PRICE_STEP)
        return max(new_price, PRICE_STEP)

    def _random_history(
        self, market: str, start_price: Decimal, end: datetime, count: int
    ) -> list[Bar]:
        bars = []
        close = start_price
        start = end - timedelta(minutes=count)
        for i in range(count):
            open_ = close
            close = self._step(open_)
            bars.append(
                Bar(
                    instrument_id=market,
                    timestamp=start + timedelta(minutes=i),
                    open=open_,
                    high=max(open_, close),
                    low=min(open_, close),
                    close=close,
                    volume=Decimal(str(round(self._rng.uniform(1.0, 10.0), 4))),
                )
            )
        return bars


def _change_rate(series: deque[Bar]) -> Decimal | None:
    if len(series) < 2 or series[-2].close == 0:
        return None
    return (series[-1].close - series[-2].close) / series[-2].close
