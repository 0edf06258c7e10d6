"""Scan Loop - fixed-delay scan, decide, act cycle.

Each tick:
- Skips entirely while the trading switch is off or the risk guard blocks
- Fetches the ranked instruments (a failed fetch aborts the tick)
- Evaluates every instrument in its own error boundary, feeding price
  shocks to the risk guard and buying on a signal
- Checks every open position for take-profit / stop-loss exits
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar

from coinguard.constants import ExitReason, OrderSide, RiskEventType
from coinguard.data.indicators import evaluate_signal, price_change_pct
from coinguard.errors import GatewayError, GatewayTimeoutError, RiskInvariantError
from coinguard.gateway.models import Instrument
from coinguard.risk.models import TradeOutcome

if TYPE_CHECKING:
    from coinguard.config_loader import IndicatorConfig, ScanConfig
    from coinguard.gateway.base import OrderGateway
    from coinguard.risk.risk_guard import RiskGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Position:
    """Open long position held by the loop."""

    instrument_id: str
    entry_price: Decimal
    quantity: Decimal
    opened_at: datetime
    order_id: str = ""

    def take_profit_price(self, take_profit_pct: Decimal) -> Decimal:
        return self.entry_price * (Decimal("1") + take_profit_pct / Decimal("100"))

    def stop_loss_price(self, stop_loss_pct: Decimal) -> Decimal:
        return self.entry_price * (Decimal("1") - stop_loss_pct / Decimal("100"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument_id": self.instrument_id,
            "entry_price": str(self.entry_price),
            "quantity": str(self.quantity),
            "opened_at": self.opened_at.isoformat(),
            "order_id": self.order_id,
        }


@dataclass
class TickReport:
    """What one tick did."""

    started_at: datetime
    skipped_reason: str | None = None
    instruments_scanned: int = 0
    buys: list[str] = field(default_factory=list)
    sells: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "skipped_reason": self.skipped_reason,
            "instruments_scanned": self.instruments_scanned,
            "buys": list(self.buys),
            "sells": list(self.sells),
            "failures": dict(self.failures),
        }


class ScanLoop:
    """
    Drives one scan cycle per tick.

    Ticks run serially with a fixed delay between the end of one tick and the
    start of the next. Per-instrument work inside a tick runs concurrently,
    bounded by ``scan_config.max_workers``.
    """

    def __init__(
        self,
        gateway: OrderGateway,
        risk_guard: RiskGuard,
        scan_config: ScanConfig,
        indicator_config: IndicatorConfig,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.gateway = gateway
        self.risk_guard = risk_guard
        self.scan_config = scan_config
        self.indicator_config = indicator_config
        self.timeout_seconds = timeout_seconds
        self._clock = clock or (lambda: datetime.now(risk_guard.tz))

        self._trading_enabled = scan_config.auto_trading_enabled
        self._positions: dict[str, Position] = {}
        self._trades: list[TradeOutcome] = []
        self._ranked: list[Instrument] = []
        self._journal_lock = threading.Lock()

        self._running = False
        self._stop_event: asyncio.Event | None = None
        self.tick_count = 0
        self.last_report: TickReport | None = None

    # ------------------------------------------------------------------
    # Global trading switch
    # ------------------------------------------------------------------

    @property
    def trading_enabled(self) -> bool:
        return self._trading_enabled

    def enable_trading(self) -> None:
        self._trading_enabled = True
        logger.info("Auto trading ENABLED")

    def disable_trading(self, reason: str = "manual") -> None:
        self._trading_enabled = False
        logger.warning(f"Auto trading DISABLED ({reason})")

    # ------------------------------------------------------------------
    # Journal projections
    # ------------------------------------------------------------------

    def open_positions(self) -> list[Position]:
        with self._journal_lock:
            return list(self._positions.values())

    def recent_trades(self, limit: int = 50) -> list[TradeOutcome]:
        """Opens and closes, newest first."""
        with self._journal_lock:
            return list(reversed(self._trades[-limit:])) if limit > 0 else []

    def ranked_instruments(self) -> list[Instrument]:
        """Instruments as ranked by the gateway on the latest tick that fetched them."""
        with self._journal_lock:
            return list(self._ranked)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Run ticks until stop() is called."""
        self._running = True
        self._stop_event = asyncio.Event()
        logger.info(
            f"Scan loop starting (initial delay {self.scan_config.initial_delay_seconds}s, "
            f"interval {self.scan_config.interval_seconds}s)"
        )

        if await self._wait(self.scan_config.initial_delay_seconds):
            self._running = False
            return

        consecutive_errors = 0
        while self._running:
            try:
                await self.tick()

                if consecutive_errors > 0:
                    logger.info(f"Scan loop recovered after {consecutive_errors} failed tick(s)")
                consecutive_errors = 0

            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Tick failed (consecutive: {consecutive_errors}): {e}", exc_info=True)

            if await self._wait(self.scan_config.interval_seconds):
                break

        self._running = False
        logger.info("Scan loop stopped")

    def stop(self) -> None:
        """Request shutdown. An in-flight tick finishes first."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def _wait(self, seconds: float) -> bool:
        """Sleep ``seconds`` unless stopped first. Returns True when stopped."""
        if self._stop_event is None or self._stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    # ------------------------------------------------------------------
    # One tick
    # ------------------------------------------------------------------

    async def tick(self) -> TickReport:
        """Execute one scan-decide-act cycle."""
        self.tick_count += 1
        report = TickReport(started_at=self._clock())
        self.last_report = report

        if not self._trading_enabled:
            report.skipped_reason = "trading disabled"
            logger.debug("Tick skipped: trading disabled")
            return report

        if not self.risk_guard.can_trade():
            reasons = ", ".join(self.risk_guard.blocking_reasons())
            report.skipped_reason = f"risk guard: {reasons}"
            logger.info(f"Tick skipped: trading blocked by risk guard ({reasons})")
            return report

        if not self.risk_guard.is_running():
            reason = self.risk_guard.snapshot().status_reason
            report.skipped_reason = f"risk guard: STOPPED after {reason}, manual reset required"
            logger.info(f"Tick skipped: trading stopped after {reason}, awaiting manual reset")
            return report

        try:
            instruments = await self._call(self.gateway.ranked_instruments(self.scan_config.top_n))
        except GatewayError as e:
            report.skipped_reason = f"instrument fetch failed: {e}"
            logger.warning(f"Tick aborted, ranked instrument fetch failed: {e}")
            self.risk_guard.record_event(RiskEventType.API_ERROR, f"Ranked instrument fetch failed: {e}")
            return report

        with self._journal_lock:
            self._ranked = list(instruments)

        if not instruments:
            report.skipped_reason = "no instruments"
            logger.info("Tick aborted: gateway returned no instruments")
            return report

        semaphore = asyncio.Semaphore(self.scan_config.max_workers)
        latest_closes: dict[str, Decimal] = {}

        await asyncio.gather(
            *(
                self._isolated(
                    instrument.instrument_id,
                    lambda inst=instrument: self._scan_instrument(inst, report, latest_closes),
                    report,
                    semaphore,
                )
                for instrument in instruments
            )
        )

        await asyncio.gather(
            *(
                self._isolated(
                    position.instrument_id,
                    lambda pos=position: self._check_exit(pos, latest_closes.get(pos.instrument_id), report),
                    report,
                    semaphore,
                )
                for position in self.open_positions()
            )
        )

        logger.info(
            f"Tick {self.tick_count}: scanned {report.instruments_scanned}, "
            f"buys {len(report.buys)}, sells {len(report.sells)}, failures {len(report.failures)}"
        )
        return report

    async def _isolated(
        self,
        instrument_id: str,
        work: Callable[[], Awaitable[None]],
        report: TickReport,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Error boundary around one instrument's work."""
        async with semaphore:
            try:
                await work()
            except RiskInvariantError as e:
                report.failures[instrument_id] = str(e)
                logger.critical(f"Risk invariant violated on {instrument_id}: {e}")
                self.disable_trading(reason=f"risk invariant violated: {e}")
            except GatewayError as e:
                report.failures[instrument_id] = str(e)
                logger.warning(f"Skipping {instrument_id}: {e}")
            except Exception as e:
                report.failures[instrument_id] = str(e)
                logger.error(f"Unexpected error processing {instrument_id}: {e}", exc_info=True)

    async def _scan_instrument(
        self, instrument: Instrument, report: TickReport, latest_closes: dict[str, Decimal]
    ) -> None:
        instrument_id = instrument.instrument_id
        bars = await self._call(self.gateway.price_series(instrument_id, self.scan_config.candle_count))
        report.instruments_scanned += 1

        if bars:
            latest_closes[instrument_id] = bars[-1].close

        min_window = self.indicator_config.min_window
        if len(bars) < min_window:
            logger.debug(f"Skipping {instrument_id}: {len(bars)} bars < {min_window}")
            return

        change = price_change_pct(bars)
        if self.risk_guard.on_price_shock(
            change, self.risk_guard.settings.circuit_breaker_threshold_pct, instrument_id=instrument_id
        ):
            return

        signal = evaluate_signal(bars, self.indicator_config)
        logger.debug(
            f"{instrument_id}: {signal.action} confidence={signal.confidence} "
            f"ema={signal.ema_short:.2f}/{signal.ema_long:.2f} rsi={signal.rsi:.1f}"
        )

        if not signal.buy:
            return

        with self._journal_lock:
            if instrument_id in self._positions:
                logger.debug(f"Already holding {instrument_id}, not buying again")
                return

        # Another instrument may have tripped the guard earlier in this tick
        if (
            not self._trading_enabled
            or not self.risk_guard.can_trade()
            or not self.risk_guard.is_running()
        ):
            logger.info(f"Buy signal on {instrument_id} ignored: trading blocked")
            return

        amount = self.scan_config.amount_per_trade
        if not self.risk_guard.validate_amount(amount):
            logger.warning(f"Buy on {instrument_id} rejected: amount {amount} not allowed")
            return

        result = await self._call(self.gateway.place_market_buy(instrument_id, amount))
        if not result.is_filled:
            logger.warning(f"Buy on {instrument_id} not filled: {result.status.value} {result.message}")
            return

        now = self._clock()
        position = Position(
            instrument_id=instrument_id,
            entry_price=result.price,
            quantity=result.quantity,
            opened_at=now,
            order_id=result.order_id,
        )
        with self._journal_lock:
            self._positions[instrument_id] = position
            self._trades.append(
                TradeOutcome(
                    instrument_id=instrument_id,
                    side=OrderSide.BUY,
                    price=result.price,
                    quantity=result.quantity,
                    executed_at=now,
                )
            )

        report.buys.append(instrument_id)
        logger.info(
            f"BUY {instrument_id}: {result.quantity} @ {result.price} (confidence {signal.confidence})"
        )

    def exit_reason(self, position: Position, price: Decimal) -> ExitReason | None:
        if price >= position.take_profit_price(self.scan_config.take_profit_pct):
            return ExitReason.TAKE_PROFIT
        if price <= position.stop_loss_price(self.scan_config.stop_loss_pct):
            return ExitReason.STOP_LOSS
        return None

    async def _check_exit(
        self, position: Position, latest_close: Decimal | None, report: TickReport
    ) -> None:
        instrument_id = position.instrument_id

        if latest_close is None:
            bars = await self._call(self.gateway.price_series(instrument_id, 2))
            if not bars:
                return
            latest_close = bars[-1].close

        reason = self.exit_reason(position, latest_close)
        if reason is None:
            return

        result = await self._call(
            self.gateway.place_limit_sell(instrument_id, latest_close, position.quantity)
        )
        if not result.is_filled:
            logger.info(f"{reason.value} sell on {instrument_id} not filled: {result.status.value}")
            return

        filled = min(result.quantity, position.quantity)
        profit_loss = (result.price - position.entry_price) * filled
        outcome = TradeOutcome(
            instrument_id=instrument_id,
            side=OrderSide.SELL,
            price=result.price,
            quantity=filled,
            executed_at=self._clock(),
            profit_loss=profit_loss,
        )

        with self._journal_lock:
            if filled >= position.quantity:
                self._positions.pop(instrument_id, None)
            else:
                position.quantity -= filled
            self._trades.append(outcome)

        report.sells.append(instrument_id)
        logger.info(
            f"SELL {instrument_id} ({reason.value}): {filled} @ {result.price}, P&L {profit_loss}"
        )

        self.risk_guard.on_trade_closed(outcome)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Bound a gateway call by the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GatewayTimeoutError(f"Gateway call timed out after {self.timeout_seconds}s") from e
