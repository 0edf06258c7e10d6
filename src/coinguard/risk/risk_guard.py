"""Risk guard: the single authority on whether trading is permitted."""

from __future__ import annotations

import bisect
import dataclasses
import logging
import threading
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from coinguard.config_loader import RiskSettings
from coinguard.constants import (
    DEFAULT_TIMEZONE,
    REASON_CIRCUIT_BREAKER,
    REASON_CONSECUTIVE_LOSS,
    REASON_COOLDOWN,
    REASON_DAILY_LOSS_LIMIT,
    REASON_MANUAL_RESET,
    OrderSide,
    ResetKind,
    RiskEventType,
    TradingStatus,
)
from coinguard.errors import RiskInvariantError
from coinguard.risk.models import ResetResult, RiskEvent, RiskSnapshot, RiskState, TradeOutcome

logger = logging.getLogger(__name__)

EventListener = Callable[[RiskEvent], None]


def _executed_at(outcome: TradeOutcome) -> datetime:
    return outcome.executed_at


class RiskGuard:
    """
    Authoritative risk manager.

    Blocks trading while any of these holds:
    - Cooldown timer running
    - Circuit breaker tripped (sudden price drop)
    - Consecutive losing closes >= limit
    - Today's realized loss >= daily ceiling

    Loss conditions are recomputed from the closed-trade log on every check,
    never read from a cached counter, so clearing one trip can't re-enable
    trading while another condition still holds.
    """

    def __init__(
        self,
        settings: RiskSettings,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize Risk Guard.

        Args:
            settings: Risk thresholds. Replaced wholesale by update_settings().
            timezone: Calendar used for the daily-loss window.
            clock: Returns the current aware datetime. Defaults to wall clock.
        """
        self.tz = ZoneInfo(timezone)
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._lock = threading.RLock()
        self.state = RiskState()
        self._outcomes: list[TradeOutcome] = []
        self._events: list[RiskEvent] = []
        self._listeners: list[EventListener] = []

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def settings(self) -> RiskSettings:
        return self._settings

    def update_settings(self, settings: RiskSettings) -> None:
        """Hot-reload thresholds. Takes effect on the next evaluation."""
        with self._lock:
            self._settings = settings
        logger.info(f"Risk settings reloaded: {settings.model_dump(mode='json')}")

    def add_event_listener(self, listener: EventListener) -> None:
        """Register callback for every emitted risk event."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Gate decisions
    # ------------------------------------------------------------------

    def can_trade(self) -> bool:
        """True only when no cooldown, breaker, loss-streak or daily-loss condition holds."""
        with self._lock:
            return not self._blocking_reasons(self._settings, self._now())

    def blocking_reasons(self) -> list[str]:
        """Every condition currently blocking trading (empty when allowed)."""
        with self._lock:
            return self._blocking_reasons(self._settings, self._now())

    def is_running(self) -> bool:
        """False from any trip until a manual reset finds nothing left blocking."""
        with self._lock:
            return self.state.trading_status == TradingStatus.RUNNING

    def validate_amount(self, amount: Decimal | None) -> bool:
        """Reject non-positive amounts and amounts above the per-trade maximum."""
        if amount is None:
            return False
        amount = Decimal(str(amount))
        if amount <= 0:
            return False
        return amount <= self._settings.max_trade_amount

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def on_trade_closed(self, outcome: TradeOutcome) -> None:
        """
        Record a closed (SELL) trade and evaluate loss-based trips.

        Raises:
            RiskInvariantError: If the outcome is not a realized close.
        """
        if outcome.side != OrderSide.SELL:
            raise RiskInvariantError(
                f"Only SELL outcomes close a trade, got {outcome.side.value} for {outcome.instrument_id}"
            )
        if outcome.profit_loss is None:
            raise RiskInvariantError(
                f"Closed trade for {outcome.instrument_id} has no realized profit/loss"
            )
        if outcome.quantity <= 0 or outcome.price <= 0:
            raise RiskInvariantError(
                f"Closed trade for {outcome.instrument_id} has non-positive "
                f"price/quantity: {outcome.price} x {outcome.quantity}"
            )

        if outcome.executed_at.tzinfo is None:
            outcome = dataclasses.replace(outcome, executed_at=outcome.executed_at.replace(tzinfo=self.tz))

        with self._lock:
            settings = self._settings
            now = self._now()
            self._roll_daily_window(now)
            losses_before = self._consecutive_losses(settings, now)
            bisect.insort(self._outcomes, outcome, key=_executed_at)

            logger.info(
                f"Trade closed: {outcome.instrument_id} P&L {outcome.profit_loss} "
                f"@ {outcome.price} x {outcome.quantity}"
            )

            # 1. Consecutive losses. A run that aged out of the window counts
            # from zero again, so its next crossing is reported.
            losses = self._consecutive_losses(settings, now)
            limit = settings.max_consecutive_losses
            if losses >= limit and losses_before < limit:
                self.state.cooldown_until = now + timedelta(seconds=settings.cooldown_duration_seconds)
                self._stop(REASON_CONSECUTIVE_LOSS)
                self._emit(
                    RiskEventType.CONSECUTIVE_LOSS,
                    f"{losses} consecutive losses (limit {limit})",
                    now,
                )

            # 2. Daily loss ceiling
            daily_pnl = self._daily_profit_loss(now)
            if self._daily_loss_exceeded(settings, daily_pnl):
                if not self.state.daily_loss_tripped:
                    self.state.daily_loss_tripped = True
                    self._stop(REASON_DAILY_LOSS_LIMIT)
                    self._emit(
                        RiskEventType.DAILY_LOSS_LIMIT,
                        f"Daily loss {daily_pnl} reached limit -{settings.max_daily_loss_amount}",
                        now,
                    )
            else:
                self.state.daily_loss_tripped = False

    def on_price_shock(
        self,
        change_pct: Decimal | None,
        threshold: Decimal | None = None,
        instrument_id: str | None = None,
    ) -> bool:
        """
        Trip the circuit breaker when a price drop reaches the threshold.

        Args:
            change_pct: Observed change in percent (negative for a drop).
            threshold: Negative trip level; defaults to the configured one.
            instrument_id: Instrument the move was observed on, for the audit trail.

        Returns:
            True if the breaker is active after the call because of this move.
        """
        if change_pct is None:
            return False

        with self._lock:
            settings = self._settings
            if threshold is None:
                threshold = settings.circuit_breaker_threshold_pct

            if change_pct > threshold:
                return False

            if self.state.circuit_breaker_active:
                logger.debug(f"Circuit breaker already active, ignoring {change_pct}% move")
                return True

            now = self._now()
            self.state.circuit_breaker_active = True
            self.state.cooldown_until = now + timedelta(seconds=settings.cooldown_duration_seconds)
            self._stop(REASON_CIRCUIT_BREAKER)

            where = f"{instrument_id}: " if instrument_id else ""
            self._emit(
                RiskEventType.CIRCUIT_BREAKER,
                f"{where}price change {change_pct:.2f}% <= threshold {threshold}%",
                now,
            )
            return True

    def manual_reset(self, kind: ResetKind | str) -> ResetResult:
        """
        Clear the circuit breaker and/or cooldown. Idempotent.

        Loss-based conditions are not cleared; if any still holds the guard
        stays STOPPED and can_trade() keeps returning False.

        Raises:
            ValueError: If ``kind`` is not a known reset kind.
        """
        kind = ResetKind(kind)

        with self._lock:
            now = self._now()

            breaker_cleared = False
            if kind == ResetKind.CIRCUIT_BREAKER:
                breaker_cleared = self.state.circuit_breaker_active
                self.state.circuit_breaker_active = False

            cooldown_cleared = self._cooldown_active(now)
            self.state.cooldown_until = None
            self.state.status_reason = REASON_MANUAL_RESET

            self._emit(RiskEventType.MANUAL_RESET, f"{kind.value} manually reset", now)

            reasons = self._blocking_reasons(self._settings, now)
            if reasons:
                self.state.trading_status = TradingStatus.STOPPED
                self.state.status_reason = reasons[0]
                logger.warning(f"{kind.value} reset but trading still blocked by: {', '.join(reasons)}")
            else:
                self.state.trading_status = TradingStatus.RUNNING
                logger.warning(f"{kind.value} reset. Trading resumed.")

            return ResetResult(
                kind=kind,
                circuit_breaker_cleared=breaker_cleared,
                cooldown_cleared=cooldown_cleared,
                trading_status=self.state.trading_status,
                can_trade=not reasons,
                blocking_reasons=tuple(reasons),
            )

    def record_event(self, event_type: RiskEventType, detail: str) -> RiskEvent:
        """Append an audit event that does not change trading state (e.g. API errors)."""
        with self._lock:
            return self._emit(event_type, detail, self._now())

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    def consecutive_losses(self) -> int:
        with self._lock:
            return self._consecutive_losses(self._settings, self._now())

    def daily_profit_loss(self) -> Decimal:
        with self._lock:
            return self._daily_profit_loss(self._now())

    def snapshot(self) -> RiskSnapshot:
        """Current state for dashboards. Reflects a fully applied update or none of it."""
        with self._lock:
            settings = self._settings
            now = self._now()
            reasons = self._blocking_reasons(settings, now)
            cooldown_active = self._cooldown_active(now)
            remaining = 0
            if cooldown_active:
                remaining = int((self.state.cooldown_until - now).total_seconds() + 0.999)

            return RiskSnapshot(
                trading_status=self.state.trading_status,
                can_trade=not reasons,
                consecutive_losses=self._consecutive_losses(settings, now),
                circuit_breaker_active=self.state.circuit_breaker_active,
                cooldown_active=cooldown_active,
                cooldown_remaining_seconds=remaining,
                cooldown_until=self.state.cooldown_until if cooldown_active else None,
                status_reason=self.state.status_reason,
                daily_profit_loss=self._daily_profit_loss(now),
                daily_window_start=self._today(now),
                blocking_reasons=tuple(reasons),
            )

    def recent_events(self, limit: int = 20) -> list[RiskEvent]:
        """Newest first."""
        with self._lock:
            return list(reversed(self._events[-limit:])) if limit > 0 else []

    def events(
        self, event_type: RiskEventType | None = None, since: datetime | None = None
    ) -> list[RiskEvent]:
        """Filtered event feed, newest first."""
        with self._lock:
            selected = [
                e
                for e in self._events
                if (event_type is None or e.event_type == event_type)
                and (since is None or e.triggered_at >= since)
            ]
        return list(reversed(selected))

    def outcomes(self) -> tuple[TradeOutcome, ...]:
        with self._lock:
            return tuple(self._outcomes)

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=self.tz)
        return now

    def _today(self, now: datetime) -> date:
        return now.astimezone(self.tz).date()

    def _day_start(self, now: datetime) -> datetime:
        return datetime.combine(self._today(now), time.min, tzinfo=self.tz)

    def _roll_daily_window(self, now: datetime) -> None:
        today = self._today(now)
        if self.state.daily_window_start != today:
            if self.state.daily_window_start is not None:
                logger.info(f"New trading day ({today}). Daily loss window reset.")
            self.state.daily_window_start = today
            self.state.daily_loss_tripped = False

    def _consecutive_losses(self, settings: RiskSettings, now: datetime) -> int:
        cutoff = None
        if settings.consecutive_loss_window_hours is not None:
            cutoff = now - timedelta(hours=settings.consecutive_loss_window_hours)

        count = 0
        for outcome in reversed(self._outcomes):
            if cutoff is not None and outcome.executed_at < cutoff:
                break
            if not outcome.is_loss:
                break
            count += 1
        return count

    def _daily_profit_loss(self, now: datetime) -> Decimal:
        start = self._day_start(now)
        total = Decimal("0")
        for outcome in reversed(self._outcomes):
            if outcome.executed_at < start:
                break
            total += outcome.profit_loss
        return total

    @staticmethod
    def _daily_loss_exceeded(settings: RiskSettings, daily_pnl: Decimal) -> bool:
        return daily_pnl < 0 and -daily_pnl >= settings.max_daily_loss_amount

    def _cooldown_active(self, now: datetime) -> bool:
        return self.state.cooldown_until is not None and self.state.cooldown_until > now

    def _blocking_reasons(self, settings: RiskSettings, now: datetime) -> list[str]:
        reasons: list[str] = []

        if self._cooldown_active(now):
            reasons.append(REASON_COOLDOWN)

        if self.state.circuit_breaker_active:
            reasons.append(REASON_CIRCUIT_BREAKER)

        if self._consecutive_losses(settings, now) >= settings.max_consecutive_losses:
            reasons.append(REASON_CONSECUTIVE_LOSS)

        if self._daily_loss_exceeded(settings, self._daily_profit_loss(now)):
            reasons.append(REASON_DAILY_LOSS_LIMIT)

        return reasons

    def _stop(self, reason: str) -> None:
        if self.state.trading_status != TradingStatus.STOPPED:
            logger.critical(f"TRADING STOPPED: {reason}")
        self.state.trading_status = TradingStatus.STOPPED
        self.state.status_reason = reason

    def _emit(self, event_type: RiskEventType, detail: str, now: datetime) -> RiskEvent:
        event = RiskEvent(event_type=event_type, detail=detail, triggered_at=now)
        self._events.append(event)
        logger.warning(f"Risk event {event_type.value}: {detail}")

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Risk event listener failed: {e}", exc_info=True)

        return event
