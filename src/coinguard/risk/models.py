"""Risk data structures: outcomes, events, mutable state and read-only snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from coinguard.constants import REASON_OK, OrderSide, ResetKind, RiskEventType, TradingStatus


@dataclass(frozen=True)
class TradeOutcome:
    """A completed order. BUY outcomes carry no profit/loss."""

    instrument_id: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    executed_at: datetime
    profit_loss: Decimal | None = None

    @property
    def is_loss(self) -> bool:
        return self.profit_loss is not None and self.profit_loss < 0


@dataclass(frozen=True)
class RiskEvent:
    """Append-only audit record."""

    event_type: RiskEventType
    detail: str
    triggered_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "detail": self.detail,
            "triggered_at": self.triggered_at.isoformat(),
        }


@dataclass
class RiskState:
    """Mutable risk flags owned by a single RiskGuard.

    Loss counters are not stored here; they are derived from the outcome log
    on every read.
    """

    trading_status: TradingStatus = TradingStatus.RUNNING
    circuit_breaker_active: bool = False
    cooldown_until: datetime | None = None
    status_reason: str = REASON_OK

    # Daily trip already reported, so a crossing is emitted once per day.
    daily_loss_tripped: bool = False
    daily_window_start: date | None = None


@dataclass(frozen=True)
class RiskSnapshot:
    """Read-only projection of the guard for dashboards and alerts."""

    trading_status: TradingStatus
    can_trade: bool
    consecutive_losses: int
    circuit_breaker_active: bool
    cooldown_active: bool
    cooldown_remaining_seconds: int
    cooldown_until: datetime | None
    status_reason: str
    daily_profit_loss: Decimal
    daily_window_start: date
    blocking_reasons: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "trading_status": self.trading_status.value,
            "can_trade": self.can_trade,
            "consecutive_losses": self.consecutive_losses,
            "circuit_breaker_active": self.circuit_breaker_active,
            "cooldown_active": self.cooldown_active,
            "cooldown_remaining_seconds": self.cooldown_remaining_seconds,
            "cooldown_until": self.cooldown_until.isoformat() if self.cooldown_until else None,
            "status_reason": self.status_reason,
            "daily_profit_loss": str(self.daily_profit_loss),
            "daily_window_start": self.daily_window_start.isoformat(),
            "blocking_reasons": list(self.blocking_reasons),
        }


@dataclass(frozen=True)
class ResetResult:
    """Outcome of a manual override, reported back to the caller."""

    kind: ResetKind
    circuit_breaker_cleared: bool
    cooldown_cleared: bool
    trading_status: TradingStatus
    can_trade: bool
    blocking_reasons: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "circuit_breaker_cleared": self.circuit_breaker_cleared,
            "cooldown_cleared": self.cooldown_cleared,
            "trading_status": self.trading_status.value,
            "can_trade": self.can_trade,
            "blocking_reasons": list(self.blocking_reasons),
        }
