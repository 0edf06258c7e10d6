"""Technical indicators and the buy-signal scoring rule."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from coinguard.data.bars import PriceSeries

if TYPE_CHECKING:
    from coinguard.config_loader import IndicatorConfig

RSI_NEUTRAL = Decimal("50")
RSI_MAX = Decimal("100")

# Additive confidence weights
EMA_CROSSOVER_WEIGHT = 40
RSI_OVERSOLD_WEIGHT = 30
VOLUME_INCREASE_WEIGHT = 30


@dataclass(frozen=True)
class Signal:
    """Buy/hold decision for one instrument in one scan."""

    buy: bool
    confidence: int
    ema_short: Decimal = Decimal("0")
    ema_long: Decimal = Decimal("0")
    rsi: Decimal = RSI_NEUTRAL
    volume_increasing: bool = False

    @property
    def action(self) -> str:
        return "BUY" if self.buy else "HOLD"


def calculate_ema(prices: Sequence[Decimal], period: int) -> Decimal:
    """
    Calculate Exponential Moving Average.

    EMA = Price(t) * k + EMA(y) * (1 - k)
    where k = 2 / (period + 1)

    Args:
        prices: Sequence of prices (oldest first)
        period: EMA period

    Returns:
        Current EMA value, or Decimal("0") if insufficient data
    """
    if len(prices) < period:
        return Decimal("0")

    k = Decimal("2") / (Decimal(str(period)) + Decimal("1"))

    # Start with SMA for first EMA value
    sma = sum(prices[:period]) / Decimal(str(period))
    ema = sma

    for price in prices[period:]:
        ema = price * k + ema * (Decimal("1") - k)

    return ema


def calculate_rsi(prices: Sequence[Decimal], period: int) -> Decimal:
    """
    Calculate Relative Strength Index over the most recent ``period`` deltas.

    Uses simple averages of gains and losses (no Wilder smoothing).

    Args:
        prices: Sequence of prices (oldest first)
        period: Number of deltas to average

    Returns:
        RSI in [0, 100]; 50 when fewer than ``period + 1`` prices,
        100 when the average loss is zero.
    """
    if len(prices) < period + 1:
        return RSI_NEUTRAL

    window = prices[-(period + 1):]
    gains = Decimal("0")
    losses = Decimal("0")

    for prev, current in zip(window, window[1:]):
        change = current - prev
        if change > 0:
            gains += change
        else:
            losses += -change

    avg_gain = gains / period
    avg_loss = losses / period

    if avg_loss == 0:
        return RSI_MAX

    rs = avg_gain / avg_loss
    return RSI_MAX - (RSI_MAX / (Decimal("1") + rs))


def is_volume_increasing(
    bars: PriceSeries, window: int = 5, ratio: Decimal = Decimal("1.2")
) -> bool:
    """
    Compare mean volume of the latest ``window`` bars against the ``window`` before them.

    Returns:
        True if the recent mean exceeds ``ratio`` times the prior mean.
        False when there are fewer than ``2 * window`` bars.
    """
    if len(bars) < 2 * window:
        return False

    recent = bars[-window:]
    prior = bars[-2 * window : -window]

    recent_mean = sum((b.volume for b in recent), Decimal("0")) / window
    prior_mean = sum((b.volume for b in prior), Decimal("0")) / window

    return recent_mean > prior_mean * ratio


def price_change_pct(bars: PriceSeries) -> Decimal | None:
    """Percentage change of the latest close against the previous close."""
    if len(bars) < 2:
        return None

    prev_close = bars[-2].close
    if prev_close == 0:
        return None

    return (bars[-1].close - prev_close) / prev_close * Decimal("100")


def evaluate_signal(bars: PriceSeries, config: IndicatorConfig) -> Signal:
    """
    Score a price series with the fixed additive rule.

    +40 short EMA above long EMA, +30 RSI below oversold, +30 rising volume.
    Buy requires the crossover AND rising volume AND the confidence threshold.
    """
    closes = [bar.close for bar in bars]

    ema_short = calculate_ema(closes, config.ema_short_period)
    ema_long = calculate_ema(closes, config.ema_long_period)
    rsi = calculate_rsi(closes, config.rsi_period)
    volume_up = is_volume_increasing(bars, config.volume_window, config.volume_increase_ratio)

    ema_crossover = ema_short > ema_long
    rsi_oversold = rsi < config.rsi_oversold

    confidence = 0
    if ema_crossover:
        confidence += EMA_CROSSOVER_WEIGHT
    if rsi_oversold:
        confidence += RSI_OVERSOLD_WEIGHT
    if volume_up:
        confidence += VOLUME_INCREASE_WEIGHT

    buy = ema_crossover and volume_up and confidence >= config.buy_confidence_threshold

    return Signal(
        buy=buy,
        confidence=confidence,
        ema_short=ema_short,
        ema_long=ema_long,
        rsi=rsi,
        volume_increasing=volume_up,
    )
