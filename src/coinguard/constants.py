"""Core constants for CoinGuard."""

from decimal import Decimal
from enum import Enum


class GatewayMode(str, Enum):
    """Market/order gateway selection."""

    SIM = "sim"
    UPBIT = "upbit"


class OrderSide(str, Enum):
    """Order side (buy/sell)."""

    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    """Order lifecycle status as reported by a gateway."""

    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class TradingStatus(str, Enum):
    """Risk guard state machine states."""

    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class RiskEventType(str, Enum):
    """Audit event types emitted by the risk guard."""

    CONSECUTIVE_LOSS = "CONSECUTIVE_LOSS"
    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"
    DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
    MANUAL_RESET = "MANUAL_RESET"
    API_ERROR = "API_ERROR"


class ResetKind(str, Enum):
    """Manual override targets."""

    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"
    COOLDOWN = "COOLDOWN"


class ExitReason(str, Enum):
    """Why an open position was closed."""

    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# ============================================
# Status reasons
# ============================================

REASON_OK = "OK"
REASON_CONSECUTIVE_LOSS = RiskEventType.CONSECUTIVE_LOSS.value
REASON_CIRCUIT_BREAKER = RiskEventType.CIRCUIT_BREAKER.value
REASON_DAILY_LOSS_LIMIT = RiskEventType.DAILY_LOSS_LIMIT.value
REASON_MANUAL_RESET = RiskEventType.MANUAL_RESET.value
REASON_COOLDOWN = "COOLDOWN"

# ============================================
# Default Values
# ============================================

DEFAULT_TIMEZONE = "Asia/Seoul"

DEFAULT_MAX_CONSECUTIVE_LOSSES = 3
DEFAULT_CIRCUIT_BREAKER_THRESHOLD_PCT = Decimal("-3.0")
DEFAULT_COOLDOWN_DURATION_SECONDS = 600
DEFAULT_MAX_DAILY_LOSS_AMOUNT = Decimal("50000")
DEFAULT_MAX_TRADE_AMOUNT = Decimal("100000")
DEFAULT_CONSECUTIVE_LOSS_WINDOW_HOURS = 24

DEFAULT_AMOUNT_PER_TRADE = Decimal("10000")
DEFAULT_TAKE_PROFIT_PCT = Decimal("1.0")
DEFAULT_STOP_LOSS_PCT = Decimal("0.5")
DEFAULT_SCAN_INTERVAL_SECONDS = 5.0
DEFAULT_INITIAL_DELAY_SECONDS = 10.0
DEFAULT_TOP_N = 5
DEFAULT_CANDLE_COUNT = 20

DEFAULT_EMA_SHORT_PERIOD = 5
DEFAULT_EMA_LONG_PERIOD = 20
DEFAULT_RSI_PERIOD = 14
DEFAULT_RSI_OVERSOLD = Decimal("30")

UPBIT_BASE_URL = "https://api.upbit.com"
UPBIT_TICKER_PATH = "/v1/ticker"
UPBIT_CANDLES_PATH = "/v1/candles/minutes/1"
UPBIT_MAX_CANDLES = 200
UPBIT_DEFAULT_MARKETS = ["KRW-BTC", "KRW-ETH", "KRW-XRP", "KRW-ADA", "KRW-SOL"]

# ============================================
# Application Constants
# ============================================

APP_NAME = "coinguard"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
