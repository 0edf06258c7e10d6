"""Configuration loader with Pydantic validation and environment variable interpolation."""

from __future__ import annotations

import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Load environment variables at module level
load_dotenv(find_dotenv(usecwd=True))

from coinguard.constants import (
    DEFAULT_AMOUNT_PER_TRADE,
    DEFAULT_CANDLE_COUNT,
    DEFAULT_CIRCUIT_BREAKER_THRESHOLD_PCT,
    DEFAULT_CONSECUTIVE_LOSS_WINDOW_HOURS,
    DEFAULT_COOLDOWN_DURATION_SECONDS,
    DEFAULT_EMA_LONG_PERIOD,
    DEFAULT_EMA_SHORT_PERIOD,
    DEFAULT_INITIAL_DELAY_SECONDS,
    DEFAULT_MAX_CONSECUTIVE_LOSSES,
    DEFAULT_MAX_DAILY_LOSS_AMOUNT,
    DEFAULT_MAX_TRADE_AMOUNT,
    DEFAULT_RSI_OVERSOLD,
    DEFAULT_RSI_PERIOD,
    DEFAULT_SCAN_INTERVAL_SECONDS,
    DEFAULT_STOP_LOSS_PCT,
    DEFAULT_TAKE_PROFIT_PCT,
    DEFAULT_TIMEZONE,
    DEFAULT_TOP_N,
    UPBIT_BASE_URL,
    UPBIT_DEFAULT_MARKETS,
    GatewayMode,
    LogLevel,
)


def interpolate_env_vars(value: Any) -> Any:
    """
    Interpolate environment variables in string values.

    Supports formats:
    - ${VAR_NAME} - required, empty string if not set
    - ${VAR_NAME:default} - optional with default value
    """
    if not isinstance(value, str):
        return value

    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default is not None:
            return default
        else:
            return ""

    return re.sub(pattern, replacer, value)


def process_config_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively process config dict to interpolate env vars."""
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = process_config_dict(value)
        elif isinstance(value, list):
            result[key] = [
                process_config_dict(item) if isinstance(item, dict) else interpolate_env_vars(item)
                for item in value
            ]
        else:
            result[key] = interpolate_env_vars(value)
    return result


def _to_decimal(v: Any) -> Decimal:
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


# ============================================
# Pydantic Configuration Models
# ============================================


class EnvironmentConfig(BaseModel):
    """Environment and runtime settings."""

    dry_run: bool = True
    gateway_mode: GatewayMode = GatewayMode.SIM
    log_level: LogLevel = LogLevel.INFO
    timezone: str = DEFAULT_TIMEZONE

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone name resolves."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class RiskConfig(BaseModel):
    """Risk guard thresholds.

    Frozen: a running guard never sees a half-updated settings object.
    Hot reload replaces the whole instance.
    """

    model_config = ConfigDict(frozen=True)

    max_consecutive_losses: int = DEFAULT_MAX_CONSECUTIVE_LOSSES
    circuit_breaker_threshold_pct: Decimal = DEFAULT_CIRCUIT_BREAKER_THRESHOLD_PCT
    cooldown_duration_seconds: int = DEFAULT_COOLDOWN_DURATION_SECONDS
    max_daily_loss_amount: Decimal = DEFAULT_MAX_DAILY_LOSS_AMOUNT
    max_trade_amount: Decimal = DEFAULT_MAX_TRADE_AMOUNT
    consecutive_loss_window_hours: int | None = DEFAULT_CONSECUTIVE_LOSS_WINDOW_HOURS

    @field_validator(
        "circuit_breaker_threshold_pct",
        "max_daily_loss_amount",
        "max_trade_amount",
        mode="before",
    )
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal."""
        return _to_decimal(v)

    @field_validator("max_consecutive_losses")
    @classmethod
    def validate_max_consecutive_losses(cls, v: int) -> int:
        if not 1 <= v <= 10:
            raise ValueError(f"max_consecutive_losses must be 1-10, got: {v}")
        return v

    @field_validator("circuit_breaker_threshold_pct")
    @classmethod
    def validate_threshold(cls, v: Decimal) -> Decimal:
        """Threshold is a drop, so it must be negative."""
        if not Decimal("-10.0") <= v <= Decimal("-0.5"):
            raise ValueError(f"circuit_breaker_threshold_pct must be between -10.0 and -0.5, got: {v}")
        return v

    @field_validator("cooldown_duration_seconds")
    @classmethod
    def validate_cooldown(cls, v: int) -> int:
        if not 60 <= v <= 3600:
            raise ValueError(f"cooldown_duration_seconds must be 60-3600, got: {v}")
        return v

    @field_validator("max_daily_loss_amount", "max_trade_amount")
    @classmethod
    def validate_positive_amount(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError(f"Amount must be positive, got: {v}")
        return v

    @field_validator("consecutive_loss_window_hours")
    @classmethod
    def validate_window(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError(f"consecutive_loss_window_hours must be positive, got: {v}")
        return v


# The guard consumes the risk section as-is.
RiskSettings = RiskConfig


class ScanConfig(BaseModel):
    """Scan loop scheduling and trade sizing."""

    auto_trading_enabled: bool = False
    interval_seconds: float = DEFAULT_SCAN_INTERVAL_SECONDS
    initial_delay_seconds: float = DEFAULT_INITIAL_DELAY_SECONDS
    amount_per_trade: Decimal = DEFAULT_AMOUNT_PER_TRADE
    take_profit_pct: Decimal = DEFAULT_TAKE_PROFIT_PCT
    stop_loss_pct: Decimal = DEFAULT_STOP_LOSS_PCT
    top_n: int = DEFAULT_TOP_N
    candle_count: int = DEFAULT_CANDLE_COUNT
    max_workers: int = 4

    @field_validator("amount_per_trade", "take_profit_pct", "stop_loss_pct", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal."""
        return _to_decimal(v)

    @field_validator("interval_seconds", "initial_delay_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Delay must be non-negative, got: {v}")
        return v

    @field_validator("take_profit_pct", "stop_loss_pct")
    @classmethod
    def validate_pct(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError(f"Percentage must be positive, got: {v}")
        return v

    @field_validator("top_n", "candle_count", "max_workers")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class IndicatorConfig(BaseModel):
    """Signal scoring parameters."""

    ema_short_period: int = DEFAULT_EMA_SHORT_PERIOD
    ema_long_period: int = DEFAULT_EMA_LONG_PERIOD
    rsi_period: int = DEFAULT_RSI_PERIOD
    rsi_oversold: Decimal = DEFAULT_RSI_OVERSOLD
    volume_window: int = 5
    volume_increase_ratio: Decimal = Decimal("1.2")
    buy_confidence_threshold: int = 60

    @field_validator("rsi_oversold", "volume_increase_ratio", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        return _to_decimal(v)

    @model_validator(mode="after")
    def validate_periods(self) -> IndicatorConfig:
        """EMA periods must be positive and ordered short < long."""
        if self.ema_short_period <= 0 or self.rsi_period <= 0 or self.volume_window <= 0:
            raise ValueError("Indicator periods must be positive")
        if self.ema_short_period >= self.ema_long_period:
            raise ValueError(
                f"ema_short_period ({self.ema_short_period}) must be less than "
                f"ema_long_period ({self.ema_long_period})"
            )
        return self

    @property
    def min_window(self) -> int:
        """Fewest bars an instrument needs before it is evaluated."""
        return max(self.ema_long_period, self.rsi_period + 1, 2 * self.volume_window)


class GatewayConfig(BaseModel):
    """Exchange gateway settings."""

    base_url: str = UPBIT_BASE_URL
    timeout_seconds: float = 5.0
    markets: list[str] = Field(default_factory=lambda: list(UPBIT_DEFAULT_MARKETS))
    sim_seed: int = 7

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be positive, got: {v}")
        return v


class AdminConfig(BaseModel):
    """Administrative HTTP surface."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080


class AppConfig(BaseModel):
    """Root application configuration."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)

    @model_validator(mode="after")
    def validate_candle_count(self) -> AppConfig:
        """Fetching fewer candles than the indicators need would skip every instrument."""
        if self.scan.candle_count < self.indicators.min_window:
            raise ValueError(
                f"scan.candle_count ({self.scan.candle_count}) must be at least "
                f"the indicator window ({self.indicators.min_window})"
            )
        return self

    @property
    def is_dry_run(self) -> bool:
        """Check if running in dry run mode."""
        return self.environment.dry_run

    @property
    def is_sim_mode(self) -> bool:
        """Check if using the simulated gateway."""
        return self.environment.gateway_mode == GatewayMode.SIM


# ============================================
# Configuration Loader
# ============================================


class ConfigLoader:
    """Load and validate configuration from YAML files with env var interpolation."""

    def __init__(self, config_path: str | Path) -> None:
        """
        Initialize config loader.

        Args:
            config_path: Path to the YAML configuration file.
        """
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """
        Load and validate configuration.

        Returns:
            Validated AppConfig instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            yaml.YAMLError: If YAML is invalid.
            pydantic.ValidationError: If config validation fails.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raw_config = {}

        processed_config = process_config_dict(raw_config)

        self._config = AppConfig.model_validate(processed_config)

        return self._config

    @property
    def config(self) -> AppConfig:
        """Get loaded config, loading if necessary."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Force reload configuration from disk."""
        self._config = None
        return self.load()


def load_config(config_path: str | Path) -> AppConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated AppConfig instance.
    """
    loader = ConfigLoader(config_path)
    return loader.load()


def load_config_with_overrides(
    config_path: str | Path,
    *,
    dry_run: bool | None = None,
    gateway_mode: str | None = None,
) -> AppConfig:
    """
    Load configuration with CLI overrides.

    Args:
        config_path: Path to the YAML configuration file.
        dry_run: Override dry_run setting.
        gateway_mode: Override gateway mode.

    Returns:
        Validated AppConfig instance with overrides applied.
    """
    config = load_config(config_path)

    env_updates: dict[str, Any] = {}

    if dry_run is not None:
        env_updates["dry_run"] = dry_run

    if gateway_mode is not None:
        env_updates["gateway_mode"] = GatewayMode(gateway_mode.lower())

    if env_updates:
        return config.model_copy(
            update={"environment": config.environment.model_copy(update=env_updates)}
        )

    return config
