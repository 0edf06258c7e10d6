"""Risk Module - Trade gating, loss tracking and manual overrides."""

from coinguard.risk.models import ResetResult, RiskEvent, RiskSnapshot, RiskState, TradeOutcome
from coinguard.risk.risk_guard import RiskGuard

__all__ = [
    "RiskGuard",
    "RiskState",
    "RiskSnapshot",
    "RiskEvent",
    "ResetResult",
    "TradeOutcome",
]
