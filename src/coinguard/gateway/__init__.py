"""Gateway Module - Market data and order placement."""

from coinguard.gateway.base import OrderGateway
from coinguard.gateway.models import Instrument, OrderResult
from coinguard.gateway.sim import SimGateway
from coinguard.gateway.upbit import UpbitGateway

__all__ = [
    "OrderGateway",
    "Instrument",
    "OrderResult",
    "SimGateway",
    "UpbitGateway",
]
