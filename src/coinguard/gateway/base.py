"""Base order gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal

from coinguard.data.bars import Bar
from coinguard.gateway.models import Instrument, OrderResult


class OrderGateway(ABC):
    """
    Abstract market-data and order gateway.

    Implementations raise coinguard.errors.GatewayError (or a subclass) for
    timeouts, transport failures and malformed payloads.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open connections/sessions."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release connections/sessions."""
        pass

    @abstractmethod
    async def ranked_instruments(self, limit: int) -> list[Instrument]:
        """Top instruments by 24h traded value, highest first."""
        pass

    @abstractmethod
    async def price_series(self, instrument_id: str, count: int) -> list[Bar]:
        """Recent bars for an instrument, oldest first."""
        pass

    @abstractmethod
    async def place_market_buy(self, instrument_id: str, amount: Decimal) -> OrderResult:
        """Buy ``amount`` worth (quote currency) at market."""
        pass

    @abstractmethod
    async def place_limit_sell(
        self, instrument_id: str, price: Decimal, quantity: Decimal
    ) -> OrderResult:
        """Sell ``quantity`` at limit ``price``."""
        pass
