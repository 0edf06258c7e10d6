"""Gateway models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from coinguard.constants import OrderSide, OrderStatus


def generate_id() -> str:
    """Generate unique ID."""
    return str(uuid4())


@dataclass(frozen=True)
class Instrument:
    """Tradable market with its ranking metric."""

    instrument_id: str
    last_price: Decimal
    traded_value_24h: Decimal = Decimal("0")
    change_rate: Decimal | None = None  # Signed fraction vs previous close

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument_id": self.instrument_id,
            "last_price": str(self.last_price),
            "traded_value_24h": str(self.traded_value_24h),
            "change_rate": str(self.change_rate) if self.change_rate is not None else None,
        }


@dataclass
class OrderResult:
    """Gateway response to an order submission."""

    order_id: str
    instrument_id: str
    side: OrderSide
    status: OrderStatus
    price: Decimal = Decimal("0")
    quantity: Decimal = Decimal("0")
    message: str = ""
    executed_at: datetime = field(default_factory=datetime.now)

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED and self.quantity > 0

    @property
    def amount(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "instrument_id": self.instrument_id,
            "side": self.side.value,
            "status": self.status.value,
            "price": str(self.price),
            "quantity": str(self.quantity),
            "message": self.message,
            "executed_at": self.executed_at.isoformat(),
        }
