"""Bar data structure."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class Bar:
    """OHLCV Bar."""

    instrument_id: str
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


# Ordered oldest first, most recent last. Lives for one scan cycle.
PriceSeries = Sequence[Bar]
