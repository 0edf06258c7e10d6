"""CoinGuard - risk-gated crypto scan-and-trade loop."""

__version__ = "0.1.0"
