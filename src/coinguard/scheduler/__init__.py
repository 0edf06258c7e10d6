"""Scheduler Module - Fixed-delay scan loop."""

from coinguard.scheduler.scan_loop import Position, ScanLoop, TickReport

__all__ = [
    "ScanLoop",
    "TickReport",
    "Position",
]
