"""Administrative HTTP surface.

Small JSON API on a daemon thread for dashboards and operators: risk status,
event feed, manual resets, the global trading switch and the latest
market ranking.
"""

from __future__ import annotations

import json
import logging
import threading
from decimal import Decimal, InvalidOperation
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlsplit

from coinguard.constants import ResetKind, RiskEventType

if TYPE_CHECKING:
    from coinguard.risk.risk_guard import RiskGuard
    from coinguard.scheduler.scan_loop import ScanLoop

logger = logging.getLogger(__name__)

DEFAULT_EVENT_LIMIT = 20
DEFAULT_TRADE_LIMIT = 50
DEFAULT_TOP_LIMIT = 5


class AdminError(Exception):
    """Request failure carrying an HTTP status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status


class AdminServer:
    """Serves the admin API for one risk guard / scan loop pair."""

    def __init__(
        self,
        risk_guard: RiskGuard,
        scan_loop: ScanLoop,
        host: str = "127.0.0.1",
        port: int = 8080,
    ):
        self.risk_guard = risk_guard
        self.scan_loop = scan_loop
        self.host = host
        self.port = port
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        """Bound address (resolves port 0 once started)."""
        if self._server is None:
            return self.host, self.port
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    @property
    def url(self) -> str:
        host, port = self.address
        return f"http://{host}:{port}"

    def start(self) -> None:
        """Start serving on a daemon thread."""
        if self._server is not None:
            return
        self._server = HTTPServer((self.host, self.port), self._handler_class())
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="coinguard-admin", daemon=True
        )
        self._thread.start()
        logger.info(f"Admin server listening on {self.url}")

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.info("Admin server stopped")

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def handle_get(self, path: str, query: dict[str, list[str]]) -> dict[str, Any]:
        if path == "/health":
            return {
                "status": "ok",
                "scan_loop_running": self.scan_loop.is_running,
                "trading_enabled": self.scan_loop.trading_enabled,
                "tick_count": self.scan_loop.tick_count,
            }

        if path == "/risk/status":
            status = self.risk_guard.snapshot().to_dict()
            status["trading_enabled"] = self.scan_loop.trading_enabled
            return status

        if path == "/risk/settings":
            return self.risk_guard.settings.model_dump(mode="json")

        if path == "/risk/events":
            limit = _int_param(query, "limit", DEFAULT_EVENT_LIMIT)
            event_type = _param(query, "type")
            if event_type is not None:
                try:
                    kind = RiskEventType(event_type.upper())
                except ValueError as e:
                    raise AdminError(400, f"Unknown event type: {event_type}") from e
                events = self.risk_guard.events(event_type=kind)[:limit]
            else:
                events = self.risk_guard.recent_events(limit)
            return {"events": [e.to_dict() for e in events]}

        if path == "/risk/validate-amount":
            amount = _decimal_param(query, "amount")
            return {
                "amount": str(amount),
                "valid": self.risk_guard.validate_amount(amount),
                "max_trade_amount": str(self.risk_guard.settings.max_trade_amount),
            }

        if path == "/market/top":
            limit = _int_param(query, "limit", DEFAULT_TOP_LIMIT)
            ranked = self.scan_loop.ranked_instruments()[:limit]
            return {"instruments": [i.to_dict() for i in ranked]}

        if path == "/market/ticker":
            market = _param(query, "market")
            if not market:
                raise AdminError(400, "market is required")
            for instrument in self.scan_loop.ranked_instruments():
                if instrument.instrument_id == market:
                    return instrument.to_dict()
            raise AdminError(404, f"{market} not in the latest ranking")

        if path == "/trading/positions":
            return {"positions": [p.to_dict() for p in self.scan_loop.open_positions()]}

        if path == "/trading/trades":
            limit = _int_param(query, "limit", DEFAULT_TRADE_LIMIT)
            return {
                "trades": [
                    {
                        "instrument_id": t.instrument_id,
                        "side": t.side.value,
                        "price": str(t.price),
                        "quantity": str(t.quantity),
                        "profit_loss": str(t.profit_loss) if t.profit_loss is not None else None,
                        "executed_at": t.executed_at.isoformat(),
                    }
                    for t in self.scan_loop.recent_trades(limit)
                ]
            }

        raise AdminError(404, f"Not found: {path}")

    def handle_post(self, path: str) -> dict[str, Any]:
        if path == "/risk/circuit-breaker/reset":
            return self._reset(ResetKind.CIRCUIT_BREAKER)

        if path == "/risk/cooldown/reset":
            return self._reset(ResetKind.COOLDOWN)

        if path == "/trading/start":
            self.scan_loop.enable_trading()
            return {"trading_enabled": True, "can_trade": self.risk_guard.can_trade()}

        if path == "/trading/stop":
            self.scan_loop.disable_trading(reason="admin request")
            return {"trading_enabled": False}

        raise AdminError(404, f"Not found: {path}")

    def _reset(self, kind: ResetKind) -> dict[str, Any]:
        try:
            result = self.risk_guard.manual_reset(kind)
        except Exception as e:
            logger.error(f"Manual reset {kind.value} failed: {e}", exc_info=True)
            raise AdminError(500, f"Reset {kind.value} failed: {e}") from e
        return result.to_dict()

    def _handler_class(self) -> type[BaseHTTPRequestHandler]:
        admin = self

        class _Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                url = urlsplit(self.path)
                self._dispatch(lambda: admin.handle_get(url.path, parse_qs(url.query)))

            def do_POST(self):
                url = urlsplit(self.path)
                self._dispatch(lambda: admin.handle_post(url.path))

            def _dispatch(self, route):
                try:
                    body = route()
                    status = 200
                except AdminError as e:
                    body = {"error": str(e)}
                    status = e.status
                except Exception as e:
                    logger.error(f"Admin request {self.command} {self.path} failed: {e}", exc_info=True)
                    body = {"error": str(e)}
                    status = 500
                self._send_json(status, body)

            def _send_json(self, status: int, body: dict[str, Any]) -> None:
                payload = json.dumps(body).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def log_message(self, *args):
                pass  # suppress HTTP access logs

        return _Handler


def _param(query: dict[str, list[str]], name: str) -> str | None:
    values = query.get(name)
    return values[0] if values else None


def _int_param(query: dict[str, list[str]], name: str, default: int) -> int:
    raw = _param(query, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise AdminError(400, f"{name} must be an integer, got: {raw}") from e
    if value < 0:
        raise AdminError(400, f"{name} must be non-negative, got: {value}")
    return value


def _decimal_param(query: dict[str, list[str]], name: str) -> Decimal:
    raw = _param(query, name)
    if raw is None:
        raise AdminError(400, f"{name} is required")
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise AdminError(400, f"{name} must be a number, got: {raw}") from e
    if not value.is_finite():
        raise AdminError(400, f"{name} must be finite, got: {raw}")
    return value
