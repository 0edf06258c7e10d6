"""CoinGuard Main Application."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path

from coinguard.admin.server import AdminServer
from coinguard.config_loader import AppConfig, load_config, load_config_with_overrides
from coinguard.constants import LOG_FORMAT, GatewayMode, RiskEventType
from coinguard.gateway.base import OrderGateway
from coinguard.gateway.sim import SimGateway
from coinguard.gateway.upbit import UpbitGateway
from coinguard.risk.models import RiskEvent
from coinguard.risk.risk_guard import RiskGuard
from coinguard.scheduler.scan_loop import ScanLoop, TickReport

logger = logging.getLogger(__name__)


class CoinGuardApp:
    """Main application orchestrator."""

    def __init__(
        self,
        config_path: str = "config/config.yaml",
        dry_run: bool = False,
        gateway_mode: str | None = None,
    ):
        self.config_path = Path(config_path)
        self.config: AppConfig | None = None
        self._dry_run_override = dry_run
        self._gateway_mode_override = gateway_mode

        # Components
        self.gateway: OrderGateway | None = None
        self.risk: RiskGuard | None = None
        self.scan_loop: ScanLoop | None = None
        self.admin: AdminServer | None = None

        self._shutdown_event = asyncio.Event()

    def _setup_logging(self) -> None:
        level = self.config.environment.log_level.value if self.config else "INFO"
        logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)

    def initialize(self) -> None:
        """Load config and build components."""
        self.config = load_config_with_overrides(
            self.config_path.absolute(),
            dry_run=True if self._dry_run_override else None,
            gateway_mode=self._gateway_mode_override,
        )
        self._setup_logging()
        logger.info("Initializing CoinGuard...")

        if self.config.is_dry_run:
            logger.info("Dry run mode: orders are simulated")

        self.risk = RiskGuard(self.config.risk, timezone=self.config.environment.timezone)
        self.risk.add_event_listener(self._on_risk_event)

        self.gateway = self._build_gateway()

        self.scan_loop = ScanLoop(
            gateway=self.gateway,
            risk_guard=self.risk,
            scan_config=self.config.scan,
            indicator_config=self.config.indicators,
            timeout_seconds=self.config.gateway.timeout_seconds,
        )

        if self.config.admin.enabled:
            self.admin = AdminServer(
                self.risk, self.scan_loop, host=self.config.admin.host, port=self.config.admin.port
            )

        logger.info(
            f"Components ready: gateway={self.config.environment.gateway_mode.value}, "
            f"auto_trading={self.scan_loop.trading_enabled}"
        )

    def _build_gateway(self) -> OrderGateway:
        gw = self.config.gateway
        if self.config.environment.gateway_mode == GatewayMode.SIM:
            logger.info("Using SimGateway (in-memory market)")
            return SimGateway(markets=gw.markets, seed=gw.sim_seed)

        logger.info(f"Using UpbitGateway ({gw.base_url})")
        return UpbitGateway(
            markets=gw.markets,
            base_url=gw.base_url,
            timeout_seconds=gw.timeout_seconds,
            dry_run=self.config.is_dry_run,
        )

    def reload_config(self) -> None:
        """Re-read the config file and hot-swap risk settings."""
        try:
            fresh = load_config(self.config_path.absolute())
        except Exception as e:
            logger.error(f"Config reload failed, keeping current settings: {e}")
            return
        self.risk.update_settings(fresh.risk)

    def _on_risk_event(self, event: RiskEvent) -> None:
        if event.event_type in (RiskEventType.CIRCUIT_BREAKER, RiskEventType.DAILY_LOSS_LIMIT):
            logger.critical(f"ALERT {event.event_type.value}: {event.detail}")

    async def scan_once(self) -> TickReport:
        """Run a single tick with the trading switch forced on."""
        if not self.config:
            self.initialize()

        await self.gateway.connect()
        try:
            self.scan_loop.enable_trading()
            return await self.scan_loop.tick()
        finally:
            await self.gateway.disconnect()

    async def run(self) -> None:
        """Run the application loop."""
        if not self.config:
            self.initialize()

        logger.info("Starting run loop...")

        # Trap signals
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._handle_signal)
            if hasattr(signal, "SIGHUP"):
                loop.add_signal_handler(signal.SIGHUP, self.reload_config)
        except NotImplementedError:
            logger.warning("Signal handlers not supported in this environment. Use Ctrl+C to stop.")

        await self.gateway.connect()

        if self.admin:
            self.admin.start()

        loop_task = asyncio.create_task(self.scan_loop.run())

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            logger.info("Shutting down...")
            self.scan_loop.stop()
            await loop_task

            if self.admin:
                self.admin.stop()

            await self.gateway.disconnect()
            logger.info("Shutdown complete.")

    def _handle_signal(self) -> None:
        logger.info("Signal received, initiating shutdown...")
        self._shutdown_event.set()
