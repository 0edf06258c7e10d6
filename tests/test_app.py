"""Tests for application wiring and the run/scan CLI commands."""

import asyncio
from pathlib import Path

import httpx
import pytest
from click.testing import CliRunner

from coinguard.app import CoinGuardApp
from coinguard.cli import cli
from coinguard.gateway.sim import SimGateway
from coinguard.gateway.upbit import UpbitGateway

CONFIG = """
environment:
  dry_run: false
  gateway_mode: sim
scan:
  initial_delay_seconds: 0
  interval_seconds: 0.01
gateway:
  markets: [KRW-BTC, KRW-ETH]
admin:
  enabled: {admin}
  port: 0
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG.format(admin="false"))
    return path


def test_initialize_builds_sim_components(config_file):
    app = CoinGuardApp(config_path=str(config_file), dry_run=True)
    app.initialize()

    assert app.config.is_dry_run is True
    assert isinstance(app.gateway, SimGateway)
    assert app.scan_loop.risk_guard is app.risk
    assert app.scan_loop.trading_enabled is False
    assert app.admin is None


def test_gateway_mode_override(config_file):
    app = CoinGuardApp(config_path=str(config_file), gateway_mode="upbit")
    app.initialize()

    assert isinstance(app.gateway, UpbitGateway)
    assert app.gateway.dry_run is False


def test_reload_config_swaps_risk_settings(config_file):
    app = CoinGuardApp(config_path=str(config_file))
    app.initialize()
    assert app.risk.settings.max_consecutive_losses == 3

    config_file.write_text(CONFIG.format(admin="false") + "risk:\n  max_consecutive_losses: 5\n")
    app.reload_config()

    assert app.risk.settings.max_consecutive_losses == 5


def test_reload_keeps_settings_on_invalid_file(config_file):
    app = CoinGuardApp(config_path=str(config_file))
    app.initialize()

    config_file.write_text("risk:\n  max_consecutive_losses: 99\n")
    app.reload_config()

    assert app.risk.settings.max_consecutive_losses == 3


@pytest.mark.asyncio
async def test_scan_once_forces_trading_on(config_file):
    app = CoinGuardApp(config_path=str(config_file))

    report = await app.scan_once()

    assert not report.skipped
    assert report.instruments_scanned == 2
    assert app.scan_loop.trading_enabled is True


@pytest.mark.asyncio
async def test_run_serves_admin_until_shutdown(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG.format(admin="true"))
    app = CoinGuardApp(config_path=str(path))

    task = asyncio.create_task(app.run())
    await asyncio.sleep(0.2)

    async with httpx.AsyncClient(base_url=app.admin.url, trust_env=False) as client:
        response = await client.get("/health")
    assert response.json()["scan_loop_running"] is True

    app._handle_signal()
    await asyncio.wait_for(task, timeout=2.0)

    assert app.scan_loop.is_running is False
    assert app.scan_loop.tick_count >= 1


def test_cli_smoke_test(config_file):
    result = CliRunner().invoke(cli, ["smoke-test", "--config", str(config_file)])

    assert result.exit_code == 0
    assert "Smoke test passed" in result.output


def test_cli_scan_once(config_file):
    result = CliRunner().invoke(cli, ["scan-once", "--config", str(config_file)])

    assert result.exit_code == 0
    assert '"instruments_scanned": 2' in result.output


def test_cli_smoke_test_invalid_config(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("risk:\n  circuit_breaker_threshold_pct: 5\n")

    result = CliRunner().invoke(cli, ["smoke-test", "--config", str(path)])

    assert result.exit_code == 1
