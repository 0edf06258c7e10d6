"""CoinGuard CLI."""

import asyncio
import json
import sys

import click
import httpx

from coinguard.app import CoinGuardApp

DEFAULT_ADMIN_URL = "http://127.0.0.1:8080"

config_option = click.option(
    "--config",
    type=click.Path(exists=True),
    default="config/config.yaml",
    help="Path to configuration file",
)

admin_url_option = click.option(
    "--url",
    envvar="COINGUARD_ADMIN_URL",
    default=DEFAULT_ADMIN_URL,
    show_default=True,
    help="Admin server base URL",
)


@click.group()
def cli():
    """CoinGuard Command Line Interface."""
    pass


@cli.command()
@config_option
@click.option("--dry-run", is_flag=True, help="Force DRY_RUN mode")
@click.option("--gateway", type=click.Choice(["sim", "upbit"]), help="Override gateway mode")
def run(config, dry_run, gateway):
    """Start the scan loop and admin server."""
    try:
        app = CoinGuardApp(config_path=config, dry_run=dry_run, gateway_mode=gateway)
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        click.echo(f"Fatal error: {e}", err=True)
        sys.exit(1)


@cli.command()
@config_option
def smoke_test(config):
    """Run a smoke test (initialize components and exit)."""
    try:
        app = CoinGuardApp(config_path=config, dry_run=True)
        app.initialize()
        click.echo("Smoke test passed: Components initialized successfully.")
    except Exception as e:
        click.echo(f"Smoke test failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@config_option
@click.option("--gateway", type=click.Choice(["sim", "upbit"]), help="Override gateway mode")
def scan_once(config, gateway):
    """Run one tick (dry run, trading switch forced on) and print its report."""
    try:
        app = CoinGuardApp(config_path=config, dry_run=True, gateway_mode=gateway)
        report = asyncio.run(app.scan_once())
    except Exception as e:
        click.echo(f"Scan failed: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(report.to_dict(), indent=2))
    click.echo(json.dumps(app.risk.snapshot().to_dict(), indent=2))


# ============================================
# Admin client commands
# ============================================


def _admin_call(method: str, url: str, path: str, params: dict | None = None) -> dict:
    try:
        response = httpx.request(
            method, f"{url.rstrip('/')}{path}", params=params, timeout=5.0, trust_env=False
        )
    except httpx.HTTPError as e:
        click.echo(f"Admin server unreachable at {url}: {e}", err=True)
        sys.exit(1)

    try:
        body = response.json()
    except ValueError:
        body = {"error": response.text}

    if response.status_code >= 400:
        click.echo(f"Request failed ({response.status_code}): {body.get('error', body)}", err=True)
        sys.exit(1)

    return body


@cli.command()
@admin_url_option
def status(url):
    """Show the current risk status."""
    body = _admin_call("GET", url, "/risk/status")
    click.echo(json.dumps(body, indent=2))


@cli.command()
@admin_url_option
@click.option("--limit", default=20, show_default=True, help="Number of events")
@click.option("--type", "event_type", help="Filter by event type")
def events(url, limit, event_type):
    """List recent risk events (newest first)."""
    params = {"limit": limit}
    if event_type:
        params["type"] = event_type
    body = _admin_call("GET", url, "/risk/events", params=params)

    for event in body.get("events", []):
        click.echo(f"{event['triggered_at']}  {event['event_type']:<18} {event['detail']}")


@cli.command()
@admin_url_option
def reset_circuit_breaker(url):
    """Manually reset the circuit breaker (and cooldown)."""
    body = _admin_call("POST", url, "/risk/circuit-breaker/reset")
    _echo_reset(body)


@cli.command()
@admin_url_option
def reset_cooldown(url):
    """Manually reset the cooldown timer."""
    body = _admin_call("POST", url, "/risk/cooldown/reset")
    _echo_reset(body)


def _echo_reset(body: dict) -> None:
    click.echo(f"Reset {body['kind']}: status {body['trading_status']}, can_trade={body['can_trade']}")
    if body.get("blocking_reasons"):
        click.echo(f"Still blocked by: {', '.join(body['blocking_reasons'])}")


if __name__ == "__main__":
    cli()
