"""CLI for the telemetry demo service.

Starts the instrumented HTTP server (with its background traffic) or checks
the configuration the server would start with.
"""

import logging
from typing import Optional

import typer
import uvicorn

from .config import Settings, validate_settings
from .observability import initialize_observability, setup_logging

app = typer.Typer(
    name="demo-app",
    help="Correlated traces/metrics/logs/profiles demo service",
    add_completion=False,
)

logger = logging.getLogger(__name__)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port (default PORT)"),
    traffic: bool = typer.Option(True, "--traffic/--no-traffic", help="Run the background traffic generator"),
) -> None:
    """Run the demo server until interrupted."""
    from .api.main import create_app

    settings = Settings()
    if host:
        settings.server.host = host
    if port:
        settings.server.port = port
        settings.generator.target_url = f"http://localhost:{port}"

    setup_logging(settings.log_level, settings.service.name)

    for issue in validate_settings(settings):
        logger.warning(issue)

    try:
        telemetry = initialize_observability(settings)
    except Exception as e:
        logger.critical(f"Failed to initialize telemetry: {e}")
        raise typer.Exit(code=1)

    try:
        telemetry.instrument_outbound()
        server_app = create_app(settings, telemetry, with_traffic=traffic and settings.generator.enabled)
        logger.info(f"HTTP server listening on {settings.server.host}:{settings.server.port}")
        uvicorn.run(server_app, host=settings.server.host, port=settings.server.port, log_config=None)
    finally:
        telemetry.shutdown()


@app.command("check-config")
def check_config() -> None:
    """Print the effective configuration and any problems with it."""
    settings = Settings()
    typer.echo(f"service:   {settings.service.name} {settings.service.version} (env={settings.service.environment})")
    typer.echo(f"collector: {settings.telemetry.otlp_endpoint}")
    typer.echo(f"pyroscope: {settings.telemetry.pyroscope_address} (enabled={settings.telemetry.profiling_enabled})")
    typer.echo(
        f"retention: {settings.faults.max_retained} x {settings.faults.block_size} bytes "
        f"(~{settings.faults.retention_limit_bytes // (1024 * 1024)}MB)"
    )
    typer.echo(f"traffic:   {settings.generator.target_url}{settings.generator.route} (enabled={settings.generator.enabled})")

    issues = validate_settings(settings)
    for issue in issues:
        typer.echo(issue, err=True)

    if any(issue.startswith("ERROR") for issue in issues):
        typer.echo("✗ Configuration has errors", err=True)
        raise typer.Exit(code=1)
    typer.echo("✓ Configuration validated successfully")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
