"""cortex-mcp CLI."""

from __future__ import annotations

import asyncio
import json
import logging

import typer

from cortex_mcp.server.app import CortexToolService
from cortex_mcp.server.bulk import NoApplicableAnalyzers, ObservableRequest, run_bulk_analysis
from cortex_mcp.server.contracts import DATA_TYPES
from cortex_mcp.server.cortex_connector import build_connector_from_env
from cortex_mcp.shared.settings import ConfigurationError, CortexSettings, load_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
TRANSPORTS = ("stdio", "http")

app = typer.Typer(add_completion=False, help="cortex-mcp: Cortex analysis tools over MCP")


def _configure_logging(level: str) -> None:
    # stdout carries the stdio JSON-RPC stream; logs go to stderr only.
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _load_settings_or_exit() -> CortexSettings:
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    _configure_logging(settings.log_level)
    return settings


@app.command()
def serve(
    transport: str = typer.Option("stdio", "--transport", help="stdio or http"),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
) -> None:
    """Run the MCP server."""
    if transport not in TRANSPORTS:
        raise typer.BadParameter(f"--transport must be one of {', '.join(TRANSPORTS)}")
    settings = _load_settings_or_exit()

    from cortex_mcp.server.registration import build_mcp_server

    service = CortexToolService(build_connector_from_env(settings=settings))
    mcp = build_mcp_server(service=service)
    logging.getLogger(__name__).info(
        "Starting cortex-mcp on %s transport against %s", transport, settings.url
    )
    if transport == "http":
        mcp.run(transport="http", host=host, port=port)
    else:
        mcp.run(transport="stdio")


@app.command()
def status() -> None:
    """Print redacted settings and check the Cortex connection."""
    settings = _load_settings_or_exit()
    connector = build_connector_from_env(settings=settings)
    report: dict[str, object] = {"settings": settings.redacted()}
    try:
        report["analyzers"] = len(connector.list_analyzers())
        report["responders"] = len(connector.list_responders())
    except Exception as exc:
        report["error"] = str(exc)
        typer.echo(json.dumps(report, indent=2))
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(report, indent=2))


@app.command()
def analyze(
    data_type: str = typer.Argument(..., help=f"One of: {', '.join(DATA_TYPES)}"),
    data: str = typer.Argument(..., help="Observable value"),
    tlp: int = typer.Option(2, "--tlp", min=0, max=3),
    pap: int = typer.Option(2, "--pap", min=0, max=3),
    timeout: int = typer.Option(300, "--timeout", min=1, max=3600),
) -> None:
    """Run every applicable analyzer against one observable and print the report."""
    settings = _load_settings_or_exit()
    connector = build_connector_from_env(settings=settings)
    request = ObservableRequest(data_type=data_type, data=data, tlp=tlp, pap=pap)
    try:
        result = asyncio.run(run_bulk_analysis(connector, request, timeout_s=timeout))
    except Exception as exc:
        typer.echo(f"Error analyzing observable: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if isinstance(result, NoApplicableAnalyzers):
        typer.echo(result.message)
        return
    typer.echo(json.dumps(result.as_dict(), indent=2))


if __name__ == "__main__":
    app()
