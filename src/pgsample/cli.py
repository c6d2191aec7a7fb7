# src/pgsample/cli.py
"""pgsample Command Line Interface.

Usage:
    pgsample serve                                  # HTTP server with defaults
    pgsample serve --config=settings.yaml --port=9000
    pgsample sync postgres://user@host/db           # SQL on stdout
    pgsample sync postgres://user@host/db --json --max-rows=20
    pgsample queries postgres://user@host/db        # recent queries as JSON
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from types import FrameType
from typing import Annotated, Any

import pydantic
import typer
import uvicorn

from pgsample import __version__
from pgsample.contracts.errors import SyncError
from pgsample.contracts.results import RecentQueriesResult, ResolutionOptions, SyncResult
from pgsample.contracts.url import Connectable
from pgsample.core.config import PgSampleSettings, load_settings
from pgsample.core.logging import configure_logging
from pgsample.core.shutdown import shutdown_signal
from pgsample.core.tracing import configure_tracing, get_tracer
from pgsample.engine.spans import SpanFactory
from pgsample.server.app import create_app
from pgsample.sync.syncer import PostgresSyncer

app = typer.Typer(
    name="pgsample",
    help="pgsample: referentially consistent samples of Postgres databases.",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to YAML configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pgsample version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """pgsample: referentially consistent samples of Postgres databases."""
    ctx.obj = {"verbose": verbose, "json_logs": json_logs}


def _load(config_file: Path | None) -> PgSampleSettings:
    try:
        return load_settings(config_file)
    except FileNotFoundError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e
    except pydantic.ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _configure_logging(ctx: typer.Context, settings: PgSampleSettings, *, to_stderr: bool = False) -> None:
    flags = ctx.obj or {}
    level = "DEBUG" if flags.get("verbose") else settings.logging.level
    configure_logging(
        json_output=flags.get("json_logs", False) or settings.logging.json_output,
        level=level,
        stream=sys.stderr if to_stderr else None,
    )


class _ShutdownAwareServer(uvicorn.Server):
    """uvicorn server that cancels in-flight syncs on SIGINT/SIGTERM.

    uvicorn waits for open requests before running the lifespan shutdown,
    so the signal has to fire here for long syncs to stop promptly.
    """

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        shutdown_signal.trigger()
        super().handle_exit(sig, frame)


@app.command()
def serve(
    ctx: typer.Context,
    config_file: ConfigOption = None,
    host: Annotated[str | None, typer.Option("--host", "-h", help="Host address to bind to.")] = None,
    port: Annotated[int | None, typer.Option("--port", "-P", help="Port to listen on.", min=1, max=65535)] = None,
    hosted: Annotated[
        bool | None,
        typer.Option("--hosted/--self-hosted", help="Hide error details and reject localhost targets."),
    ] = None,
) -> None:
    """Start the sync HTTP server.

    Configuration precedence (highest to lowest):
    1. Command-line flags
    2. Environment variables (PGSAMPLE_*)
    3. Config file (--config)
    4. Built-in defaults
    """
    settings = _load(config_file)
    server_overrides: dict[str, Any] = {}
    if host is not None:
        server_overrides["host"] = host
    if port is not None:
        server_overrides["port"] = port
    if hosted is not None:
        server_overrides["hosted"] = hosted
    if server_overrides:
        settings = settings.model_copy(update={"server": settings.server.model_copy(update=server_overrides)})

    _configure_logging(ctx, settings)
    provider = configure_tracing(settings.telemetry)
    syncer = PostgresSyncer(settings, spans=SpanFactory(get_tracer(provider)))
    asgi_app = create_app(settings, syncer=syncer)

    typer.secho(
        f"Starting pgsample server on {settings.server.host}:{settings.server.port}",
        fg=typer.colors.GREEN,
    )
    if config_file:
        typer.echo(f"  Config: {config_file}")
    typer.echo(f"  Hosted: {settings.server.hosted}")
    if settings.rate_limit.enabled:
        typer.echo(
            f"  Rate limit: {settings.rate_limit.requests_per_window} requests "
            f"per {settings.rate_limit.window_seconds}s"
        )
    else:
        typer.echo("  Rate limit: disabled")

    config = uvicorn.Config(
        asgi_app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
    )
    try:
        _ShutdownAwareServer(config).run()
    finally:
        if provider is not None:
            provider.shutdown()


async def _run_sync(
    settings: PgSampleSettings,
    connectable: Connectable,
    schema: str,
    options: ResolutionOptions,
) -> SyncResult:
    provider = configure_tracing(settings.telemetry)
    syncer = PostgresSyncer(settings, spans=SpanFactory(get_tracer(provider)))
    try:
        return await syncer.sync(connectable, schema, options)
    finally:
        await syncer.close()
        if provider is not None:
            provider.shutdown()


async def _run_queries(settings: PgSampleSettings, connectable: Connectable) -> RecentQueriesResult:
    syncer = PostgresSyncer(settings)
    try:
        return await syncer.live_queries(connectable)
    finally:
        await syncer.close()


@app.command()
def sync(
    ctx: typer.Context,
    db_url: Annotated[str, typer.Argument(help="postgres:// URL of the database to sample.")],
    schema: Annotated[str, typer.Option("--schema", "-s", help="Schema to sync.")] = "public",
    seed: Annotated[float | None, typer.Option("--seed", help="Sampling seed in [0, 1].", min=0.0, max=1.0)] = None,
    required_rows: Annotated[
        int | None, typer.Option("--required-rows", "-r", help="Organic rows per table.", min=1)
    ] = None,
    max_rows: Annotated[int | None, typer.Option("--max-rows", "-m", help="Hard cap per table.", min=1)] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write to this file instead of stdout.", dir_okay=False),
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Emit the full sync result as JSON.")] = False,
    config_file: ConfigOption = None,
) -> None:
    """Sample a schema and print restorable SQL (DDL plus INSERTs)."""
    settings = _load(config_file)
    _configure_logging(ctx, settings, to_stderr=True)

    sampling = settings.sampling
    options = ResolutionOptions(
        seed=seed if seed is not None else sampling.seed,
        required_rows=required_rows if required_rows is not None else sampling.required_rows,
        max_rows=max_rows if max_rows is not None else sampling.max_rows,
        cap_policy=sampling.cap_policy,
        sample_discovered_tables=sampling.sample_discovered_tables,
        max_iterations=sampling.max_iterations,
    )

    try:
        connectable = Connectable.parse(db_url, hosted=False)
        result = asyncio.run(_run_sync(settings, connectable, schema, options))
    except SyncError as e:
        typer.secho(f"Error ({e.error_type}): {e.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    text = json.dumps(result.to_dict(), indent=2, default=str) if json_output else result.setup
    if output is not None:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Wrote {sum(result.sampled_records.values())} rows to {output}", err=True)
    else:
        typer.echo(text)

    for notice in result.notices:
        typer.secho(f"Notice: {notice.kind}", fg=typer.colors.YELLOW, err=True)


@app.command()
def queries(
    ctx: typer.Context,
    db_url: Annotated[str, typer.Argument(help="postgres:// URL of the database to inspect.")],
    config_file: ConfigOption = None,
) -> None:
    """Print the most expensive recent queries (pg_stat_statements) as JSON."""
    settings = _load(config_file)
    _configure_logging(ctx, settings, to_stderr=True)

    try:
        connectable = Connectable.parse(db_url, hosted=False)
        result = asyncio.run(_run_queries(settings, connectable))
    except SyncError as e:
        typer.secho(f"Error ({e.error_type}): {e.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.ok:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
