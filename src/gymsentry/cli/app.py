# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Typer CLI application root."""

from __future__ import annotations

from typing import Annotated

import typer

from gymsentry.cli.commands import audit as audit_cmd
from gymsentry.cli.commands import db, keys

app = typer.Typer(
    name="gymsentry",
    help="Security audit and API key access control for the gym coaching backend",
    no_args_is_help=True,
)

app.add_typer(db.app, name="db", help="Database management")
app.add_typer(keys.app, name="keys", help="Manage API keys")
app.add_typer(audit_cmd.app, name="audit", help="Query and resolve security audit events")


@app.callback()
def main(
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override GYMSENTRY_LOG_LEVEL"),
    ] = None,
) -> None:
    """Configure logging before any command runs."""
    from gymsentry.core.config import get_settings
    from gymsentry.core.exceptions import ConfigurationError
    from gymsentry.core.logging import setup_logging

    settings = get_settings()
    try:
        setup_logging(log_level or settings.log_level, settings.log_format)
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(1) from None


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Worker count"),
) -> None:
    """Start the gymsentry API server."""
    import uvicorn

    from gymsentry.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "gymsentry.api.app:_create_app_from_env",
        host=host or settings.api_host,
        port=port or settings.api_port,
        workers=workers or settings.api_workers,
        factory=True,
    )


@app.command()
def version() -> None:
    """Show version information."""
    from gymsentry import __version__

    typer.echo(f"gymsentry v{__version__}")
