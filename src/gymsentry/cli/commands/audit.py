# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""CLI commands for querying and resolving security audit events."""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

import typer

app = typer.Typer()

_SEVERITY_STYLES = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
    "critical": "bold red",
}


@app.command(name="list")
def audit_list(
    severity: Annotated[
        str | None,
        typer.Option("--severity", "-s", help="Filter by severity"),
    ] = None,
    event: Annotated[
        str | None,
        typer.Option("--event", "-t", help="Filter by event type"),
    ] = None,
    ip: Annotated[
        str | None,
        typer.Option("--ip", help="Filter by source IP substring"),
    ] = None,
    user: Annotated[
        str | None,
        typer.Option("--user", "-u", help="Filter by acting user"),
    ] = None,
    unresolved: Annotated[
        bool,
        typer.Option("--unresolved", help="Only show unresolved events"),
    ] = False,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of events to show"),
    ] = 50,
) -> None:
    """List security audit events, newest first."""
    asyncio.run(_async_audit_list(severity, event, ip, user, unresolved, limit))


async def _async_audit_list(
    severity: str | None,
    event: str | None,
    ip: str | None,
    user: str | None,
    unresolved: bool,
    limit: int,
) -> None:
    from rich.console import Console
    from rich.table import Table

    from gymsentry.audit.store import AuditStore
    from gymsentry.core.config import get_settings
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        store = AuditStore(db)
        records = await store.list_events(
            severity=severity,
            event=event,
            source_ip=ip,
            user_id=user,
            resolved=False if unresolved else None,
            limit=limit,
        )

        console = Console()

        if not records:
            console.print("[dim]No audit events found.[/dim]")
            return

        table = Table(title="Security Audit Events")
        table.add_column("Created At", style="dim", no_wrap=True)
        table.add_column("Event", style="cyan")
        table.add_column("Severity")
        table.add_column("Risk", justify="right")
        table.add_column("User", style="yellow")
        table.add_column("Source IP")
        table.add_column("Endpoint")
        table.add_column("Resolved")
        table.add_column("Record ID", style="dim", no_wrap=True)

        for r in records:
            style = _SEVERITY_STYLES.get(str(r.severity), "")
            table.add_row(
                r.created_at.isoformat(),
                str(r.event),
                f"[{style}]{r.severity}[/{style}]" if style else str(r.severity),
                str(r.risk_score),
                r.user_id or "-",
                r.source_ip or "-",
                r.endpoint or "-",
                "yes" if r.resolved else "no",
                r.record_id,
            )

        console.print(table)
        console.print(f"\n[dim]Showing {len(records)} event(s)[/dim]")
    finally:
        await close_db()


@app.command(name="show")
def audit_show(
    record_id: Annotated[str, typer.Argument(help="ID of the audit record")],
) -> None:
    """Show a single audit record as JSON."""
    asyncio.run(_async_audit_show(record_id))


async def _async_audit_show(record_id: str) -> None:
    from gymsentry.audit.store import AuditStore
    from gymsentry.core.config import get_settings
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        record = await AuditStore(db).get_by_id(record_id)
        if record is None:
            typer.echo(f"Audit record {record_id} not found.", err=True)
            raise typer.Exit(1)
        typer.echo(json.dumps(record.model_dump(mode="json"), indent=2))
    finally:
        await close_db()


@app.command(name="report")
def audit_report(
    window: Annotated[
        str,
        typer.Option("--window", "-w", help="Lookback window: 1h | 24h | 7d | 30d"),
    ] = "24h",
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the report as JSON"),
    ] = False,
) -> None:
    """Summarise audit events over a lookback window."""
    asyncio.run(_async_audit_report(window, as_json))


async def _async_audit_report(window: str, as_json: bool) -> None:
    from rich.console import Console
    from rich.table import Table

    from gymsentry.audit.reporting import SecurityReporter
    from gymsentry.audit.store import AuditStore
    from gymsentry.core.config import get_settings
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        report = await SecurityReporter(AuditStore(db)).build_report(window)

        if as_json:
            typer.echo(report.model_dump_json(indent=2))
            return

        console = Console()
        console.print(f"[bold]Security report ({report.window})[/bold]")
        console.print(f"Total events: {report.total_events}")
        console.print(f"Average risk score: {report.average_risk_score:.2f}")

        sev_table = Table(title="By Severity")
        sev_table.add_column("Severity")
        sev_table.add_column("Count", justify="right")
        for sev, count in report.by_severity.items():
            style = _SEVERITY_STYLES.get(sev, "")
            sev_table.add_row(f"[{style}]{sev}[/{style}]" if style else sev, str(count))
        console.print(sev_table)

        if report.by_event:
            event_table = Table(title="By Event")
            event_table.add_column("Event", style="cyan")
            event_table.add_column("Count", justify="right")
            for name, count in report.by_event.items():
                event_table.add_row(name, str(count))
            console.print(event_table)
    finally:
        await close_db()


@app.command(name="top-ips")
def audit_top_ips(
    window: Annotated[
        str,
        typer.Option("--window", "-w", help="Lookback window: 1h | 24h | 7d | 30d"),
    ] = "24h",
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Number of source IPs to show"),
    ] = 10,
) -> None:
    """Show the most active source IPs in a window."""
    asyncio.run(_async_audit_top_ips(window, limit))


async def _async_audit_top_ips(window: str, limit: int) -> None:
    from rich.console import Console
    from rich.table import Table

    from gymsentry.audit.reporting import SecurityReporter
    from gymsentry.audit.store import AuditStore
    from gymsentry.core.config import get_settings
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        groups = await SecurityReporter(AuditStore(db)).top_ips(window, limit=limit)

        console = Console()
        if not groups:
            console.print("[dim]No audit events found.[/dim]")
            return

        table = Table(title="Top Source IPs")
        table.add_column("Source IP", style="cyan")
        table.add_column("Events", justify="right")
        table.add_column("Avg Risk", justify="right")
        for g in groups:
            table.add_row(g.key or "(none)", str(g.count), f"{g.average_risk_score:.2f}")
        console.print(table)
    finally:
        await close_db()


@app.command(name="resolve")
def audit_resolve(
    record_id: Annotated[str, typer.Argument(help="ID of the audit record")],
    resolved_by: Annotated[
        str,
        typer.Option("--by", help="ID of the user resolving the event"),
    ],
    notes: Annotated[
        str,
        typer.Option("--notes", help="Resolution notes"),
    ] = "",
) -> None:
    """Mark an audit record resolved."""
    asyncio.run(_async_audit_resolve(record_id, resolved_by, notes))


async def _async_audit_resolve(record_id: str, resolved_by: str, notes: str) -> None:
    from gymsentry.audit.store import AuditStore
    from gymsentry.core.config import get_settings
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        record = await AuditStore(db).resolve(record_id, resolved_by=resolved_by, notes=notes)
        if record is None:
            typer.echo(f"Audit record {record_id} not found.", err=True)
            raise typer.Exit(1)
        typer.echo(f"Audit record {record_id} resolved by {resolved_by}.")
    finally:
        await close_db()
