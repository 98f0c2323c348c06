# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""CLI commands for API key management."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Annotated

import typer

app = typer.Typer()


@app.command(name="create")
def keys_create(
    owner: Annotated[
        str,
        typer.Option("--owner", "-o", help="ID of the issuing user"),
    ],
    role: Annotated[
        str,
        typer.Option("--role", "-r", help="Owner role: trainer | admin"),
    ] = "trainer",
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Human-readable label for the key"),
    ] = "",
    permission: Annotated[
        list[str] | None,
        typer.Option("--permission", "-p", help="Permission to grant (repeatable): read | write | admin"),
    ] = None,
    endpoint: Annotated[
        list[str] | None,
        typer.Option("--endpoint", "-e", help="Allowed endpoint pattern (repeatable)"),
    ] = None,
    ip: Annotated[
        list[str] | None,
        typer.Option("--ip", help="Allowed source IP (repeatable)"),
    ] = None,
    expires_days: Annotated[
        int | None,
        typer.Option("--expires-days", help="Expire the key after this many days"),
    ] = None,
) -> None:
    """Issue a new API key for a trainer or admin."""
    asyncio.run(
        _async_keys_create(owner, role, name, permission or [], endpoint or [], ip or [], expires_days)
    )


async def _async_keys_create(
    owner: str,
    role: str,
    name: str,
    permissions: list[str],
    endpoints: list[str],
    ips: list[str],
    expires_days: int | None,
) -> None:
    from gymsentry.api.keys import APIKeyManager
    from gymsentry.api.rbac import Permission
    from gymsentry.audit.logger import get_audit_logger
    from gymsentry.core.config import get_settings
    from gymsentry.core.constants import UserRole
    from gymsentry.core.exceptions import AuthorizationError
    from gymsentry.storage.database import close_db, init_db

    try:
        owner_role = UserRole(role.lower())
        perms = [Permission(p.lower()) for p in permissions] or [Permission.READ]
    except ValueError as exc:
        typer.echo(f"Invalid value: {exc}", err=True)
        raise typer.Exit(1) from None

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        km = APIKeyManager(db)
        expires_at = datetime.now(UTC) + timedelta(days=expires_days) if expires_days else None
        try:
            credential, raw_key = await km.create_key(
                owner,
                owner_role,
                name=name or None,
                permissions=perms,
                allowed_endpoints=endpoints,
                ip_allow_list=ips,
                expires_at=expires_at,
            )
        except AuthorizationError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(1) from None

        await get_audit_logger().log_api_key_created(
            credential.id,
            credential.name,
            [str(p) for p in credential.permissions],
            user_id=owner,
            source_ip="",
        )

        typer.echo(f"Key ID:      {credential.id}")
        typer.echo(f"Name:        {credential.name}")
        typer.echo(f"Owner:       {credential.owner_id} ({credential.owner_role})")
        typer.echo(f"Permissions: {', '.join(str(p) for p in credential.permissions)}")
        if credential.expires_at:
            typer.echo(f"Expires:     {credential.expires_at.isoformat()}")
        typer.echo(f"API Key:     {raw_key}")
        typer.echo("")
        typer.echo("Store this key securely. It cannot be retrieved again.")
    finally:
        await close_db()


@app.command(name="list")
def keys_list(
    owner: Annotated[
        str | None,
        typer.Option("--owner", "-o", help="Only show keys issued by this user"),
    ] = None,
) -> None:
    """List API keys (without revealing key values)."""
    asyncio.run(_async_keys_list(owner))


async def _async_keys_list(owner: str | None) -> None:
    from rich.console import Console
    from rich.table import Table

    from gymsentry.api.keys import APIKeyManager
    from gymsentry.core.config import get_settings
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        km = APIKeyManager(db)
        credentials = await km.list_keys(owner)

        console = Console()
        table = Table(title="API Keys")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", style="bold")
        table.add_column("Owner")
        table.add_column("Permissions")
        table.add_column("Active")
        table.add_column("Expires At")
        table.add_column("Last Used")

        for c in credentials:
            table.add_row(
                c.id,
                c.name,
                c.owner_id,
                ",".join(str(p) for p in c.permissions),
                "yes" if c.is_active else "no",
                c.expires_at.isoformat() if c.expires_at else "-",
                c.last_used.isoformat() if c.last_used else "-",
            )

        console.print(table)
    finally:
        await close_db()


@app.command(name="revoke")
def keys_revoke(
    key_id: Annotated[str, typer.Argument(help="ID of the key to revoke")],
) -> None:
    """Revoke (deactivate) an API key.  The key record is kept."""
    asyncio.run(_async_keys_revoke(key_id))


async def _async_keys_revoke(key_id: str) -> None:
    from gymsentry.api.keys import APIKeyManager
    from gymsentry.audit.logger import get_audit_logger
    from gymsentry.core.config import get_settings
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    db = await init_db(settings.db_path)

    try:
        km = APIKeyManager(db)
        revoked = await km.revoke_key(key_id)
        if revoked is None:
            typer.echo(f"Key {key_id} not found.", err=True)
            raise typer.Exit(1)

        await get_audit_logger().log_api_key_revoked(
            revoked.id,
            revoked.name,
            user_id=revoked.owner_id,
            source_ip="",
        )
        typer.echo(f"Key {key_id} revoked.")
    finally:
        await close_db()
