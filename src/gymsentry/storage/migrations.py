# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Versioned database migration system for the gymsentry database.

Applied versions are tracked in a ``schema_migrations`` table.  Each
migration is idempotent and is committed together with its version row.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

import aiosqlite

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Migration registry infrastructure
# ---------------------------------------------------------------------------

MigrationFunc = Callable[[aiosqlite.Connection], Coroutine[Any, Any, None]]


@dataclass(frozen=True, slots=True)
class Migration:
    """A single database migration."""

    version: int
    name: str
    func: MigrationFunc


# Ordered list of all migrations.  New migrations are appended here.
_MIGRATIONS: list[Migration] = []


def _register(version: int, name: str) -> Callable[[MigrationFunc], MigrationFunc]:
    """Decorator that registers a migration function."""

    def decorator(fn: MigrationFunc) -> MigrationFunc:
        _MIGRATIONS.append(Migration(version=version, name=name, func=fn))
        return fn

    return decorator


# ---------------------------------------------------------------------------
# Schema-migrations bookkeeping table
# ---------------------------------------------------------------------------

_CREATE_SCHEMA_MIGRATIONS = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


async def _ensure_migrations_table(db: aiosqlite.Connection) -> None:
    """Create the ``schema_migrations`` table if it does not exist."""
    await db.execute(_CREATE_SCHEMA_MIGRATIONS)
    await db.commit()


async def get_current_version(db: aiosqlite.Connection) -> int:
    """Return the highest applied migration version, or 0 if none."""
    await _ensure_migrations_table(db)
    cursor = await db.execute(
        "SELECT COALESCE(MAX(version), 0) FROM schema_migrations"
    )
    row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def get_pending_migrations(db: aiosqlite.Connection) -> list[Migration]:
    """Return migrations that have not yet been applied."""
    current = await get_current_version(db)
    return [m for m in _MIGRATIONS if m.version > current]


async def run_migrations(db: aiosqlite.Connection) -> list[Migration]:
    """Run all pending migrations in order and return those applied."""
    await _ensure_migrations_table(db)

    current = await get_current_version(db)
    applied: list[Migration] = []

    for migration in _MIGRATIONS:
        if migration.version <= current:
            continue

        logger.info(
            "Applying migration %03d: %s", migration.version, migration.name
        )

        await migration.func(db)

        await db.execute(
            "INSERT OR IGNORE INTO schema_migrations (version, name) VALUES (?, ?)",
            (migration.version, migration.name),
        )
        await db.commit()

        applied.append(migration)
        logger.info("Migration %03d applied successfully.", migration.version)

    return applied


# =========================================================================
# Migration 001 -- security_audit table
# =========================================================================

_CREATE_SECURITY_AUDIT = """
CREATE TABLE IF NOT EXISTS security_audit (
    record_id TEXT PRIMARY KEY,
    event TEXT NOT NULL,
    severity TEXT NOT NULL DEFAULT 'low',
    user_id TEXT,
    api_key_id TEXT,
    source_ip TEXT NOT NULL,
    user_agent TEXT,
    endpoint TEXT,
    http_method TEXT,
    details TEXT NOT NULL DEFAULT '{}',
    metadata TEXT,
    risk_score INTEGER NOT NULL DEFAULT 0 CHECK (risk_score BETWEEN 0 AND 100),
    resolved INTEGER NOT NULL DEFAULT 0,
    resolved_by TEXT,
    resolved_at TEXT,
    resolution_notes TEXT,
    created_at TEXT NOT NULL
);
"""

_SECURITY_AUDIT_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_security_audit_created ON security_audit(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_security_audit_event ON security_audit(event, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_security_audit_user ON security_audit(user_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_security_audit_ip ON security_audit(source_ip, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_security_audit_severity ON security_audit(severity, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_security_audit_risk ON security_audit(risk_score, created_at);",
]


@_register(1, "security_audit_table")
async def _migration_001_security_audit(db: aiosqlite.Connection) -> None:
    """Create the append-only security audit table and its query indexes."""
    await db.execute(_CREATE_SECURITY_AUDIT)
    for stmt in _SECURITY_AUDIT_INDEXES:
        await db.execute(stmt)


# =========================================================================
# Migration 002 -- api_keys table
# =========================================================================

_CREATE_API_KEYS = """
CREATE TABLE IF NOT EXISTS api_keys (
    id TEXT PRIMARY KEY,
    key_hash TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    owner_role TEXT NOT NULL,
    permissions TEXT NOT NULL DEFAULT '["read"]',
    allowed_endpoints TEXT NOT NULL DEFAULT '[]',
    ip_allow_list TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1,
    expires_at TEXT,
    last_used TEXT,
    rate_limit_requests INTEGER NOT NULL DEFAULT 1000,
    rate_limit_window_ms INTEGER NOT NULL DEFAULT 3600000,
    created_at TEXT NOT NULL,
    revoked_at TEXT
);
"""

_INDEX_API_KEYS_OWNER = (
    "CREATE INDEX IF NOT EXISTS idx_api_keys_owner ON api_keys(owner_id, created_at);"
)


@_register(2, "api_keys_table")
async def _migration_002_api_keys(db: aiosqlite.Connection) -> None:
    """Create the api_keys table.  Rows are deactivated, never deleted."""
    await db.execute(_CREATE_API_KEYS)
    await db.execute(_INDEX_API_KEYS_OWNER)
