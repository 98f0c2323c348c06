# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Unit tests for the API key access-control gate."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import aiosqlite
import pytest

from gymsentry.api.keys import APIKeyManager
from gymsentry.api.rbac import (
    AccessDenial,
    AccessGrant,
    ApiKeyGate,
    DenialReason,
    Permission,
    RequestContext,
    generate_raw_key,
    hash_api_key,
    mask_key,
)
from gymsentry.audit.events import AuditEventType
from gymsentry.audit.logger import AuditLogger
from gymsentry.audit.store import AuditStore
from gymsentry.core.constants import Severity, UserRole
from gymsentry.storage.migrations import run_migrations

CTX = RequestContext(
    source_ip="203.0.113.7",
    endpoint="/api/v1/keys/test",
    http_method="GET",
    user_agent="pytest",
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def gate_db(tmp_path):
    db = await aiosqlite.connect(str(tmp_path / "test_gate.db"))
    db.row_factory = aiosqlite.Row
    await run_migrations(db)
    yield db
    await db.close()


@pytest.fixture
def manager(gate_db) -> APIKeyManager:
    return APIKeyManager(gate_db)


@pytest.fixture
def audit_store(gate_db) -> AuditStore:
    return AuditStore(gate_db)


@pytest.fixture
def gate(manager, audit_store) -> ApiKeyGate:
    return ApiKeyGate(manager, audit_logger=AuditLogger(store=audit_store))


class FlakyManager(APIKeyManager):
    """Manager whose last_used update always fails."""

    async def touch_last_used(self, key_id: str, *, when: datetime | None = None) -> None:
        raise RuntimeError("database is locked")


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------


class TestKeyHelpers:
    def test_generate_raw_key_format(self) -> None:
        key = generate_raw_key()
        assert key.startswith("gsk_")
        assert len(key) == 4 + 64

    def test_generated_keys_are_unique(self) -> None:
        assert len({generate_raw_key() for _ in range(50)}) == 50

    def test_hash_is_sha256_hex(self) -> None:
        digest = hash_api_key("gsk_abc")
        assert len(digest) == 64
        assert digest == hash_api_key("gsk_abc")
        assert digest != hash_api_key("gsk_abd")

    def test_mask_key(self) -> None:
        assert mask_key("gsk_0123456789abcdef") == "gsk_0123..."


# ---------------------------------------------------------------------------
# Gate decisions
# ---------------------------------------------------------------------------


class TestApiKeyGate:
    async def test_missing_key_not_audited(self, gate, audit_store) -> None:
        outcome = await gate.authorize(None, Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.MISSING_KEY
        assert outcome.status_code == 401
        assert outcome.message == "API key required"
        assert await audit_store.count_events() == 0

    async def test_unknown_key(self, gate, audit_store) -> None:
        outcome = await gate.authorize("gsk_doesnotexist", Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.INVALID_KEY
        assert outcome.status_code == 401

        records = await audit_store.list_events()
        assert len(records) == 1
        assert records[0].event == AuditEventType.API_KEY_INVALID_ATTEMPT
        assert records[0].severity == Severity.LOW
        assert records[0].source_ip == "203.0.113.7"
        assert records[0].api_key_id is None
        assert records[0].details["key_prefix"] == "gsk_does..."

    async def test_revoked_key_is_invalid(self, gate, manager, audit_store) -> None:
        credential, raw = await manager.create_key("trainer-1", UserRole.TRAINER)
        await manager.revoke_key(credential.id)

        outcome = await gate.authorize(raw, Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.INVALID_KEY

        records = await audit_store.list_events()
        assert records[0].api_key_id == credential.id
        assert records[0].user_id == "trainer-1"

    async def test_expired_key(self, gate, manager, audit_store) -> None:
        credential, raw = await manager.create_key(
            "trainer-1",
            UserRole.TRAINER,
            expires_at=datetime.now(UTC) - timedelta(days=1),
        )

        outcome = await gate.authorize(raw, Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.EXPIRED_KEY
        assert outcome.status_code == 401
        assert outcome.message == "API key expired"

        records = await audit_store.list_events()
        assert len(records) == 1
        assert records[0].event == AuditEventType.API_KEY_EXPIRED_ATTEMPT
        assert records[0].severity == Severity.LOW
        assert records[0].api_key_id == credential.id

    async def test_expiry_checked_against_now(self, gate, manager) -> None:
        expires = datetime(2026, 6, 1, tzinfo=UTC)
        _credential, raw = await manager.create_key("trainer-1", UserRole.TRAINER, expires_at=expires)

        before = await gate.authorize(raw, Permission.READ, CTX, now=expires - timedelta(seconds=1))
        after = await gate.authorize(raw, Permission.READ, CTX, now=expires + timedelta(seconds=1))
        assert isinstance(before, AccessGrant)
        assert isinstance(after, AccessDenial)

    async def test_ip_not_allowed(self, gate, manager, audit_store) -> None:
        _credential, raw = await manager.create_key(
            "admin-1", UserRole.ADMIN, ip_allow_list=["198.51.100.1"]
        )

        outcome = await gate.authorize(raw, Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.IP_NOT_ALLOWED
        assert outcome.status_code == 403

        records = await audit_store.list_events()
        assert records[0].event == AuditEventType.API_KEY_IP_VIOLATION
        assert records[0].severity == Severity.HIGH
        assert records[0].risk_score == 25

    async def test_ip_allowed(self, gate, manager) -> None:
        _credential, raw = await manager.create_key(
            "admin-1", UserRole.ADMIN, ip_allow_list=["203.0.113.7"]
        )
        assert isinstance(await gate.authorize(raw, Permission.READ, CTX), AccessGrant)

    async def test_missing_permission(self, gate, manager, audit_store) -> None:
        _credential, raw = await manager.create_key("trainer-1", UserRole.TRAINER)

        outcome = await gate.authorize(raw, Permission.WRITE, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.PERMISSION_DENIED
        assert outcome.status_code == 403

        records = await audit_store.list_events()
        assert records[0].event == AuditEventType.PERMISSION_DENIED
        assert records[0].severity == Severity.MEDIUM
        assert records[0].details["required_permission"] == "write"

    async def test_admin_does_not_imply_read(self, gate, manager) -> None:
        _credential, raw = await manager.create_key(
            "admin-1", UserRole.ADMIN, permissions=[Permission.ADMIN]
        )
        outcome = await gate.authorize(raw, Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.PERMISSION_DENIED

    async def test_endpoint_not_allowed(self, gate, manager) -> None:
        _credential, raw = await manager.create_key(
            "trainer-1", UserRole.TRAINER, allowed_endpoints=["/api/v1/workouts/*"]
        )
        outcome = await gate.authorize(raw, Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.PERMISSION_DENIED

    async def test_endpoint_pattern_allowed(self, gate, manager) -> None:
        _credential, raw = await manager.create_key(
            "trainer-1", UserRole.TRAINER, allowed_endpoints=["/api/v1/keys/*"]
        )
        assert isinstance(await gate.authorize(raw, Permission.READ, CTX), AccessGrant)

    async def test_checks_run_in_order(self, gate, manager, audit_store) -> None:
        # Expired, wrong IP and missing permission: expiry is reported.
        _credential, raw = await manager.create_key(
            "trainer-1",
            UserRole.TRAINER,
            ip_allow_list=["198.51.100.1"],
            expires_at=datetime.now(UTC) - timedelta(hours=1),
        )
        outcome = await gate.authorize(raw, Permission.ADMIN, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.EXPIRED_KEY
        assert await audit_store.count_events() == 1

    async def test_success(self, gate, manager, audit_store) -> None:
        credential, raw = await manager.create_key(
            "trainer-1", UserRole.TRAINER, name="coach app", permissions=[Permission.READ, Permission.WRITE]
        )

        outcome = await gate.authorize(raw, Permission.WRITE, CTX)
        assert isinstance(outcome, AccessGrant)
        assert outcome.key.key_id == credential.id
        assert outcome.key.name == "coach app"
        assert outcome.key.owner_id == "trainer-1"
        assert outcome.key.owner_role == UserRole.TRAINER
        assert outcome.key.has_permission(Permission.WRITE)
        assert not outcome.key.has_permission(Permission.ADMIN)

        stored = await manager.get_key(credential.id)
        assert stored is not None
        assert stored.last_used is not None
        assert await audit_store.count_events() == 0

    async def test_success_audited_when_enabled(self, manager, audit_store) -> None:
        gate = ApiKeyGate(manager, audit_logger=AuditLogger(store=audit_store), audit_success=True)
        credential, raw = await manager.create_key("trainer-1", UserRole.TRAINER)

        assert isinstance(await gate.authorize(raw, Permission.READ, CTX), AccessGrant)
        records = await audit_store.list_events()
        assert len(records) == 1
        assert records[0].event == AuditEventType.API_KEY_USED
        assert records[0].api_key_id == credential.id

    async def test_last_used_failure_does_not_deny(self, gate_db, audit_store, caplog) -> None:
        manager = FlakyManager(gate_db)
        gate = ApiKeyGate(manager, audit_logger=AuditLogger(store=audit_store))
        _credential, raw = await manager.create_key("trainer-1", UserRole.TRAINER)

        with caplog.at_level(logging.WARNING, logger="gymsentry.api.rbac"):
            outcome = await gate.authorize(raw, Permission.READ, CTX)
        assert isinstance(outcome, AccessGrant)
        assert any("last_used" in r.getMessage() for r in caplog.records)

    async def test_audit_failure_does_not_change_decision(self, manager) -> None:
        class FailingStore:
            async def insert(self, record) -> None:
                raise RuntimeError("disk full")

        gate = ApiKeyGate(manager, audit_logger=AuditLogger(store=FailingStore()))
        outcome = await gate.authorize("gsk_unknown", Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.INVALID_KEY

    async def test_unusable_audit_log_dir_still_denies(self, manager, tmp_path, monkeypatch) -> None:
        blocker = tmp_path / "plain-file"
        blocker.write_text("")
        monkeypatch.setenv("GYMSENTRY_AUDIT_LOG_DIR", str(blocker / "audit"))

        gate = ApiKeyGate(manager)
        outcome = await gate.authorize("gsk_nope", Permission.READ, CTX)
        assert isinstance(outcome, AccessDenial)
        assert outcome.reason == DenialReason.INVALID_KEY
