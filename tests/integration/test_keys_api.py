# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Integration tests for the API key endpoints and permission enforcement."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from gymsentry.api.app import create_app
from gymsentry.api.keys import APIKeyManager
from gymsentry.api.rbac import Permission
from gymsentry.audit.events import AuditEventType
from gymsentry.audit.store import AuditStore
from gymsentry.core.constants import UserRole
from gymsentry.storage.database import close_db, init_db

ALL_PERMISSIONS = [Permission.READ, Permission.WRITE, Permission.ADMIN]

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Create a FastAPI app with a temporary database."""
    monkeypatch.setenv("GYMSENTRY_DB_PATH", str(tmp_path / "test_keys_api.db"))
    monkeypatch.delenv("GYMSENTRY_AUDIT_LOG_DIR", raising=False)
    monkeypatch.delenv("GYMSENTRY_AUDIT_SUCCESSFUL_KEY_USE", raising=False)
    return create_app(configure_logging=False)


@pytest.fixture
async def db(tmp_path):
    """Initialize and yield a DB connection, then clean up."""
    conn = await init_db(tmp_path / "test_keys_api.db")
    yield conn
    await close_db()


@pytest.fixture
async def admin_key(db) -> str:
    km = APIKeyManager(db)
    _credential, raw_key = await km.create_key("admin-1", UserRole.ADMIN, permissions=ALL_PERMISSIONS)
    return raw_key


@pytest.fixture
async def read_key(db) -> str:
    km = APIKeyManager(db)
    _credential, raw_key = await km.create_key("trainer-1", UserRole.TRAINER, name="read-only")
    return raw_key


@pytest.fixture
async def client(app, db):
    """Provide an async HTTP client bound to the test app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _auth(raw_key: str) -> dict[str, str]:
    return {"X-API-Key": raw_key}


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthentication:
    async def test_missing_key(self, client) -> None:
        resp = await client.get("/api/v1/keys/test")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "API key required"

    async def test_invalid_key_audited(self, client, db) -> None:
        resp = await client.get("/api/v1/keys/test", headers=_auth("gsk_not_a_real_key"))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid API key"

        records = await AuditStore(db).list_events()
        assert len(records) == 1
        assert records[0].event == AuditEventType.API_KEY_INVALID_ATTEMPT
        assert records[0].endpoint == "/api/v1/keys/test"
        assert records[0].http_method == "GET"
        assert records[0].source_ip == "127.0.0.1"

    async def test_bearer_token_accepted(self, client, read_key) -> None:
        resp = await client.get("/api/v1/keys/test", headers={"Authorization": f"Bearer {read_key}"})
        assert resp.status_code == 200

    async def test_expired_key(self, client, db) -> None:
        km = APIKeyManager(db)
        _credential, raw = await km.create_key(
            "trainer-1", UserRole.TRAINER, expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )
        resp = await client.get("/api/v1/keys/test", headers=_auth(raw))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "API key expired"

    async def test_ip_not_allowed(self, client, db) -> None:
        km = APIKeyManager(db)
        _credential, raw = await km.create_key("trainer-1", UserRole.TRAINER, ip_allow_list=["10.9.9.9"])
        resp = await client.get("/api/v1/keys/test", headers=_auth(raw))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "IP address not allowed"

    async def test_read_key_cannot_manage_keys(self, client, read_key) -> None:
        resp = await client.get("/api/v1/keys", headers=_auth(read_key))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Insufficient permissions"


# ---------------------------------------------------------------------------
# Key endpoints
# ---------------------------------------------------------------------------


class TestKeyEndpoints:
    async def test_test_endpoint_echoes_key(self, client, read_key) -> None:
        resp = await client.get("/api/v1/keys/test", headers=_auth(read_key))
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "read-only"
        assert data["owner_id"] == "trainer-1"
        assert data["permissions"] == ["read"]

    async def test_create_key(self, client, admin_key, db) -> None:
        resp = await client.post(
            "/api/v1/keys",
            json={"name": "integration", "permissions": ["read", "write"]},
            headers=_auth(admin_key),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["raw_key"].startswith("gsk_")
        assert data["permissions"] == ["read", "write"]

        # The new key works immediately.
        check = await client.get("/api/v1/keys/test", headers=_auth(data["raw_key"]))
        assert check.status_code == 200
        assert check.json()["owner_id"] == "admin-1"

        records = await AuditStore(db).list_events(event=AuditEventType.API_KEY_CREATED)
        assert len(records) == 1
        assert records[0].details["created_key_id"] == data["id"]
        assert records[0].user_id == "admin-1"

    async def test_list_keys_hides_secrets(self, client, admin_key, read_key) -> None:
        resp = await client.get("/api/v1/keys", headers=_auth(admin_key))
        assert resp.status_code == 200
        keys = resp.json()["keys"]
        # Only the caller owner's keys are listed.
        assert [k["owner_id"] for k in keys] == ["admin-1"]
        assert "raw_key" not in keys[0]
        assert "key_hash" not in keys[0]
        assert admin_key not in resp.text

    async def test_revoke_key(self, client, admin_key, db) -> None:
        created = await client.post("/api/v1/keys", json={}, headers=_auth(admin_key))
        key_id = created.json()["id"]
        raw = created.json()["raw_key"]

        resp = await client.delete(f"/api/v1/keys/{key_id}", headers=_auth(admin_key))
        assert resp.status_code == 204

        denied = await client.get("/api/v1/keys/test", headers=_auth(raw))
        assert denied.status_code == 401

        listed = await client.get("/api/v1/keys", headers=_auth(admin_key))
        revoked = next(k for k in listed.json()["keys"] if k["id"] == key_id)
        assert revoked["is_active"] is False

        records = await AuditStore(db).list_events(event=AuditEventType.API_KEY_REVOKED)
        assert len(records) == 1
        assert records[0].severity == "medium"

    async def test_revoke_unknown_key(self, client, admin_key) -> None:
        resp = await client.delete("/api/v1/keys/key-nope", headers=_auth(admin_key))
        assert resp.status_code == 404

    async def test_cannot_revoke_other_owners_key(self, client, admin_key, db) -> None:
        km = APIKeyManager(db)
        other, _raw = await km.create_key("trainer-9", UserRole.TRAINER)
        resp = await client.delete(f"/api/v1/keys/{other.id}", headers=_auth(admin_key))
        assert resp.status_code == 404
        stored = await km.get_key(other.id)
        assert stored is not None
        assert stored.is_active is True

    async def test_key_stats(self, client, admin_key, db) -> None:
        km = APIKeyManager(db)
        keys = await km.list_keys("admin-1")
        key_id = keys[0].id

        resp = await client.get(f"/api/v1/keys/{key_id}/stats", headers=_auth(admin_key))
        assert resp.status_code == 200
        data = resp.json()
        assert data["key"]["id"] == key_id
        assert data["key"]["last_used"] is not None
        assert data["events_last_24h"] == 0
