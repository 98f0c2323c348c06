# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""API key management: generation, storage, lookup, and revocation.

Keys are stored in the ``api_keys`` SQLite table.  The raw key value is
never stored; only its SHA-256 hash is persisted.  The raw key is returned
**exactly once** at creation time.  Revoked keys are kept, flagged inactive.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime, timedelta
from fnmatch import fnmatchcase
from typing import Any

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from gymsentry.api.rbac import (
    AuthenticatedKey,
    Permission,
    RequestContext,
    generate_raw_key,
    hash_api_key,
    require_admin,
    require_read,
)
from gymsentry.audit.logger import get_audit_logger
from gymsentry.audit.store import AuditStore
from gymsentry.core.constants import ELEVATED_ROLES, UserRole
from gymsentry.core.exceptions import AuthorizationError
from gymsentry.storage.database import format_timestamp

router = APIRouter()

DEFAULT_RATE_LIMIT_REQUESTS = 1000
DEFAULT_RATE_LIMIT_WINDOW_MS = 3_600_000


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class RateLimit(BaseModel):
    """Advisory request budget attached to a key (not enforced by the gate)."""

    requests: int = Field(default=DEFAULT_RATE_LIMIT_REQUESTS, ge=1)
    window_ms: int = Field(default=DEFAULT_RATE_LIMIT_WINDOW_MS, ge=1)


class ApiKeyCredential(BaseModel):
    """A stored API key.  Never carries the raw secret."""

    id: str
    name: str
    owner_id: str
    owner_role: UserRole
    permissions: list[Permission] = Field(default_factory=lambda: [Permission.READ])
    allowed_endpoints: list[str] = Field(default_factory=list)
    ip_allow_list: list[str] = Field(default_factory=list)
    is_active: bool = True
    expires_at: datetime | None = None
    last_used: datetime | None = None
    rate_limit: RateLimit = Field(default_factory=RateLimit)
    created_at: datetime
    revoked_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at < (now or datetime.now(UTC))

    def allows_ip(self, source_ip: str) -> bool:
        return not self.ip_allow_list or source_ip in self.ip_allow_list

    def allows_endpoint(self, endpoint: str) -> bool:
        if not self.allowed_endpoints:
            return True
        return any(fnmatchcase(endpoint, pattern) for pattern in self.allowed_endpoints)

    def grants(self, permission: Permission) -> bool:
        return permission in self.permissions


class APIKeyCreateRequest(BaseModel):
    """Request body for creating a new API key."""

    name: str | None = Field(default=None, description="Human-readable label for the key")
    permissions: list[Permission] = Field(default_factory=lambda: [Permission.READ])
    allowed_endpoints: list[str] = Field(default_factory=list)
    ip_allow_list: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None
    rate_limit: RateLimit = Field(default_factory=RateLimit)


class APIKeyCreateResponse(BaseModel):
    """Response returned exactly once after key creation."""

    id: str
    name: str
    raw_key: str = Field(description="The API key value. Store it securely, it cannot be retrieved again.")
    permissions: list[Permission]
    allowed_endpoints: list[str]
    expires_at: datetime | None = None
    created_at: datetime


class APIKeyListResponse(BaseModel):
    """Wrapper for the list of keys."""

    keys: list[ApiKeyCredential]


class APIKeyTestResponse(BaseModel):
    key_id: str
    name: str
    owner_id: str
    permissions: list[Permission]
    timestamp: datetime


class APIKeyStatsResponse(BaseModel):
    key: ApiKeyCredential
    events_last_24h: int


# ---------------------------------------------------------------------------
# APIKeyManager: data-access layer
# ---------------------------------------------------------------------------


class APIKeyManager:
    """Manages API keys in the ``api_keys`` SQLite table."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    # -- queries -----------------------------------------------------------

    async def find_by_secret(self, raw_key: str) -> ApiKeyCredential | None:
        """Look up *raw_key* by its hash, active or not."""
        cursor = await self._db.execute(
            "SELECT * FROM api_keys WHERE key_hash = ?",
            (hash_api_key(raw_key),),
        )
        row = await cursor.fetchone()
        return _row_to_credential(row) if row else None

    async def get_key(self, key_id: str) -> ApiKeyCredential | None:
        """Fetch a single key by ID."""
        cursor = await self._db.execute("SELECT * FROM api_keys WHERE id = ?", (key_id,))
        row = await cursor.fetchone()
        return _row_to_credential(row) if row else None

    async def list_keys(self, owner_id: str | None = None) -> list[ApiKeyCredential]:
        """Return keys (active and revoked), newest first, optionally for one owner."""
        if owner_id is None:
            cursor = await self._db.execute("SELECT * FROM api_keys ORDER BY created_at DESC")
        else:
            cursor = await self._db.execute(
                "SELECT * FROM api_keys WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            )
        rows = await cursor.fetchall()
        return [_row_to_credential(r) for r in rows]

    # -- mutations ---------------------------------------------------------

    async def create_key(
        self,
        owner_id: str,
        owner_role: UserRole | str,
        *,
        name: str | None = None,
        permissions: list[Permission] | None = None,
        allowed_endpoints: list[str] | None = None,
        ip_allow_list: list[str] | None = None,
        expires_at: datetime | None = None,
        rate_limit: RateLimit | None = None,
    ) -> tuple[ApiKeyCredential, str]:
        """Create a new API key.

        Returns ``(credential, raw_key)``; the raw key is returned
        only this once.

        Raises:
            AuthorizationError: If *owner_role* may not issue keys.
        """
        role = UserRole(owner_role)
        if role not in ELEVATED_ROLES:
            msg = f"Role {role!s} may not issue API keys"
            raise AuthorizationError(msg)

        raw_key = generate_raw_key()
        now = datetime.now(UTC)
        credential = ApiKeyCredential(
            id=f"key-{uuid.uuid4().hex[:12]}",
            name=name or f"API Key {int(now.timestamp() * 1000)}",
            owner_id=owner_id,
            owner_role=role,
            permissions=list(dict.fromkeys(permissions or [Permission.READ])),
            allowed_endpoints=allowed_endpoints or [],
            ip_allow_list=ip_allow_list or [],
            expires_at=expires_at,
            rate_limit=rate_limit or RateLimit(),
            created_at=now,
        )

        await self._db.execute(
            """
            INSERT INTO api_keys (
                id, key_hash, name, owner_id, owner_role, permissions,
                allowed_endpoints, ip_allow_list, is_active, expires_at,
                rate_limit_requests, rate_limit_window_ms, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?, ?)
            """,
            (
                credential.id,
                hash_api_key(raw_key),
                credential.name,
                credential.owner_id,
                str(credential.owner_role),
                json.dumps([str(p) for p in credential.permissions]),
                json.dumps(credential.allowed_endpoints),
                json.dumps(credential.ip_allow_list),
                format_timestamp(expires_at) if expires_at else None,
                credential.rate_limit.requests,
                credential.rate_limit.window_ms,
                format_timestamp(now),
            ),
        )
        await self._db.commit()
        return credential, raw_key

    async def revoke_key(self, key_id: str) -> ApiKeyCredential | None:
        """Deactivate a key.  Returns the updated credential, or None if absent."""
        cursor = await self._db.execute(
            "UPDATE api_keys SET is_active = 0, revoked_at = COALESCE(revoked_at, ?) WHERE id = ?",
            (format_timestamp(datetime.now(UTC)), key_id),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get_key(key_id)

    async def touch_last_used(self, key_id: str, *, when: datetime | None = None) -> None:
        """Update the ``last_used`` timestamp for a key."""
        await self._db.execute(
            "UPDATE api_keys SET last_used = ? WHERE id = ?",
            (format_timestamp(when or datetime.now(UTC)), key_id),
        )
        await self._db.commit()


def _row_to_credential(row: aiosqlite.Row) -> ApiKeyCredential:
    d: dict[str, Any] = dict(row)
    return ApiKeyCredential(
        id=d["id"],
        name=d["name"],
        owner_id=d["owner_id"],
        owner_role=d["owner_role"],
        permissions=json.loads(d.get("permissions") or '["read"]'),
        allowed_endpoints=json.loads(d.get("allowed_endpoints") or "[]"),
        ip_allow_list=json.loads(d.get("ip_allow_list") or "[]"),
        is_active=bool(d.get("is_active", 1)),
        expires_at=d.get("expires_at"),
        last_used=d.get("last_used"),
        rate_limit=RateLimit(
            requests=d.get("rate_limit_requests") or DEFAULT_RATE_LIMIT_REQUESTS,
            window_ms=d.get("rate_limit_window_ms") or DEFAULT_RATE_LIMIT_WINDOW_MS,
        ),
        created_at=d["created_at"],
        revoked_at=d.get("revoked_at"),
    )


# ---------------------------------------------------------------------------
# Helper to get the manager bound to the current DB connection
# ---------------------------------------------------------------------------


async def get_key_manager() -> APIKeyManager:
    """Return an :class:`APIKeyManager` bound to the active DB connection."""
    from gymsentry.storage.database import get_db

    db = await get_db()
    return APIKeyManager(db)


async def _get_owned_key(km: APIKeyManager, key_id: str, caller: AuthenticatedKey) -> ApiKeyCredential:
    credential = await km.get_key(key_id)
    if credential is None or credential.owner_id != caller.owner_id:
        raise HTTPException(status_code=404, detail=f"Key {key_id} not found")
    return credential


# ---------------------------------------------------------------------------
# API endpoints
# ---------------------------------------------------------------------------


@router.post("/keys", response_model=APIKeyCreateResponse, status_code=201)
async def create_api_key(
    body: APIKeyCreateRequest,
    request: Request,
    caller: AuthenticatedKey = Depends(require_admin),
) -> APIKeyCreateResponse:
    """Create a new API key for the caller's owner.  The raw key is returned **only once**."""
    km = await get_key_manager()
    try:
        credential, raw_key = await km.create_key(
            caller.owner_id,
            caller.owner_role,
            name=body.name,
            permissions=body.permissions,
            allowed_endpoints=body.allowed_endpoints,
            ip_allow_list=body.ip_allow_list,
            expires_at=body.expires_at,
            rate_limit=body.rate_limit,
        )
    except AuthorizationError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc

    ctx = RequestContext.from_request(request)
    await get_audit_logger().log_api_key_created(
        credential.id,
        credential.name,
        [str(p) for p in credential.permissions],
        user_id=caller.owner_id,
        source_ip=ctx.source_ip,
        actor_key_id=caller.key_id,
        endpoint=ctx.endpoint,
        http_method=ctx.http_method,
    )
    return APIKeyCreateResponse(
        id=credential.id,
        name=credential.name,
        raw_key=raw_key,
        permissions=credential.permissions,
        allowed_endpoints=credential.allowed_endpoints,
        expires_at=credential.expires_at,
        created_at=credential.created_at,
    )


@router.get("/keys", response_model=APIKeyListResponse)
async def list_api_keys(
    caller: AuthenticatedKey = Depends(require_admin),
) -> APIKeyListResponse:
    """List the caller owner's API keys (without revealing raw key values)."""
    km = await get_key_manager()
    return APIKeyListResponse(keys=await km.list_keys(caller.owner_id))


@router.get("/keys/test", response_model=APIKeyTestResponse)
async def test_api_key(
    caller: AuthenticatedKey = Depends(require_read),
) -> APIKeyTestResponse:
    """Echo the authenticated key."""
    return APIKeyTestResponse(
        key_id=caller.key_id,
        name=caller.name,
        owner_id=caller.owner_id,
        permissions=sorted(caller.permissions),
        timestamp=datetime.now(UTC),
    )


@router.delete("/keys/{key_id}", status_code=204)
async def revoke_api_key(
    key_id: str,
    request: Request,
    caller: AuthenticatedKey = Depends(require_admin),
) -> None:
    """Revoke an API key owned by the caller."""
    km = await get_key_manager()
    await _get_owned_key(km, key_id, caller)
    revoked = await km.revoke_key(key_id)
    if revoked is None:
        raise HTTPException(status_code=404, detail=f"Key {key_id} not found")

    ctx = RequestContext.from_request(request)
    await get_audit_logger().log_api_key_revoked(
        revoked.id,
        revoked.name,
        user_id=caller.owner_id,
        source_ip=ctx.source_ip,
        actor_key_id=caller.key_id,
        endpoint=ctx.endpoint,
        http_method=ctx.http_method,
    )


@router.get("/keys/{key_id}/stats", response_model=APIKeyStatsResponse)
async def api_key_stats(
    key_id: str,
    caller: AuthenticatedKey = Depends(require_admin),
) -> APIKeyStatsResponse:
    """Key details plus the number of audit events it produced in the last 24 hours."""
    from gymsentry.storage.database import get_db

    km = await get_key_manager()
    credential = await _get_owned_key(km, key_id, caller)
    store = AuditStore(await get_db())
    count = await store.count_events(
        api_key_id=key_id,
        start=datetime.now(UTC) - timedelta(hours=24),
    )
    return APIKeyStatsResponse(key=credential, events_last_24h=count)
