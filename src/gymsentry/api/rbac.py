# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""API key access control.

Defines permissions, the :class:`ApiKeyGate` that validates a presented key
against its stored credential, and the FastAPI dependency that enforces a
permission on routes.  Every denial except a missing key is written to the
security audit log.
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from gymsentry.audit.events import AuditEventData, AuditEventType
from gymsentry.audit.logger import AuditLogger, get_audit_logger
from gymsentry.core.config import get_settings
from gymsentry.core.constants import Severity, UserRole

if TYPE_CHECKING:
    from gymsentry.api.keys import APIKeyManager, ApiKeyCredential

logger = logging.getLogger("gymsentry.api.rbac")

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
_bearer = HTTPBearer(auto_error=False)

KEY_PREFIX = "gsk_"


# ---------------------------------------------------------------------------
# Permission and denial enumerations
# ---------------------------------------------------------------------------


class Permission(StrEnum):
    """Permissions grantable to an API key."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class DenialReason(StrEnum):
    """Why the gate refused a request."""

    MISSING_KEY = "missing_key"
    INVALID_KEY = "invalid_key"
    EXPIRED_KEY = "expired_key"
    IP_NOT_ALLOWED = "ip_not_allowed"
    PERMISSION_DENIED = "permission_denied"


_DENIAL_STATUS: dict[DenialReason, int] = {
    DenialReason.MISSING_KEY: 401,
    DenialReason.INVALID_KEY: 401,
    DenialReason.EXPIRED_KEY: 401,
    DenialReason.IP_NOT_ALLOWED: 403,
    DenialReason.PERMISSION_DENIED: 403,
}

_DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.MISSING_KEY: "API key required",
    DenialReason.INVALID_KEY: "Invalid API key",
    DenialReason.EXPIRED_KEY: "API key expired",
    DenialReason.IP_NOT_ALLOWED: "IP address not allowed",
    DenialReason.PERMISSION_DENIED: "Insufficient permissions",
}


# ---------------------------------------------------------------------------
# Request context and gate outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RequestContext:
    """The parts of an incoming request the gate and the audit log need."""

    source_ip: str
    endpoint: str
    http_method: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> RequestContext:
        return cls(
            source_ip=request.client.host if request.client else "",
            endpoint=request.url.path,
            http_method=request.method,
            user_agent=request.headers.get("user-agent"),
        )


class AuthenticatedKey:
    """Represents a validated API key with its owner and permissions."""

    __slots__ = ("key_id", "name", "owner_id", "owner_role", "permissions")

    def __init__(
        self,
        key_id: str,
        name: str,
        owner_id: str,
        owner_role: UserRole,
        permissions: frozenset[Permission],
    ) -> None:
        self.key_id = key_id
        self.name = name
        self.owner_id = owner_id
        self.owner_role = owner_role
        self.permissions = permissions

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.permissions


@dataclass(frozen=True, slots=True)
class AccessGrant:
    key: AuthenticatedKey


@dataclass(frozen=True, slots=True)
class AccessDenial:
    reason: DenialReason
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return _DENIAL_STATUS[self.reason]

    @property
    def message(self) -> str:
        return _DENIAL_MESSAGES[self.reason]


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------


def hash_api_key(raw_key: str) -> str:
    """Return the SHA-256 hex digest of *raw_key*."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def generate_raw_key() -> str:
    """Generate a cryptographically random API key string."""
    return f"{KEY_PREFIX}{os.urandom(32).hex()}"


def mask_key(raw_key: str) -> str:
    """Return a loggable prefix of *raw_key*."""
    return raw_key[:8] + "..."


# ---------------------------------------------------------------------------
# The gate
# ---------------------------------------------------------------------------


class ApiKeyGate:
    """Validates presented API keys.

    Checks run in a fixed order and stop at the first failure: presence,
    lookup and active flag, expiry, IP allow-list, then endpoint allow-list
    and permission.  A successful check updates ``last_used``.
    """

    def __init__(
        self,
        manager: APIKeyManager,
        *,
        audit_logger: AuditLogger | None = None,
        audit_success: bool = False,
    ) -> None:
        self._manager = manager
        self._audit_logger = audit_logger
        self._audit_success = audit_success

    async def authorize(
        self,
        presented_key: str | None,
        required_permission: Permission,
        context: RequestContext,
        *,
        now: datetime | None = None,
    ) -> AccessGrant | AccessDenial:
        # No key is a client error, not a security event.
        if not presented_key:
            return AccessDenial(DenialReason.MISSING_KEY)

        now = now or datetime.now(UTC)
        credential = await self._manager.find_by_secret(presented_key)

        if credential is None or not credential.is_active:
            details = {"key_prefix": mask_key(presented_key)}
            if credential is not None:
                details["revoked"] = True
            return await self._deny(
                DenialReason.INVALID_KEY,
                AuditEventType.API_KEY_INVALID_ATTEMPT,
                Severity.LOW,
                context,
                credential,
                details,
            )

        if credential.is_expired(now):
            return await self._deny(
                DenialReason.EXPIRED_KEY,
                AuditEventType.API_KEY_EXPIRED_ATTEMPT,
                Severity.LOW,
                context,
                credential,
                {"expires_at": credential.expires_at.isoformat() if credential.expires_at else None},
            )

        if not credential.allows_ip(context.source_ip):
            return await self._deny(
                DenialReason.IP_NOT_ALLOWED,
                AuditEventType.API_KEY_IP_VIOLATION,
                Severity.HIGH,
                context,
                credential,
                {"allowed_ips": list(credential.ip_allow_list)},
            )

        if not credential.allows_endpoint(context.endpoint) or not credential.grants(
            required_permission
        ):
            return await self._deny(
                DenialReason.PERMISSION_DENIED,
                AuditEventType.PERMISSION_DENIED,
                Severity.MEDIUM,
                context,
                credential,
                {
                    "required_permission": str(required_permission),
                    "granted_permissions": [str(p) for p in credential.permissions],
                },
            )

        try:
            await self._manager.touch_last_used(credential.id, when=now)
        except Exception:
            logger.warning("Failed to update last_used for key %s", credential.id, exc_info=True)

        if self._audit_success:
            await self._audit(
                AuditEventType.API_KEY_USED,
                Severity.LOW,
                context,
                credential,
                {"permission": str(required_permission)},
            )

        return AccessGrant(
            key=AuthenticatedKey(
                key_id=credential.id,
                name=credential.name,
                owner_id=credential.owner_id,
                owner_role=credential.owner_role,
                permissions=frozenset(credential.permissions),
            )
        )

    async def _deny(
        self,
        reason: DenialReason,
        event: AuditEventType,
        severity: Severity,
        context: RequestContext,
        credential: ApiKeyCredential | None,
        details: dict[str, Any],
    ) -> AccessDenial:
        logger.warning(
            "API key denied reason=%s key=%s ip=%s endpoint=%s",
            reason,
            credential.id if credential else None,
            context.source_ip,
            context.endpoint,
        )
        await self._audit(event, severity, context, credential, details)
        return AccessDenial(reason, details)

    async def _audit(
        self,
        event: AuditEventType,
        severity: Severity,
        context: RequestContext,
        credential: ApiKeyCredential | None,
        details: dict[str, Any],
    ) -> None:
        audit_logger = self._audit_logger or get_audit_logger()
        await audit_logger.log_event(
            AuditEventData(
                event=event,
                severity=severity,
                user_id=credential.owner_id if credential else None,
                api_key_id=credential.id if credential else None,
                source_ip=context.source_ip,
                user_agent=context.user_agent,
                endpoint=context.endpoint,
                http_method=context.http_method,
                details=details,
            )
        )


async def get_gate() -> ApiKeyGate:
    """Return an :class:`ApiKeyGate` bound to the active DB connection."""
    from gymsentry.api.keys import get_key_manager

    settings = get_settings()
    return ApiKeyGate(
        await get_key_manager(),
        audit_success=settings.audit_successful_key_use,
    )


# ---------------------------------------------------------------------------
# Permission-checking dependency factory
# ---------------------------------------------------------------------------


def require_permission(permission: Permission):
    """Return a FastAPI dependency that enforces *permission*.

    The key is read from ``X-API-Key`` or an ``Authorization: Bearer``
    header.  The authenticated key is also stored on
    ``request.state.api_key`` for downstream handlers.
    """
    _key_security = Security(_api_key_header)
    _bearer_security = Security(_bearer)

    async def _check(
        request: Request,
        api_key: str | None = _key_security,
        bearer: HTTPAuthorizationCredentials | None = _bearer_security,
    ) -> AuthenticatedKey:
        presented = api_key or (bearer.credentials if bearer else None)
        gate = await get_gate()
        outcome = await gate.authorize(
            presented, permission, RequestContext.from_request(request)
        )
        if isinstance(outcome, AccessDenial):
            raise HTTPException(status_code=outcome.status_code, detail=outcome.message)
        request.state.api_key = outcome.key
        return outcome.key

    return _check


# ---------------------------------------------------------------------------
# Pre-built dependency singletons (avoids ruff B008 in route signatures)
# ---------------------------------------------------------------------------

require_read = require_permission(Permission.READ)
require_write = require_permission(Permission.WRITE)
require_admin = require_permission(Permission.ADMIN)
