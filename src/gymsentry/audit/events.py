# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Security audit event data models and event type enumeration."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from gymsentry.core.constants import Severity


class AuditEventType(StrEnum):
    """Categories of security-relevant events."""

    LOGIN_ATTEMPT = "login_attempt"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET = "password_reset"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    API_KEY_CREATED = "api_key_created"
    API_KEY_REVOKED = "api_key_revoked"
    API_KEY_USED = "api_key_used"
    API_KEY_INVALID_ATTEMPT = "api_key_invalid_attempt"
    API_KEY_EXPIRED_ATTEMPT = "api_key_expired_attempt"
    API_KEY_IP_VIOLATION = "api_key_ip_violation"
    PERMISSION_DENIED = "permission_denied"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    FILE_UPLOAD = "file_upload"
    FILE_DOWNLOAD = "file_download"
    DATA_ACCESS = "data_access"
    DATA_MODIFICATION = "data_modification"


class ClientMetadata(BaseModel):
    """Optional client fingerprint attached to an event."""

    country: str | None = None
    city: str | None = None
    timezone: str | None = None
    browser: str | None = None
    os: str | None = None
    device: str | None = None


class AuditEventData(BaseModel):
    """Event description supplied by a call site.

    ``details`` is an opaque JSON object so that new event tags can carry
    new payload shapes without a schema change.
    """

    event: AuditEventType
    severity: Severity = Severity.LOW
    user_id: str | None = Field(default=None, description="Acting user, if any")
    api_key_id: str | None = Field(default=None, description="Acting API key, if any")
    source_ip: str = Field(description="Network origin of the triggering request")
    user_agent: str | None = None
    endpoint: str | None = None
    http_method: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    metadata: ClientMetadata | None = None


class AuditRecord(AuditEventData):
    """A persisted audit event.

    ``risk_score`` is computed once when the record is created.  Only the
    resolution fields change afterwards.
    """

    record_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    risk_score: int = Field(default=0, ge=0, le=100)
    resolved: bool = False
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
