# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Centralized security audit logger.

Scores each incoming event, persists it to the audit store, optionally
mirrors it to daily JSONL files, and escalates high/critical events to the
operational log.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from gymsentry.audit.events import AuditEventData, AuditEventType, AuditRecord
from gymsentry.audit.scoring import score_event
from gymsentry.audit.store import AuditStore
from gymsentry.core.constants import ESCALATED_SEVERITIES, Severity

_logger = logging.getLogger("gymsentry.audit")

# Module-level singleton
_audit_logger: AuditLogger | None = None


class AuditLogger:
    """Records security-relevant events.

    Failures to persist an event are logged but never propagate to the
    caller: a login or key check must succeed or fail on its own merits
    whatever happens to its audit trail.
    """

    def __init__(
        self,
        *,
        store: AuditStore | None = None,
        log_dir: Path | None = None,
    ) -> None:
        self._store = store
        self._log_dir = log_dir

    async def log_event(self, data: AuditEventData) -> AuditRecord | None:
        """Score and persist *data*.

        Returns the stored record, or ``None`` if it could not be persisted.
        """
        try:
            record = AuditRecord(**data.model_dump(), risk_score=score_event(data))
            store = await self._get_store()
            await store.insert(record)
        except Exception:
            _logger.exception(
                "Failed to log security audit event event=%s severity=%s ip=%s endpoint=%s",
                data.event,
                data.severity,
                data.source_ip,
                data.endpoint,
            )
            return None

        self._write_json_log(record)

        if record.severity in ESCALATED_SEVERITIES:
            _logger.warning(
                "High-severity security event event=%s severity=%s user=%s "
                "api_key=%s ip=%s endpoint=%s risk_score=%d",
                record.event,
                record.severity,
                record.user_id,
                record.api_key_id,
                record.source_ip,
                record.endpoint,
                record.risk_score,
            )
        else:
            _logger.debug(
                "audit record=%s event=%s risk_score=%d",
                record.record_id,
                record.event,
                record.risk_score,
            )
        return record

    async def _get_store(self) -> AuditStore:
        if self._store is not None:
            return self._store

        from gymsentry.storage.database import get_db

        db = await get_db()
        return AuditStore(db)

    def _write_json_log(self, record: AuditRecord) -> None:
        """Append a single JSON line to the daily audit log file."""
        if self._log_dir is None:
            return
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            today = datetime.now(UTC).strftime("%Y-%m-%d")
            log_file = self._log_dir / f"audit-{today}.jsonl"
            line = json.dumps(record.model_dump(mode="json"), default=str)
            with log_file.open("a") as fh:
                fh.write(line + "\n")
        except Exception:
            _logger.exception("Failed to write JSON audit log")

    # -----------------------------------------------------------------
    # Convenience methods for common event types
    # -----------------------------------------------------------------

    async def log_api_key_created(
        self,
        key_id: str,
        key_name: str,
        permissions: list[str],
        *,
        user_id: str | None,
        source_ip: str,
        actor_key_id: str | None = None,
        endpoint: str | None = None,
        http_method: str | None = None,
    ) -> AuditRecord | None:
        """Log that an API key has been issued."""
        return await self.log_event(
            AuditEventData(
                event=AuditEventType.API_KEY_CREATED,
                severity=Severity.LOW,
                user_id=user_id,
                api_key_id=actor_key_id,
                source_ip=source_ip,
                endpoint=endpoint,
                http_method=http_method,
                details={
                    "created_key_id": key_id,
                    "created_key_name": key_name,
                    "permissions": [str(p) for p in permissions],
                },
            )
        )

    async def log_api_key_revoked(
        self,
        key_id: str,
        key_name: str,
        *,
        user_id: str | None,
        source_ip: str,
        actor_key_id: str | None = None,
        endpoint: str | None = None,
        http_method: str | None = None,
    ) -> AuditRecord | None:
        """Log that an API key has been revoked."""
        return await self.log_event(
            AuditEventData(
                event=AuditEventType.API_KEY_REVOKED,
                severity=Severity.MEDIUM,
                user_id=user_id,
                api_key_id=actor_key_id,
                source_ip=source_ip,
                endpoint=endpoint,
                http_method=http_method,
                details={"revoked_key_id": key_id, "revoked_key_name": key_name},
            )
        )

    async def log_rate_limit_exceeded(
        self,
        identity: str,
        limit: int,
        *,
        source_ip: str,
        endpoint: str | None = None,
        http_method: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord | None:
        """Log a request rejected by the rate limiter."""
        return await self.log_event(
            AuditEventData(
                event=AuditEventType.RATE_LIMIT_EXCEEDED,
                severity=Severity.MEDIUM,
                source_ip=source_ip,
                endpoint=endpoint,
                http_method=http_method,
                user_agent=user_agent,
                details={"identity": identity, "limit": limit, **(details or {})},
            )
        )


def get_audit_logger() -> AuditLogger:
    """Return the module-level AuditLogger singleton."""
    global _audit_logger
    if _audit_logger is None:
        from gymsentry.core.config import get_settings

        _audit_logger = AuditLogger(log_dir=get_settings().audit_log_dir)
    return _audit_logger


def set_audit_logger(logger: AuditLogger | None) -> None:
    """Replace the module-level AuditLogger singleton (``None`` resets it)."""
    global _audit_logger
    _audit_logger = logger
