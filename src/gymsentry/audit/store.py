# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Audit record persistence to the SQLite ``security_audit`` table."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from gymsentry.audit.events import AuditRecord, ClientMetadata
from gymsentry.storage.database import format_timestamp as _ts

# Columns that may be used as GROUP BY keys in aggregate queries.
_GROUPABLE_FIELDS: frozenset[str] = frozenset({"source_ip", "user_id", "api_key_id", "event"})


@dataclass(frozen=True, slots=True)
class GroupCount:
    """Occurrence count and mean risk for one value of a grouped column."""

    key: str
    count: int
    average_risk_score: float


@dataclass(frozen=True, slots=True)
class RiskMetrics:
    """Mean and maximum risk score over a set of records."""

    average_risk_score: float = 0.0
    max_risk_score: int = 0


class AuditStore:
    """Repository for persisting and querying audit records in SQLite.

    Records are inserted once and only the resolution columns are ever
    updated afterwards.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def insert(self, record: AuditRecord) -> None:
        """Persist a single audit record."""
        await self._db.execute(
            """
            INSERT INTO security_audit (
                record_id, event, severity, user_id, api_key_id, source_ip,
                user_agent, endpoint, http_method, details, metadata,
                risk_score, resolved, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.record_id,
                str(record.event),
                str(record.severity),
                record.user_id,
                record.api_key_id,
                record.source_ip,
                record.user_agent,
                record.endpoint,
                record.http_method,
                json.dumps(record.details, default=str),
                record.metadata.model_dump_json() if record.metadata else None,
                record.risk_score,
                int(record.resolved),
                _ts(record.created_at),
            ),
        )
        await self._db.commit()

    async def get_by_id(self, record_id: str) -> AuditRecord | None:
        """Retrieve a single audit record by its ID."""
        cursor = await self._db.execute(
            "SELECT * FROM security_audit WHERE record_id = ?", (record_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    async def list_events(
        self,
        *,
        severity: str | None = None,
        event: str | None = None,
        source_ip: str | None = None,
        user_id: str | None = None,
        api_key_id: str | None = None,
        resolved: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """Query audit records with optional filters, newest first.

        Args:
            severity: Exact severity match.
            event: Exact event tag match.
            source_ip: Case-insensitive substring match on the source IP.
            user_id: Exact acting-user match.
            api_key_id: Exact acting-key match.
            resolved: Restrict to resolved or unresolved records.
            start: Inclusive lower bound on ``created_at``.
            end: Inclusive upper bound on ``created_at``.
            limit: Maximum number of results; ``None`` for no limit.
            offset: Number of rows to skip.
        """
        where, params = _build_where(
            severity=severity,
            event=event,
            source_ip=source_ip,
            user_id=user_id,
            api_key_id=api_key_id,
            resolved=resolved,
            start=start,
            end=end,
        )
        query = f"SELECT * FROM security_audit{where} ORDER BY created_at DESC, record_id ASC"  # noqa: S608
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        cursor = await self._db.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def find_since(self, start: datetime) -> list[AuditRecord]:
        """Return every record created at or after *start*, newest first."""
        return await self.list_events(start=start, limit=None)

    async def count_events(
        self,
        *,
        severity: str | None = None,
        event: str | None = None,
        source_ip: str | None = None,
        user_id: str | None = None,
        api_key_id: str | None = None,
        resolved: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        """Return the total count of records matching the given filters."""
        where, params = _build_where(
            severity=severity,
            event=event,
            source_ip=source_ip,
            user_id=user_id,
            api_key_id=api_key_id,
            resolved=resolved,
            start=start,
            end=end,
        )
        cursor = await self._db.execute(
            f"SELECT COUNT(*) FROM security_audit{where}",  # noqa: S608
            params,
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def resolve(
        self,
        record_id: str,
        *,
        resolved_by: str,
        notes: str = "",
        resolved_at: datetime | None = None,
    ) -> AuditRecord | None:
        """Mark a record resolved.  Returns the updated record, or None if absent."""
        when = resolved_at or datetime.now(UTC)
        cursor = await self._db.execute(
            """
            UPDATE security_audit
            SET resolved = 1, resolved_by = ?, resolved_at = ?, resolution_notes = ?
            WHERE record_id = ?
            """,
            (resolved_by, _ts(when), notes, record_id),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get_by_id(record_id)

    async def group_by(
        self,
        field: str,
        *,
        start: datetime,
        limit: int = 10,
    ) -> list[GroupCount]:
        """Group records created since *start* by *field*.

        Returns the *limit* most frequent values with their count and mean
        risk score, most frequent first.  NULL and empty keys are skipped.
        """
        if field not in _GROUPABLE_FIELDS:
            msg = f"Cannot group audit records by {field!r}"
            raise ValueError(msg)

        cursor = await self._db.execute(
            f"""
            SELECT {field} AS key, COUNT(*) AS count, AVG(risk_score) AS avg_risk
            FROM security_audit
            WHERE created_at >= ? AND {field} IS NOT NULL AND {field} != ''
            GROUP BY {field}
            ORDER BY count DESC, key ASC
            LIMIT ?
            """,  # noqa: S608
            (_ts(start), limit),
        )
        rows = await cursor.fetchall()
        return [
            GroupCount(
                key=row["key"],
                count=int(row["count"]),
                average_risk_score=round(float(row["avg_risk"] or 0), 2),
            )
            for row in rows
        ]

    async def risk_metrics(self, *, start: datetime) -> RiskMetrics:
        """Return mean and max risk score for records created since *start*."""
        cursor = await self._db.execute(
            "SELECT AVG(risk_score), MAX(risk_score) FROM security_audit WHERE created_at >= ?",
            (_ts(start),),
        )
        row = await cursor.fetchone()
        if row is None or row[0] is None:
            return RiskMetrics()
        return RiskMetrics(
            average_risk_score=round(float(row[0]), 2),
            max_risk_score=int(row[1]),
        )


def _build_where(
    *,
    severity: str | None,
    event: str | None,
    source_ip: str | None,
    user_id: str | None,
    api_key_id: str | None,
    resolved: bool | None,
    start: datetime | None,
    end: datetime | None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []

    if severity is not None:
        clauses.append("severity = ?")
        params.append(str(severity))
    if event is not None:
        clauses.append("event = ?")
        params.append(str(event))
    if source_ip is not None:
        clauses.append("LOWER(source_ip) LIKE ?")
        params.append(f"%{source_ip.lower()}%")
    if user_id is not None:
        clauses.append("user_id = ?")
        params.append(user_id)
    if api_key_id is not None:
        clauses.append("api_key_id = ?")
        params.append(api_key_id)
    if resolved is not None:
        clauses.append("resolved = ?")
        params.append(int(resolved))
    if start is not None:
        clauses.append("created_at >= ?")
        params.append(_ts(start))
    if end is not None:
        clauses.append("created_at <= ?")
        params.append(_ts(end))

    where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
    return where, params


def _row_to_record(row: aiosqlite.Row) -> AuditRecord:
    """Convert an aiosqlite Row to an :class:`AuditRecord`, parsing JSON columns."""
    d = dict(row)
    try:
        d["details"] = json.loads(d.get("details") or "{}")
    except (json.JSONDecodeError, TypeError):
        d["details"] = {}
    raw_metadata = d.pop("metadata", None)
    d["metadata"] = ClientMetadata.model_validate_json(raw_metadata) if raw_metadata else None
    d["resolved"] = bool(d.get("resolved"))
    return AuditRecord.model_validate(d)
