# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Security audit API endpoints: overview, event queries, resolution, reports."""

from __future__ import annotations

import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from gymsentry.api.rbac import AuthenticatedKey, require_admin
from gymsentry.audit.events import AuditEventType, AuditRecord
from gymsentry.audit.reporting import (
    ReportWindow,
    RiskSummary,
    SecurityOverview,
    SecurityReport,
    SecurityReporter,
    parse_window,
)
from gymsentry.audit.store import AuditStore
from gymsentry.core.constants import Severity

logger = logging.getLogger("gymsentry.api.security")

router = APIRouter()

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class SecurityEventListResponse(BaseModel):
    events: list[AuditRecord]
    pagination: Pagination


class ResolveRequest(BaseModel):
    notes: str = Field(default="", description="Free-text resolution notes")


class SecurityMetricsResponse(BaseModel):
    timeframe: ReportWindow
    security_metrics: SecurityReport
    risk_metrics: RiskSummary


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _get_store() -> AuditStore:
    """Get an AuditStore bound to the active DB connection."""
    from gymsentry.storage.database import get_db

    db = await get_db()
    return AuditStore(db)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/security/overview", response_model=SecurityOverview)
async def security_overview(
    _caller: AuthenticatedKey = Depends(require_admin),
) -> SecurityOverview:
    """Last-24h report, risk metrics and top source IPs and users."""
    reporter = SecurityReporter(await _get_store())
    return await reporter.overview()


@router.get("/security/events", response_model=SecurityEventListResponse)
async def list_security_events(
    severity: Severity | None = None,
    event: AuditEventType | None = None,
    ip: str | None = Query(default=None, description="Case-insensitive substring of the source IP"),
    user_id: str | None = None,
    api_key_id: str | None = None,
    resolved: bool | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _caller: AuthenticatedKey = Depends(require_admin),
) -> SecurityEventListResponse:
    """List security audit records, newest first, with optional filters."""
    store = await _get_store()
    filters = {
        "severity": severity,
        "event": event,
        "source_ip": ip,
        "user_id": user_id,
        "api_key_id": api_key_id,
        "resolved": resolved,
        "start": start_date,
        "end": end_date,
    }

    total = await store.count_events(**filters)
    events = await store.list_events(**filters, limit=limit, offset=(page - 1) * limit)

    return SecurityEventListResponse(
        events=events,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit),
        ),
    )


@router.get("/security/events/{record_id}", response_model=AuditRecord)
async def get_security_event(
    record_id: str,
    _caller: AuthenticatedKey = Depends(require_admin),
) -> AuditRecord:
    """Get a single audit record by ID."""
    store = await _get_store()
    record = await store.get_by_id(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Security event {record_id} not found")
    return record


@router.patch("/security/events/{record_id}/resolve", response_model=AuditRecord)
async def resolve_security_event(
    record_id: str,
    body: ResolveRequest | None = None,
    caller: AuthenticatedKey = Depends(require_admin),
) -> AuditRecord:
    """Mark an audit record resolved by the caller's owner."""
    store = await _get_store()
    notes = body.notes if body else ""
    record = await store.resolve(record_id, resolved_by=caller.owner_id, notes=notes)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Security event {record_id} not found")

    logger.info(
        "Security event resolved record=%s event=%s by=%s",
        record.record_id,
        record.event,
        caller.owner_id,
    )
    return record


@router.get("/security/metrics", response_model=SecurityMetricsResponse)
async def security_metrics(
    timeframe: str = "7d",
    _caller: AuthenticatedKey = Depends(require_admin),
) -> SecurityMetricsResponse:
    """Report and risk metrics for *timeframe* (unknown values mean 24h)."""
    window = parse_window(timeframe)
    reporter = SecurityReporter(await _get_store())
    return SecurityMetricsResponse(
        timeframe=window,
        security_metrics=await reporter.build_report(window),
        risk_metrics=await reporter.risk_metrics(window),
    )


@router.get("/security/report", response_model=SecurityReport)
async def security_report(
    window: str = "24h",
    _caller: AuthenticatedKey = Depends(require_admin),
) -> SecurityReport:
    """Counts by severity and event type for *window* (unknown values mean 24h)."""
    reporter = SecurityReporter(await _get_store())
    return await reporter.build_report(window)
