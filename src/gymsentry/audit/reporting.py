# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Security reporting: summarises audit records over a lookback window."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field

from gymsentry.audit.events import AuditRecord
from gymsentry.audit.store import AuditStore, GroupCount, RiskMetrics
from gymsentry.core.constants import Severity

logger = logging.getLogger("gymsentry.audit.reporting")

TOP_GROUP_LIMIT = 10


class ReportWindow(StrEnum):
    """Supported relative lookback periods."""

    HOUR = "1h"
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"


WINDOW_DURATIONS: dict[ReportWindow, timedelta] = {
    ReportWindow.HOUR: timedelta(hours=1),
    ReportWindow.DAY: timedelta(hours=24),
    ReportWindow.WEEK: timedelta(days=7),
    ReportWindow.MONTH: timedelta(days=30),
}


def parse_window(token: str | ReportWindow | None) -> ReportWindow:
    """Map a window token to a :class:`ReportWindow`; unknown tokens mean 24h."""
    if token is None:
        return ReportWindow.DAY
    try:
        return ReportWindow(str(token).strip().lower())
    except ValueError:
        return ReportWindow.DAY


def window_start(window: ReportWindow, now: datetime | None = None) -> datetime:
    """Return the inclusive start of *window* ending at *now*."""
    return (now or datetime.now(UTC)) - WINDOW_DURATIONS[window]


# ---------------------------------------------------------------------------
# Report models
# ---------------------------------------------------------------------------


class SecurityReport(BaseModel):
    """Counts and average risk over one window."""

    window: ReportWindow
    total_events: int = 0
    by_severity: dict[str, int] = Field(
        default_factory=lambda: {s.value: 0 for s in Severity}
    )
    by_event: dict[str, int] = Field(default_factory=dict)
    average_risk_score: float = 0.0


class GroupStat(BaseModel):
    key: str
    count: int
    average_risk_score: float


class RiskSummary(BaseModel):
    average_risk_score: float = 0.0
    max_risk_score: int = 0


class SecurityOverview(BaseModel):
    recent_events: SecurityReport
    risk_metrics: RiskSummary
    top_ips: list[GroupStat]
    top_users: list[GroupStat]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class ReportAggregator:
    """Computes a :class:`SecurityReport` from pre-fetched audit records.

    This is a pure in-memory aggregator; loading the records for a window
    is the caller's job.
    """

    def __init__(self, records: list[AuditRecord] | None = None) -> None:
        self.records: list[AuditRecord] = records or []

    def summary(self, window: ReportWindow) -> SecurityReport:
        by_severity = {s.value: 0 for s in Severity}
        by_event: dict[str, int] = {}
        total_risk = 0

        for r in self.records:
            by_severity[str(r.severity)] = by_severity.get(str(r.severity), 0) + 1
            by_event[str(r.event)] = by_event.get(str(r.event), 0) + 1
            total_risk += r.risk_score

        average = round(total_risk / len(self.records), 2) if self.records else 0.0

        return SecurityReport(
            window=window,
            total_events=len(self.records),
            by_severity=by_severity,
            by_event=dict(sorted(by_event.items())),
            average_risk_score=average,
        )


class SecurityReporter:
    """Store-backed reporting entry points.

    Every call reads the store afresh; nothing is cached between calls.
    Read failures propagate to the caller.
    """

    def __init__(self, store: AuditStore) -> None:
        self._store = store

    async def build_report(
        self,
        window: str | ReportWindow | None = ReportWindow.DAY,
        *,
        now: datetime | None = None,
    ) -> SecurityReport:
        """Summarise every record created within *window*."""
        resolved_window = parse_window(window)
        start = window_start(resolved_window, now)
        records = await self._store.find_since(start)
        logger.debug(
            "Building security report window=%s start=%s records=%d",
            resolved_window,
            start.isoformat(),
            len(records),
        )
        return ReportAggregator(records).summary(resolved_window)

    async def top_ips(
        self,
        window: str | ReportWindow | None = ReportWindow.DAY,
        *,
        limit: int = TOP_GROUP_LIMIT,
        now: datetime | None = None,
    ) -> list[GroupStat]:
        """Most frequent source IPs within *window*."""
        return await self._top("source_ip", window, limit=limit, now=now)

    async def top_users(
        self,
        window: str | ReportWindow | None = ReportWindow.DAY,
        *,
        limit: int = TOP_GROUP_LIMIT,
        now: datetime | None = None,
    ) -> list[GroupStat]:
        """Most frequent acting users within *window* (anonymous events excluded)."""
        return await self._top("user_id", window, limit=limit, now=now)

    async def risk_metrics(
        self,
        window: str | ReportWindow | None = ReportWindow.DAY,
        *,
        now: datetime | None = None,
    ) -> RiskSummary:
        start = window_start(parse_window(window), now)
        metrics: RiskMetrics = await self._store.risk_metrics(start=start)
        return RiskSummary(
            average_risk_score=metrics.average_risk_score,
            max_risk_score=metrics.max_risk_score,
        )

    async def overview(self, *, now: datetime | None = None) -> SecurityOverview:
        """Last-24h report, risk metrics and top offenders in one payload."""
        now = now or datetime.now(UTC)
        return SecurityOverview(
            recent_events=await self.build_report(ReportWindow.DAY, now=now),
            risk_metrics=await self.risk_metrics(ReportWindow.DAY, now=now),
            top_ips=await self.top_ips(ReportWindow.DAY, now=now),
            top_users=await self.top_users(ReportWindow.DAY, now=now),
        )

    async def _top(
        self,
        field: str,
        window: str | ReportWindow | None,
        *,
        limit: int,
        now: datetime | None,
    ) -> list[GroupStat]:
        start = window_start(parse_window(window), now)
        groups: list[GroupCount] = await self._store.group_by(field, start=start, limit=limit)
        return [
            GroupStat(key=g.key, count=g.count, average_risk_score=g.average_risk_score)
            for g in groups
        ]
