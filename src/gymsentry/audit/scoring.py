# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Risk scoring for individual audit events.

The score is a weighted point sum over the event tag, the severity and
whether the event is attributable to a source IP, clamped to 0-100.  It
looks at one event only; history is aggregated later by reporting.
"""

from __future__ import annotations

from gymsentry.audit.events import AuditEventData, AuditEventType
from gymsentry.core.constants import Severity

EVENT_BASE_SCORES: dict[str, int] = {
    AuditEventType.LOGIN_ATTEMPT: 5,
    AuditEventType.LOGIN_FAILED: 15,
    AuditEventType.ACCOUNT_LOCKED: 25,
    AuditEventType.PERMISSION_DENIED: 20,
    AuditEventType.SUSPICIOUS_ACTIVITY: 30,
    AuditEventType.RATE_LIMIT_EXCEEDED: 35,
    AuditEventType.API_KEY_REVOKED: 10,
    AuditEventType.PASSWORD_RESET: 15,
}

SEVERITY_POINTS: dict[str, int] = {
    Severity.HIGH: 20,
    Severity.CRITICAL: 40,
}

# NOTE: an attributable IP raises the score rather than lowering it.
# Kept for compatibility with existing stored scores.
SOURCE_IP_POINTS = 5

MIN_RISK_SCORE = 0
MAX_RISK_SCORE = 100


def calculate_risk_score(
    event: AuditEventType | str | None,
    severity: Severity | str | None = None,
    has_source_ip: bool = False,
) -> int:
    """Return the 0-100 risk score for a single event.

    Unknown event tags and a missing severity contribute nothing.
    """
    score = EVENT_BASE_SCORES.get(str(event), 0) if event else 0

    if has_source_ip:
        score += SOURCE_IP_POINTS

    if severity:
        score += SEVERITY_POINTS.get(str(severity), 0)

    return max(MIN_RISK_SCORE, min(score, MAX_RISK_SCORE))


def score_event(data: AuditEventData) -> int:
    """Score an :class:`AuditEventData` as it is about to be recorded."""
    return calculate_risk_score(data.event, data.severity, bool(data.source_ip))
