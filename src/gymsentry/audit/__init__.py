# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Security audit module: event records, risk scoring, persistence and reporting."""

from gymsentry.audit.events import AuditEventData, AuditEventType, AuditRecord, ClientMetadata
from gymsentry.audit.logger import AuditLogger, get_audit_logger, set_audit_logger
from gymsentry.audit.reporting import (
    ReportAggregator,
    ReportWindow,
    SecurityReport,
    SecurityReporter,
    parse_window,
)
from gymsentry.audit.scoring import calculate_risk_score, score_event
from gymsentry.audit.store import AuditStore

__all__ = [
    "AuditEventData",
    "AuditEventType",
    "AuditLogger",
    "AuditRecord",
    "AuditStore",
    "ClientMetadata",
    "ReportAggregator",
    "ReportWindow",
    "SecurityReport",
    "SecurityReporter",
    "calculate_risk_score",
    "get_audit_logger",
    "parse_window",
    "score_event",
    "set_audit_logger",
]
