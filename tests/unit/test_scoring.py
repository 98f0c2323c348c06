# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Unit tests for per-event risk scoring."""

from __future__ import annotations

import pytest

from gymsentry.audit.events import AuditEventData, AuditEventType
from gymsentry.audit.scoring import (
    EVENT_BASE_SCORES,
    MAX_RISK_SCORE,
    calculate_risk_score,
    score_event,
)
from gymsentry.core.constants import Severity


class TestCalculateRiskScore:
    """Tests for the weighted point sum."""

    def test_failed_login_medium_with_ip(self) -> None:
        assert calculate_risk_score(AuditEventType.LOGIN_FAILED, Severity.MEDIUM, True) == 20

    def test_rate_limit_critical_with_ip(self) -> None:
        assert calculate_risk_score(AuditEventType.RATE_LIMIT_EXCEEDED, Severity.CRITICAL, True) == 80

    @pytest.mark.parametrize(
        ("event", "expected"),
        [
            (AuditEventType.LOGIN_ATTEMPT, 5),
            (AuditEventType.LOGIN_FAILED, 15),
            (AuditEventType.ACCOUNT_LOCKED, 25),
            (AuditEventType.PERMISSION_DENIED, 20),
            (AuditEventType.SUSPICIOUS_ACTIVITY, 30),
            (AuditEventType.RATE_LIMIT_EXCEEDED, 35),
            (AuditEventType.API_KEY_REVOKED, 10),
            (AuditEventType.PASSWORD_RESET, 15),
        ],
    )
    def test_base_points(self, event: AuditEventType, expected: int) -> None:
        assert calculate_risk_score(event, Severity.LOW, False) == expected

    def test_unlisted_event_has_no_base_points(self) -> None:
        assert calculate_risk_score(AuditEventType.LOGOUT, Severity.LOW, False) == 0
        assert calculate_risk_score(AuditEventType.API_KEY_IP_VIOLATION, Severity.HIGH, False) == 20

    def test_unknown_tag_does_not_raise(self) -> None:
        assert calculate_risk_score("no_such_event", "no_such_severity", False) == 0
        assert calculate_risk_score(None, None, True) == 5

    def test_source_ip_adds_points(self) -> None:
        without = calculate_risk_score(AuditEventType.LOGIN_FAILED, Severity.LOW, False)
        with_ip = calculate_risk_score(AuditEventType.LOGIN_FAILED, Severity.LOW, True)
        assert with_ip - without == 5

    def test_severity_points_are_additive(self) -> None:
        base = calculate_risk_score(AuditEventType.SUSPICIOUS_ACTIVITY, Severity.MEDIUM)
        assert calculate_risk_score(AuditEventType.SUSPICIOUS_ACTIVITY, Severity.HIGH) == base + 20
        assert calculate_risk_score(AuditEventType.SUSPICIOUS_ACTIVITY, Severity.CRITICAL) == base + 40

    def test_medium_and_low_add_nothing(self) -> None:
        assert calculate_risk_score(AuditEventType.ACCOUNT_LOCKED, Severity.LOW) == calculate_risk_score(
            AuditEventType.ACCOUNT_LOCKED, Severity.MEDIUM
        )

    def test_score_is_clamped(self, monkeypatch) -> None:
        monkeypatch.setitem(EVENT_BASE_SCORES, AuditEventType.SUSPICIOUS_ACTIVITY, 90)
        assert (
            calculate_risk_score(AuditEventType.SUSPICIOUS_ACTIVITY, Severity.CRITICAL, True)
            == MAX_RISK_SCORE
        )

    @pytest.mark.parametrize("event", list(AuditEventType))
    @pytest.mark.parametrize("severity", list(Severity))
    def test_always_in_range(self, event: AuditEventType, severity: Severity) -> None:
        for has_ip in (False, True):
            score = calculate_risk_score(event, severity, has_ip)
            assert 0 <= score <= 100

    @pytest.mark.parametrize("event", list(AuditEventType))
    @pytest.mark.parametrize("severity", list(Severity))
    def test_source_ip_never_lowers_score(self, event: AuditEventType, severity: Severity) -> None:
        assert calculate_risk_score(event, severity, True) >= calculate_risk_score(event, severity, False)

    @pytest.mark.parametrize("event", list(AuditEventType))
    @pytest.mark.parametrize("has_ip", [False, True])
    def test_severity_is_monotonic(self, event: AuditEventType, has_ip: bool) -> None:
        critical = calculate_risk_score(event, Severity.CRITICAL, has_ip)
        high = calculate_risk_score(event, Severity.HIGH, has_ip)
        low = calculate_risk_score(event, Severity.LOW, has_ip)
        assert critical >= high >= low

    def test_deterministic(self) -> None:
        scores = {
            calculate_risk_score(AuditEventType.ACCOUNT_LOCKED, Severity.HIGH, True) for _ in range(10)
        }
        assert scores == {50}


class TestScoreEvent:
    def test_uses_source_ip_presence(self) -> None:
        data = AuditEventData(
            event=AuditEventType.LOGIN_FAILED,
            severity=Severity.MEDIUM,
            source_ip="10.0.0.1",
        )
        assert score_event(data) == 20

    def test_empty_source_ip_counts_as_absent(self) -> None:
        data = AuditEventData(
            event=AuditEventType.LOGIN_FAILED,
            severity=Severity.MEDIUM,
            source_ip="",
        )
        assert score_event(data) == 15
