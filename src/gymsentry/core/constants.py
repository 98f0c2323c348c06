# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Enumerations shared across the audit and access-control layers."""

from enum import StrEnum


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class UserRole(StrEnum):
    CLIENT = "client"
    TRAINER = "trainer"
    ADMIN = "admin"


# Roles allowed to issue API keys.
ELEVATED_ROLES: frozenset[UserRole] = frozenset({UserRole.TRAINER, UserRole.ADMIN})

# Severities that are escalated to the operational log as they are recorded.
ESCALATED_SEVERITIES: frozenset[Severity] = frozenset({Severity.HIGH, Severity.CRITICAL})
