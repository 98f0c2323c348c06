# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Shared test fixtures and configuration."""

import pytest


@pytest.fixture(autouse=True)
def _clear_rate_limit_state():
    """Reset the in-memory rate-limit state between tests."""
    from gymsentry.api.middleware import reset_rate_limits

    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture(autouse=True)
def _reset_audit_logger():
    """Drop the module-level audit logger so each test builds its own."""
    from gymsentry.audit.logger import set_audit_logger

    set_audit_logger(None)
    yield
    set_audit_logger(None)



@pytest.fixture(autouse=True)
def _reset_shared_db():
    """Forget any connection a previous test left in the storage module."""
    import gymsentry.storage.database as db_mod

    db_mod._db = None
    yield
