# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Custom exception hierarchy for gymsentry."""


class GymSentryError(Exception):
    """Base exception for all gymsentry errors."""


class ConfigurationError(GymSentryError):
    """Invalid or missing configuration."""


class StorageError(GymSentryError):
    """Database or storage operation failed."""


class AuthorizationError(GymSentryError):
    """The acting identity lacks the role required for an operation."""
