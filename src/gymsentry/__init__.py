# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""gymsentry - Security audit, risk scoring and API-key access control for gym-coaching backends."""

__version__ = "0.1.0"

__all__ = ["__version__"]
