# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Health check endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from gymsentry import __version__

logger = logging.getLogger("gymsentry.api.health")

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str


class ReadyResponse(BaseModel):
    status: str
    database: str
    schema_version: int | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", service="gymsentry", version=__version__)


@router.get("/ready", response_model=ReadyResponse)
async def ready() -> ReadyResponse:
    """Report whether the audit and key stores are reachable."""
    from gymsentry.storage.database import get_db
    from gymsentry.storage.migrations import get_current_version

    try:
        db = await get_db()
        version = await get_current_version(db)
        return ReadyResponse(status="ready", database="connected", schema_version=version)
    except Exception as exc:
        logger.warning("Readiness check failed: %s", exc)
        return ReadyResponse(status="not_ready", database=str(exc))
