# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gymsentry import __version__
from gymsentry.api.keys import router as keys_router
from gymsentry.api.middleware import RateLimitMiddleware, RequestMiddleware
from gymsentry.api.routes import health, security


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    from gymsentry.core.config import get_settings
    from gymsentry.core.logging import setup_logging
    from gymsentry.storage.database import close_db, init_db

    settings = get_settings()
    if getattr(app.state, "configure_logging", True):
        setup_logging(settings.log_level, settings.log_format)
    await init_db(settings.db_path, auto_migrate=settings.auto_migrate)

    yield

    await close_db()


def create_app(*, configure_logging: bool = True) -> FastAPI:
    from gymsentry.core.config import get_settings

    settings = get_settings()
    app = FastAPI(
        title="gymsentry",
        description="Security audit, risk scoring and API key access control",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.configure_logging = configure_logging

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(keys_router, prefix="/api/v1", tags=["keys"])
    app.include_router(security.router, prefix="/api/v1", tags=["security"])
    app.add_middleware(RequestMiddleware)
    app.add_middleware(RateLimitMiddleware)

    return app


def _create_app_from_env() -> FastAPI:
    """Factory wrapper used by ``uvicorn --factory``."""
    return create_app()
