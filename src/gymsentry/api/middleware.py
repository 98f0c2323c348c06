# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Request middleware for logging, request ID tracking, and rate limiting."""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from gymsentry.api.rbac import hash_api_key, mask_key
from gymsentry.audit.logger import get_audit_logger
from gymsentry.core.config import get_settings

logger = logging.getLogger("gymsentry.api.middleware")

# ---------------------------------------------------------------------------
# Rate-limit state (in-memory, per-process)
# ---------------------------------------------------------------------------
_request_log: dict[str, list[float]] = defaultdict(list)
_CLEANUP_INTERVAL = 60.0  # seconds between full sweeps
_WINDOW_SECONDS = 60.0
_last_cleanup: float = 0.0

_RATE_LIMIT_SKIP_PATHS: set[str] = {"/api/v1/health", "/api/v1/ready"}


def _cleanup_old_entries(now: float, window: float) -> None:
    """Remove timestamps older than *window* seconds for every tracked key."""
    global _last_cleanup
    expired_keys: list[str] = []
    for key, timestamps in _request_log.items():
        _request_log[key] = [t for t in timestamps if now - t < window]
        if not _request_log[key]:
            expired_keys.append(key)
    for key in expired_keys:
        del _request_log[key]
    _last_cleanup = now


def reset_rate_limits() -> None:
    """Forget every tracked request.  Used between tests."""
    global _last_cleanup
    _request_log.clear()
    _last_cleanup = 0.0


def _presented_key(request: Request) -> str | None:
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return api_key
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding-window rate limiter with per-API-key and per-IP support.

    * Requests presenting a key (``X-API-Key`` or bearer token): limited to
      ``rate_limit_per_key`` requests per minute.  Keys are tracked by hash.
    * Other requests: limited to ``rate_limit_per_ip`` requests per minute,
      keyed by client IP.
    * Returns **429 Too Many Requests** with a ``Retry-After`` header and
      records a ``rate_limit_exceeded`` security audit event.
    * Adds ``X-RateLimit-Limit``, ``X-RateLimit-Remaining``, and
      ``X-RateLimit-Reset`` headers on all responses.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in _RATE_LIMIT_SKIP_PATHS:
            return await call_next(request)

        settings = get_settings()
        window = _WINDOW_SECONDS
        client_ip = request.client.host if request.client else ""

        # API key takes precedence over IP
        api_key = _presented_key(request)
        if api_key:
            identity = f"key:{hash_api_key(api_key)}"
            audit_identity = f"key:{mask_key(api_key)}"
            limit = settings.rate_limit_per_key
        else:
            identity = audit_identity = f"ip:{client_ip or 'unknown'}"
            limit = settings.rate_limit_per_ip

        now = time.monotonic()

        if now - _last_cleanup > _CLEANUP_INTERVAL:
            _cleanup_old_entries(now, window)

        timestamps = [t for t in _request_log[identity] if now - t < window]
        _request_log[identity] = timestamps

        if timestamps:
            reset_seconds = int(window - (now - min(timestamps))) + 1
        else:
            reset_seconds = int(window)

        if len(timestamps) >= limit:
            logger.warning(
                "Rate limit exceeded identity=%s path=%s limit=%d",
                audit_identity,
                request.url.path,
                limit,
            )
            await get_audit_logger().log_rate_limit_exceeded(
                audit_identity,
                limit,
                source_ip=client_ip,
                endpoint=request.url.path,
                http_method=request.method,
                user_agent=request.headers.get("user-agent"),
                details={"window_seconds": int(window)},
            )
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded"},
                headers={
                    "Retry-After": str(reset_seconds),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_seconds),
                },
            )

        timestamps.append(now)
        remaining = max(0, limit - len(timestamps))

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_seconds)

        return response


class RequestMiddleware(BaseHTTPMiddleware):
    """Adds request logging and X-Request-ID header to every response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 1)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "%s %s %s %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )

        return response
