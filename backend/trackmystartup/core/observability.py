from __future__ import annotations

import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.responses import Response

from trackmystartup.lifecycle.errors import (
    ConflictError,
    GatewayError,
    InvalidTransitionError,
    LifecycleError,
    PermissionDeniedError,
    RecordNotFoundError,
)
from trackmystartup.lifecycle.notifications import failure_notification

_APP_START_MONOTONIC = time.monotonic()

_SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "2000"))


def uptime_seconds() -> float:
    return max(0.0, time.monotonic() - _APP_START_MONOTONIC)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _app_logger(request: Request) -> logging.Logger:
    return getattr(request.app.state, "logger", None) or logging.getLogger("trackmystartup")


def status_code_for(exc: LifecycleError) -> int:
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, PermissionDeniedError):
        return 403
    if isinstance(exc, (InvalidTransitionError, ConflictError)):
        return 409
    if isinstance(exc, GatewayError):
        return 502
    return 400


async def lifecycle_exception_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    """Map lifecycle failures to a JSON body with one user-facing notification.

    Endpoints are named after the action they run, so the route name is the
    fallback when the error itself does not carry one.
    """

    route = request.scope.get("route")
    action = getattr(exc, "action", None) or getattr(route, "name", None) or "action"
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    notification = failure_notification(action, exc)
    status_code = status_code_for(exc)

    content: dict = {
        "detail": exc.message,
        "code": exc.code,
        "request_id": request_id,
        "notification": {"level": notification.level, "title": notification.title, "message": notification.message},
    }
    if isinstance(exc, ConflictError) and exc.current is not None:
        content["current"] = jsonable_encoder(exc.current)

    _app_logger(request).warning(
        "lifecycle_action_failed",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "action": action,
            "code": exc.code,
            "status_code": status_code,
        },
    )
    return JSONResponse(status_code=status_code, content=content, headers={"X-Request-ID": request_id})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler that returns a structured error response.

    Logs the traceback and returns a clean JSON body without internal details.
    """
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

    extra = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "exception_type": type(exc).__name__,
    }
    _app_logger(request).exception("unhandled_exception", extra=extra)

    headers = {"X-Request-ID": request_id}

    # Attach CORS headers when the request Origin is allowed, so browsers do not
    # turn real 500s into opaque CORS errors.
    origin = request.headers.get("origin")
    if origin:
        from trackmystartup.config import settings

        allowed = set(settings.cors_origins or [])
        if origin in allowed or "*" in allowed:
            headers.update(
                {
                    "Access-Control-Allow-Origin": origin,
                    "Access-Control-Allow-Credentials": "true",
                    "Vary": "Origin",
                }
            )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error. Please try again later.",
            "request_id": request_id,
            "code": "INTERNAL_SERVER_ERROR",
        },
        headers=headers,
    )


async def request_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Request-level logging middleware.

    Adds/propagates X-Request-ID and measures request duration.
    Does not log request/response bodies.
    """

    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    logger = _app_logger(request)
    start = time.perf_counter()

    try:
        response: Response = await call_next(request)
    except Exception:
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.exception(
            "http_request_failed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "duration_ms": round(duration_ms, 2),
            },
        )
        raise

    duration_ms = (time.perf_counter() - start) * 1000.0
    extra = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if duration_ms >= _SLOW_REQUEST_MS:
        logger.info("slow_request", extra=extra)
    # Avoid noisy logging for liveness endpoints.
    elif not request.url.path.endswith("/health"):
        logger.info("http_request", extra=extra)

    response.headers.setdefault("X-Request-ID", request_id)
    return response
