"""
Request middleware for the STORMWATCH API.

Provides:
- Request ID tracking (X-Request-ID), available to log calls via get_request_id()
- Structured JSON request logging with timing
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Context variable for request ID
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class StructuredLogger:
    """Emits one JSON object per log line, tagged with the current request ID."""

    def __init__(self, name: str, service: str = "stormwatch-api"):
        self.logger = logging.getLogger(name)
        self.service = service

    def _log(self, level: int, message: str, **kwargs):
        if not self.logger.isEnabledFor(level):
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(level),
            "message": message,
            "service": self.service,
            "request_id": get_request_id(),
            **kwargs,
        }
        entry = {k: v for k, v in entry.items() if v is not None}
        self.logger.log(level, json.dumps(entry, default=str))

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)


structured_logger = StructuredLogger("stormwatch.requests")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns each request an ID: the incoming X-Request-ID header if present,
    else a new UUID4. Echoed back on the response.
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response
        finally:
            request_id_ctx.reset(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration for every request."""

    # Liveness probes are too frequent to log
    EXCLUDED_PATHS = {"/api/health/live"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        try:
            response = await call_next(request)
        except Exception as e:
            structured_logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                client_ip=client_ip,
            )
            raise

        structured_logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            query=str(request.query_params) if request.query_params else None,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            client_ip=client_ip,
        )
        return response


def setup_middleware(app: FastAPI):
    """
    Install request middleware.

    Middleware executes in reverse order of addition: the request ID is set
    before the logging middleware runs.
    """
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
