"""Application middleware."""

import time
import uuid
from typing import Callable, Dict

import structlog
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()

# Query and path parameters worth carrying on every log line of a request
CONTEXT_PARAMS = ("start_date", "end_date", "summary_date", "year_month", "year", "limit")


def request_context(request: Request) -> Dict[str, str]:
    """Settlement dates, periods and limits named by a request."""
    context = {k: request.query_params[k] for k in CONTEXT_PARAMS if k in request.query_params}
    path_params = request.scope.get("path_params") or {}
    context.update({k: str(path_params[k]) for k in CONTEXT_PARAMS if k in path_params})
    return context


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its id and the settlement dates it asks about."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        log = logger.bind(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            **request_context(request),
        )
        log.info("Request started", client_ip=request.client.host if request.client else None)

        try:
            response = await call_next(request)
        except Exception as e:
            log.error(
                "Request failed",
                error=str(e),
                process_time=round(time.perf_counter() - started, 4),
            )
            raise

        process_time = round(time.perf_counter() - started, 4)
        # Path parameters are only resolved once routing has run
        log.info(
            "Request completed",
            status_code=response.status_code,
            process_time=process_time,
            **request_context(request),
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware for adding security headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Reports are read-only JSON, never framed
        if request.url.path in ["/docs", "/redoc"]:
            response.headers["X-Frame-Options"] = "SAMEORIGIN"
        else:
            response.headers["X-Frame-Options"] = "DENY"

        return response


def add_middleware(app: FastAPI) -> None:
    """Add all middleware to the FastAPI app."""
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
