"""
API middleware stack.

- Request context: X-Request-ID in and out, bound into every log line
- Access logging (health and metrics endpoints excluded)
- Exception handlers: 404 with the route's detail, 503 before the feed
  session is wired, 500 for anything else
- CORS for the UI origins
"""
from __future__ import annotations

import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.dependencies import ServiceNotReadyError
from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

UNLOGGED_PATHS = frozenset({"/health", "/metrics"})
REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Accepts or mints a request id and binds it for the request's log lines."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        request.state.request_id = request_id

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One structured line per API call."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in UNLOGGED_PATHS:
            return await call_next(request)

        start = time.monotonic()
        fields = {
            "method": request.method,
            "path": path,
            "query": str(request.url.query) or None,
            "client": request.client.host if request.client else "unknown",
        }
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "http_request_error",
                duration_ms=round((time.monotonic() - start) * 1000, 2),
                error=str(exc),
                exc_info=True,
                **fields,
            )
            raise

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "http_request",
            status=response.status_code,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
            **fields,
        )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the JSON error envelopes."""

    @app.exception_handler(ServiceNotReadyError)
    async def not_ready_handler(request: Request, exc: ServiceNotReadyError) -> JSONResponse:
        logger.warning("api_not_ready", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={
                "error": "feed_unavailable",
                "message": "The live feed session is not running",
                "request_id": _request_id(request),
            },
        )

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        detail = exc.detail if isinstance(exc, StarletteHTTPException) else None
        return JSONResponse(
            status_code=404,
            content={
                "error": "not_found",
                # Starlette's default detail for unmatched routes is just "Not Found"
                "message": detail if detail and detail != "Not Found" else "Resource not found",
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = _request_id(request)
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            request_id=request_id,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            },
        )


def setup_cors(app: FastAPI) -> None:
    """The UI only reads lists and toggles pause/resume."""
    settings = get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )


def setup_middleware(app: FastAPI) -> None:
    """Install middleware and handlers. Last added runs outermost."""
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestContextMiddleware)
    setup_cors(app)
    setup_exception_handlers(app)
