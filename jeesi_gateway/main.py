"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from jeesi_gateway.api.key_routes import router as key_router
from jeesi_gateway.api.routes import CORS_HEADERS, router
from jeesi_gateway.config import settings
from jeesi_gateway.db.session import close_engines
from jeesi_gateway.observability import (
    get_logger,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from jeesi_gateway.observability.tracing import instrument_fastapi
from jeesi_gateway.services.agent_functions import close_function_runner
from jeesi_gateway.services.identity import close_auth_client
from jeesi_gateway.services.side_channel import side_channel
from jeesi_gateway.services.upstream import close_gateway_client

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Starts the side channel on startup; on shutdown drains it before closing
    outbound clients and database engines, since pending jobs use them.
    """
    # Startup
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )
    await side_channel.start()

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await side_channel.stop()
    await close_function_runner()
    await close_gateway_client()
    await close_auth_client()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


def _error_json(
    status_code: int, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message},
        headers={**(headers or {}), **CORS_HEADERS},
    )


def _describe_validation_error(error: dict[str, Any]) -> str:
    """Turn the first pydantic error into a single client-facing sentence."""
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body",)]
    field = ".".join(loc) or "body"
    error_type = error.get("type")

    if error_type == "missing":
        return f"Missing required field: {field}"
    if error_type == "value_error" and "ctx" in error and "error" in error["ctx"]:
        return str(error["ctx"]["error"])
    if error_type in ("json_invalid", "model_attributes_type", "dict_type"):
        return "Request body must be a JSON object"
    return f"Invalid field {field}: {error.get('msg')}"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Reject malformed bodies with 400 {error} before any business logic runs."""
    errors = exc.errors()

    # Sanitize errors for logging (ctx may contain non-serializable objects)
    sanitized_errors = []
    for error in errors:
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )

    message = _describe_validation_error(errors[0]) if errors else "Invalid request"
    return _error_json(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render every HTTP error as {"error": message} with CORS headers."""
    return _error_json(exc.status_code, str(exc.detail), dict(exc.headers or {}))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render unexpected failures as a generic 500 {"error"} body."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    metrics.record_error(type(exc).__name__, "unhandled")
    return _error_json(500, "Internal server error")


# Setup tracing
setup_tracing()
instrument_fastapi(app)


# Proxy headers middleware - trust X-Forwarded-* headers from the edge proxy
class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to handle X-Forwarded-Proto from reverse proxy."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            request.scope["scheme"] = forwarded_proto

        return await call_next(request)


app.add_middleware(ProxyHeadersMiddleware)

# CORS middleware - browser widget and dashboard call from arbitrary origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-api-key"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing (until response headers for streams)."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    endpoint = request.url.path
    method = request.method
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            metrics.record_http_request(endpoint, method, response.status_code, duration)

            logger.info(
                "request_completed",
                method=method,
                path=endpoint,
                status_code=response.status_code,
                duration_seconds=duration,
            )

            return response
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")

            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


# Register routes
app.include_router(router)  # Chat proxy endpoints
app.include_router(key_router)  # Dashboard key and balance endpoints


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return _error_json(404, "Metrics disabled")
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jeesi_gateway.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
