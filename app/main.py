"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from app.api.admin_routes import router as admin_router
from app.api.auth_routes import router as auth_router
from app.api.payment_routes import router as payment_router
from app.api.routes import router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.observability import get_logger, metrics, setup_logging, setup_tracing
from app.observability.tracing import instrument_fastapi

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        media_store_configured=settings.media_store_config().is_configured,
    )
    missing_payment_settings = settings.digistore_config().missing_settings
    if missing_payment_settings:
        logger.warning("payment_processor_not_configured", missing=missing_payment_settings)

    if settings.auto_migrate:
        await run_migrations(settings.database_url)

    yield

    logger.info("application_shutting_down")
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors and return them with JSON-safe context."""
    sanitized_errors = []
    for error in exc.errors():
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
    return JSONResponse(status_code=422, content={"detail": sanitized_errors})


setup_tracing()
instrument_fastapi(app)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()
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
            request_id=request_id,
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
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


app.include_router(router)
app.include_router(auth_router)
app.include_router(payment_router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text exposition format."""
    if not settings.metrics_enabled:
        return PlainTextResponse("", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
