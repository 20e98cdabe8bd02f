"""Waitlist Backend - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from waitlist.api import api_router
from waitlist.api.deps import Mailer
from waitlist.api.health import router as health_router
from waitlist.core import get_settings, setup_logging
from waitlist.core.config import Settings
from waitlist.core.errors import WaitlistError
from waitlist.core.logging import get_logger
from waitlist.middleware import OriginCorsMiddleware, SecurityHeadersMiddleware
from waitlist.services.mailer import SmtpMailer
from waitlist.services.rate_limiter import RateLimiter, rate_limit_cleanup_loop
from waitlist.services.subscriber_store import SubscriberStore, create_subscriber_store

logger = get_logger("main")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings

    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
        service=settings.app_name.lower(),
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    # Check security configuration
    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    store: SubscriberStore = app.state.store
    await store.initialize()
    logger.info("Subscriber store ready", extra={"store": store.backend})

    cleanup_task = asyncio.create_task(
        rate_limit_cleanup_loop(
            app.state.rate_limiter, settings.rate_limit_sweep_interval_seconds
        ),
        name="rate-limit-cleanup",
    )
    cleanup_task.add_done_callback(task_done_callback)

    yield

    # Shutdown
    logger.info("Shutting down...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    await store.close()


async def waitlist_error_handler(request: Request, exc: WaitlistError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or mistyped bodies are plain 400s."""
    errors = exc.errors()
    message = "Invalid request body"
    if errors:
        first = errors[0]
        # Field names only; integer parts are list indexes or parser offsets
        location = ".".join(
            str(p) for p in first.get("loc", ()) if p != "body" and not isinstance(p, int)
        )
        detail = " ".join(part for part in (location, first.get("msg", "")) if part)
        message = f"Invalid request: {detail}" if detail else message
    return JSONResponse(status_code=400, content={"status": "error", "message": message})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (404, 405) in the same body shape as everything else."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def create_app(
    settings: Settings | None = None,
    *,
    store: SubscriberStore | None = None,
    mailer: Mailer | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to the ones described by ``settings``; tests pass
    their own.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Waitlist signup and admin broadcast API",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    # Application-scoped collaborators, read back by api.deps
    app.state.settings = settings
    app.state.store = store or create_subscriber_store(settings)
    app.state.mailer = mailer or SmtpMailer.from_settings(settings)
    app.state.rate_limiter = rate_limiter or RateLimiter.from_settings(settings)

    app.add_exception_handler(WaitlistError, waitlist_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # Security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # Origin/CORS middleware - MUST be outermost (added last in Starlette LIFO order)
    # so that CORS headers are present on error responses too.
    app.add_middleware(OriginCorsMiddleware)

    # Prometheus metrics (before routers so /metrics endpoint is registered first)
    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    # Include routers
    app.include_router(health_router)  # Health at root level
    app.include_router(api_router)  # API at /api

    return app


# Application instance
app = create_app()
