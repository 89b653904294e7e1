"""FastAPI application entry point and lifecycle management."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from calendar_sync import __version__
from calendar_sync.config import load_settings
from calendar_sync.context import ServiceContext, build_context
from calendar_sync.logging_config import configure_logging, get_logger
from calendar_sync.middleware import ContextMiddleware, RequestLoggingMiddleware
from calendar_sync.models.api import HealthResponse, MappingHealth
from calendar_sync.models.settings import Settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Reconciles channels before serving and stops background work after.
    """
    context: ServiceContext = app.state.context
    logger.info("app_starting", version=__version__)

    await run_in_threadpool(context.startup)
    try:
        yield
    finally:
        await run_in_threadpool(context.shutdown)
        logger.info("app_stopped")


def create_app(settings: Optional[Settings] = None, context: Optional[ServiceContext] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Validated settings (loaded from file and env when omitted)
        context: Prebuilt service context (built from settings when omitted)

    Returns:
        Configured FastAPI application instance
    """
    if context is not None:
        settings = context.settings
    elif settings is None:
        settings = load_settings()

    configure_logging(log_level=settings.log_level, json_format=settings.json_logs)

    if context is None:
        context = build_context(settings)

    app = FastAPI(
        title="Calendar Sync",
        description="Adds mapped secondary attendees to Google Calendar events via push notifications",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ContextMiddleware)

    from calendar_sync.api.admin import router as admin_router
    from calendar_sync.api.webhook import router as webhook_router

    app.include_router(webhook_router)
    app.include_router(admin_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        logger.debug("root_endpoint_called")
        return {
            "service": "calendar-sync",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Mapping, channel and dedup overview."""
        metadata = context.mapping_store.metadata()
        return HealthResponse(
            status="healthy" if context.started else "starting",
            mapping=MappingHealth(
                mapping_count=metadata["mappingCount"],
                last_loaded_at=metadata["lastLoadedAt"],
                load_errors=metadata["loadErrors"],
            ),
            channels=context.registry.size(),
            dedup_entries=context.dedup_guard.size(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        content: dict[str, Any] = {
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        }
        return JSONResponse(status_code=500, content=content)

    logger.info("app_created", endpoints=len(app.routes))
    return app
