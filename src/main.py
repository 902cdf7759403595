"""
FastAPI application entry point.

Builds the record engine API with create_app(). Tests build their own
instance and override the store and settings dependencies.

For local development:
    SNOWFLAKE_MOCK_MODE=true uvicorn src.main:app --reload

For production:
    gunicorn src.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.dependencies import get_event_bus
from .api.routes import credits, health, workouts
from .config.settings import get_settings
from .core.events import (
    EVENT_CREDIT_CONSUMED,
    EVENT_CREDIT_EMPTY,
    EVENT_CREDIT_GRANTED,
    EVENT_SUBSCRIPTION_APPROVED,
    EVENT_SUBSCRIPTION_REJECTED,
    EVENT_WORKOUT_LOGGED,
    EventBus,
)
from .core.records.store import StoreUnavailableError

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)

_AUDITED_EVENTS = (
    EVENT_WORKOUT_LOGGED,
    EVENT_CREDIT_CONSUMED,
    EVENT_CREDIT_EMPTY,
    EVENT_CREDIT_GRANTED,
    EVENT_SUBSCRIPTION_APPROVED,
    EVENT_SUBSCRIPTION_REJECTED,
)


def subscribe_audit_log(events: EventBus) -> list:
    """
    Log every committed change notification.

    Returns the unsubscribe callables so shutdown can detach them.
    """
    def make_handler(event_name: str):
        def handler(**payload) -> None:
            logger.info(
                "Record event",
                extra={"event": event_name, **{k: str(v) for k, v in payload.items()}}
            )
        return handler

    return [events.subscribe(name, make_handler(name)) for name in _AUDITED_EVENTS]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Runs on startup and shutdown: validates configuration and attaches
    the audit log to the event bus, then detaches it on shutdown.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "FitData Coach API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {"snowflake": settings.snowflake_mock_mode},
        }
    )

    # Validate configuration
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    unsubscribers = subscribe_audit_log(get_event_bus())

    yield

    # Shutdown
    for unsubscribe in unsubscribers:
        unsubscribe()
    logger.info("FitData Coach API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Training records backend for coaches and athletes.

        ## Features

        - Log workouts (by the athlete, or by a coach as proxy)
        - Personal records (1RM) updated atomically with each workout
        - Session and control-visit credits with guarded consumption

        ## Authentication

        All endpoints require an API key in the `X-API-Key` header.
        Write endpoints also need the caller's identity in `X-User-Id`.

        ## Conflicts

        Concurrent updates to the same athlete are retried automatically.
        A `409` means the update still conflicted after retrying and
        nothing was saved; resubmitting is safe.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        workouts.router,
        prefix="/api/v1/athletes",
        tags=["Workouts"],
    )

    app.include_router(
        credits.router,
        prefix="/api/v1/athletes",
        tags=["Credits"],
    )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - redirect to docs."""
        return {
            "message": "FitData Coach API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request, exc):
        """Store outages (e.g. no Snowflake connection) are transient, not bugs."""
        logger.error(
            "Record store unavailable",
            extra={"path": request.url.path, "error": str(exc)}
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Record store unavailable. Please retry."}
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Anything a route didn't translate becomes a plain 500.

        The traceback is logged here and never sent to the client.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Imported by uvicorn/gunicorn
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
