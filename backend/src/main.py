"""
FastAPI application entry point for the Vocalis backend.

Wires together:
- The realtime hub used for live notification events
- The notification delivery loop (background queue worker)
- Notification history and queue administration routers
- Error handlers translating service and database failures to JSON

Environment Variables:
    VOCALIS_DB_URL: Database URL (PostgreSQL, or SQLite for development)
    VOCALIS_ENV: Environment (production/development, default: development)
    VOCALIS_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    NOTIF_WORKER_ENABLED: Run the notification delivery loop (default: true)
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.database import SessionLocal, dispose_engine
from backend.src.services.channels import build_channel_senders
from backend.src.services.delivery_polling_loop import DeliveryPollingLoop
from backend.src.services.exceptions import ServiceError
from backend.src.services.exceptions import ValidationError as ServiceValidationError
from backend.src.services.notification_delivery_service import NotificationDeliveryService
from backend.src.utils.logging_config import get_logger, init_logging
from backend.src.utils.websocket import ConnectionManager, RealtimeHub


APP_VERSION = "1.0.0"


def build_delivery_loop(settings: AppSettings, hub: RealtimeHub) -> DeliveryPollingLoop:
    """Assemble the queue worker and its polling loop from settings."""
    worker = NotificationDeliveryService(
        SessionLocal,
        build_channel_senders(settings),
        hub=hub,
        max_attempts=settings.notif_max_attempts,
    )
    return DeliveryPollingLoop(
        worker,
        poll_interval=settings.notif_worker_interval_sec,
        batch_size=settings.notif_worker_batch_size,
        stale_processing_sec=settings.notif_stale_processing_sec,
        retention_days=settings.notif_queue_retention_days,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Own the realtime hub and the delivery loop for the app's lifetime.

    The hub lives on app.state so routers and the worker share one
    instance. The loop is only started when NOTIF_WORKER_ENABLED is set.
    """
    logger = get_logger("api")
    settings = get_settings()
    logger.info("Starting Vocalis backend", extra={"version": APP_VERSION})

    hub = ConnectionManager()
    app.state.realtime_hub = hub
    app.state.delivery_loop = None

    if settings.notif_worker_enabled:
        app.state.delivery_loop = build_delivery_loop(settings, hub)
        app.state.delivery_loop.start()
    else:
        logger.info("Notification delivery loop disabled (NOTIF_WORKER_ENABLED=false)")

    if not settings.smtp_configured:
        logger.warning("SMTP_HOST not set: email notifications will fail until configured")

    yield

    logger.info("Stopping Vocalis backend")
    if app.state.delivery_loop is not None:
        await app.state.delivery_loop.stop()
    await hub.close_all()
    dispose_engine()


init_logging()

app = FastAPI(
    title="Vocalis API",
    description="Notification history, live notification events and "
                "durable multi-channel notification delivery for Vocalis.",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers


def _error_body(error: str, message: str, **extra: Any) -> Dict[str, Any]:
    body = {"error": error, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def _request_extra(request: Request, error: Optional[str] = None) -> Dict[str, Any]:
    extra = {"path": request.url.path, "method": request.method}
    if error is not None:
        extra["error"] = error
    return extra


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Pydantic validation errors raised outside request parsing."""
    get_logger("api").warning("Validation error", extra=_request_extra(request))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            "Validation Error",
            "Request validation failed",
            details=exc.errors(include_url=False),
        ),
    )


@app.exception_handler(ServiceValidationError)
async def service_validation_exception_handler(
    request: Request, exc: ServiceValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Bad Request", exc.message, field=exc.field),
    )


@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Service errors a router did not translate itself."""
    get_logger("services").error(
        "Unhandled service error", extra=_request_extra(request, exc.message)
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Service Error", exc.message),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    get_logger("db").error("Database error", extra=_request_extra(request, str(exc)))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "Database Error",
            "An error occurred while accessing the database. Please try again later.",
        ),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger("api").error(
        "Unhandled exception",
        extra=_request_extra(request, f"{type(exc).__name__}: {exc}"),
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "Internal Server Error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


@app.get("/health", tags=["Health"])
async def health_check(request: Request) -> Dict[str, Any]:
    """Liveness probe; also reports whether the delivery loop is running."""
    delivery_loop = getattr(request.app.state, "delivery_loop", None)
    return {
        "status": "healthy",
        "service": "vocalis-backend",
        "version": APP_VERSION,
        "delivery_worker": bool(delivery_loop and delivery_loop.is_running),
        "live_connections": request.app.state.realtime_hub.get_connection_count(),
    }


# API routers
from backend.src.api import notifications
from backend.src.api.admin import notification_queue_router

app.include_router(notifications.router, prefix="/api")
app.include_router(notification_queue_router, prefix="/api/admin")
