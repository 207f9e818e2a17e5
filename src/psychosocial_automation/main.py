"""Psychosocial automation service entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from psychosocial_automation import __version__
from psychosocial_automation.adapters.wiring import build_scheduler
from psychosocial_automation.api.router import router
from psychosocial_automation.core.errors import (
    ConflictError,
    NotFoundError,
    PsychosocialError,
    TransientStoreError,
    ValidationFailureError,
)
from psychosocial_automation.database import close_database, init_database
from psychosocial_automation.observability import configure_logging, get_logger
from psychosocial_automation.settings import Settings

logger = get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[PsychosocialError], int], ...] = (
    (NotFoundError, 404),
    (ValidationFailureError, 422),
    (ConflictError, 409),
    (TransientStoreError, 503),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    settings: Settings = app.state.settings
    configure_logging(settings.log_level, json=settings.log_json)
    session_factory = init_database(settings.database_url, echo=settings.database_echo)
    app.state.scheduler = build_scheduler(settings, session_factory)
    if settings.scheduler_enabled:
        await app.state.scheduler.start()
    logger.info("Service started", service=settings.service_name, version=__version__)
    yield
    await app.state.scheduler.stop()
    await close_database()
    logger.info("Service stopped", service=settings.service_name)


async def psychosocial_error_handler(request: Request, exc: PsychosocialError) -> JSONResponse:
    """Map typed service errors to HTTP status codes."""
    status_code = 400
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error_code": exc.error_code.value, "message": exc.message},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings; read from the environment when omitted.

    Returns:
        Configured FastAPI app. The scheduler and database are initialised
        by the lifespan handler.
    """
    app = FastAPI(
        title="Psychosocial Risk Automation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()
    app.add_exception_handler(PsychosocialError, psychosocial_error_handler)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": app.state.settings.service_name}

    return app


app: FastAPI = create_app()
