"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from worktime_engine import __version__
from worktime_engine.api.routes import (
    clock_router,
    compliance_router,
    health_router,
    policies_router,
    surcharges_router,
)
from worktime_engine.config import get_settings
from worktime_engine.database import create_schema, dispose_db, init_db
from worktime_engine.exceptions import (
    FatalError,
    IntegrityViolation,
    InvalidCorrection,
    InvalidPolicyDefinition,
    NotFoundError,
    StructuralError,
    WorktimeError,
)
from worktime_engine.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db()
    await create_schema()
    yield
    # Shutdown
    await dispose_db()


def _status_for(exc: WorktimeError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (InvalidPolicyDefinition, InvalidCorrection)):
        return status.HTTP_422_UNPROCESSABLE_CONTENT
    if isinstance(exc, IntegrityViolation):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, (StructuralError, FatalError)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(get_settings().log_level)

    app = FastAPI(
        title="Worktime Engine API",
        description="Tamper-evident time tracking, working-time compliance and surcharges",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(WorktimeError)
    async def worktime_exception_handler(
        request: Request, exc: WorktimeError
    ) -> JSONResponse:
        """Map engine errors to status codes, keeping their stable code."""
        status_code = _status_for(exc)
        if isinstance(exc, FatalError):
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(clock_router, prefix="/api/v1")
    app.include_router(compliance_router, prefix="/api/v1")
    app.include_router(policies_router, prefix="/api/v1")
    app.include_router(surcharges_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
