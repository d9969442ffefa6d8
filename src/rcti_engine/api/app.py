"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rcti_engine.api.routes import deductions_router, health_router, rctis_router
from rcti_engine.config import configure_logging, settings
from rcti_engine.database import create_schema, init_db
from rcti_engine.errors import (
    InvalidStateError,
    NotFoundError,
    NoValidJobsError,
    PersistenceError,
    RctiError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in MRO order, so subclasses listed here win over their bases
ERROR_STATUS_CODES: dict[type[RctiError], int] = {
    NoValidJobsError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    InvalidStateError: status.HTTP_400_BAD_REQUEST,
    PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(exc: RctiError) -> int:
    """Map an engine error to its HTTP status code."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    init_db()
    await create_schema()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.log_level)

    app = FastAPI(
        title="RCTI Engine API",
        description="Recipient-created tax invoices and driver deduction ledger",
        version=settings.engine_version,
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
    @app.exception_handler(RctiError)
    async def rcti_error_handler(request: Request, exc: RctiError) -> JSONResponse:
        """Render engine errors as {detail, code}."""
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error("Request failed: %s", exc.message, extra={"path": request.url.path})
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error", extra={"path": request.url.path})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(rctis_router, prefix="/api/v1")
    app.include_router(deductions_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
