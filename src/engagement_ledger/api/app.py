"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from engagement_ledger import __version__
from engagement_ledger.api.dependencies import PermissionChecker, allow_all
from engagement_ledger.api.routes import (
    health_router,
    invoices_router,
    payroll_router,
    proposals_router,
    rate_cards_router,
    time_entries_router,
)
from engagement_ledger.config import get_settings
from engagement_ledger.database import create_schema, dispose_db, init_db
from engagement_ledger.errors import (
    AlreadyProvisionedError,
    EngagementLedgerError,
    ImmutableRecordError,
    InvalidTransitionError,
    NoActiveRateCardError,
    NoPayRateFoundError,
    NotFoundError,
    NumberingConflictError,
    RateSourceUnreachableError,
    RateUnavailableError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[EngagementLedgerError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationFailedError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NoActiveRateCardError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NoPayRateFoundError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    AlreadyProvisionedError: status.HTTP_409_CONFLICT,
    NumberingConflictError: status.HTTP_409_CONFLICT,
    ImmutableRecordError: status.HTTP_409_CONFLICT,
    RateUnavailableError: status.HTTP_502_BAD_GATEWAY,
    RateSourceUnreachableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: EngagementLedgerError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    engine, _ = init_db()
    if get_settings().create_schema:
        await create_schema(engine)
    yield
    await dispose_db()


def create_app(permission_checker: PermissionChecker = allow_all) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Engagement Ledger API",
        description="Proposals, projects, invoicing and contractor payroll",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.permission_checker = permission_checker

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(EngagementLedgerError)
    async def domain_exception_handler(
        request: Request, exc: EngagementLedgerError
    ) -> JSONResponse:
        """Render domain failures as {detail, code}."""
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "code": exc.code},
            headers=headers,
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
    app.include_router(rate_cards_router, prefix="/api/v1")
    app.include_router(proposals_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")
    app.include_router(time_entries_router, prefix="/api/v1")
    app.include_router(payroll_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
