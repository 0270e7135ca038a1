"""
FastAPI application factory for the ChronoDB admin API.

This module creates the admin app with:
- Catalog database lifecycle management
- Discovery, read, create and dangerous delete routes
- Mapping of catalog errors to HTTP status codes
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .._version import __version__
from ..database import ChronicleDatabase, DatabaseClosedError
from ..errors import (
    CatalogError,
    ConcurrencyAmbiguousError,
    DuplicateNameError,
    EncodingViolationError,
    IntegrityViolationError,
    InvalidValueError,
    NotFoundError,
    PermissionDeniedError,
)
from .config import Settings
from .routes import router

ERROR_STATUS: dict[type[CatalogError], int] = {
    NotFoundError: 404,
    PermissionDeniedError: 403,
    IntegrityViolationError: 409,
    DuplicateNameError: 409,
    InvalidValueError: 422,
    EncodingViolationError: 500,
    ConcurrencyAmbiguousError: 503,
    DatabaseClosedError: 503,
}


def status_for(error: CatalogError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage catalog database lifecycle."""
    settings: Settings = app.state.settings
    database = ChronicleDatabase(settings.to_catalog_config())

    await database.open()
    app.state.database = database

    yield

    await database.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="ChronoDB Catalog Admin",
        description=(
            "Administrative interface for the chronicle catalog. "
            "Deletes run the integrity protocol and may take several seconds."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()

    @app.exception_handler(CatalogError)
    async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
        return JSONResponse(
            status_code=status_for(exc),
            content={
                "code": exc.code,
                "message": exc.message,
                "details": jsonable_encoder(exc.details),
            },
        )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "chronodb-catalog", "version": __version__}

    return app
