"""Lumen identity server - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from lumen.config import settings
from lumen.database import Database, get_default_database
from lumen.errors import IdentityError, StorageUnavailable, is_storage_exhausted
from lumen.services.device_hash import warn_if_insecure_salt

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _error_response(error: IdentityError) -> JSONResponse:
    headers = {}
    if isinstance(error, StorageUnavailable):
        headers["Retry-After"] = str(error.retry_after_seconds)
    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.kind.value, "message": error.message},
        headers=headers,
    )


async def identity_error_handler(request: Request, exc: IdentityError):
    return _error_response(exc)


async def operational_error_handler(request: Request, exc: OperationalError):
    if is_storage_exhausted(exc):
        logger.warning("Store exhausted on %s %s: %s", request.method, request.url.path, exc.orig)
        return _error_response(StorageUnavailable(str(exc.orig)))
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Something went wrong. Try again later."},
    )


def create_app(database: Optional[Database] = None) -> FastAPI:
    database = database or get_default_database()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize logging and the database on startup."""
        configure_logging()
        warn_if_insecure_salt()
        database.init()
        logger.info("%s started (database %s)", settings.app_name, database.url)

        yield

        database.dispose()

    app = FastAPI(
        title="Lumen",
        description="Anonymous device identity and cross-device journeys",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.database = database

    # CORS - the web client calls from its own origin and needs the cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(IdentityError, identity_error_handler)
    app.add_exception_handler(OperationalError, operational_error_handler)

    # --- Register API routers ---
    from lumen.api.device import router as device_router
    from lumen.api.journey import router as journey_router
    from lumen.api.migration import router as migration_router
    from lumen.api.stats import router as stats_router

    app.include_router(journey_router, prefix=API_PREFIX)
    app.include_router(migration_router, prefix=API_PREFIX)
    app.include_router(stats_router, prefix=API_PREFIX)
    app.include_router(device_router, prefix=API_PREFIX)

    @app.get(f"{API_PREFIX}/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("lumen.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
