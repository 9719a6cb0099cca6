"""
Guestbook Backend: FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers, routes and the
       static mount; lifespan() prepares the database and releases the
       CouchDB client on shutdown.
Who:   Started by uvicorn (`uvicorn guestbook.main:app`) or `python -m guestbook.main`.

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (problems are logged, the server still starts)
    3. Create the guestbook database if it is missing (retried)

    Shutdown:
    1. Close the CouchDB client (connection pool)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from guestbook import __version__
from guestbook.config import settings
from guestbook.couchdb import (
    ConfigurationError,
    CouchDBError,
    ResponseError,
    TransportIOError,
)
from guestbook.database import close_client, ensure_database
from guestbook.exceptions import (
    DatabaseError,
    DatabaseUnavailableError,
    GuestbookError,
    ValidationError,
)
from guestbook.middleware.logging import RequestLoggingMiddleware
from guestbook.middleware.request_id import RequestIDMiddleware, request_id_var
from guestbook.routes import frontend, health, visitors

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Configure the root logger once, before anything else logs."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Guestbook Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    if settings.database_configured:
        try:
            await run_in_threadpool(ensure_database)
        except CouchDBError as e:
            # Requests will fail with 503 until the database comes back.
            logger.error("Could not prepare database %s: %s", settings.database_name, e.message)

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Guestbook Backend shutting down...")
    close_client()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details=None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP status codes.

    Handler hierarchy:
        ValidationError          → 400
        DatabaseUnavailableError → 503
        DatabaseError            → 500, generic message
        GuestbookError (base)    → 500
        ConfigurationError       → 400 (bad option reached the client)
        TransportIOError         → 503
        ResponseError            → 502 (CouchDB answered with an error)
        CouchDBError (base)      → 502
        Exception (fallback)     → 500

    Response bodies never contain CouchDB URLs or stack traces.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(DatabaseUnavailableError)
    async def handle_database_unavailable(request: Request, exc: DatabaseUnavailableError):
        logger.error(
            "[%s] Database unavailable: %s | Context: %s",
            request_id_var.get(""), exc.message, exc.context,
        )
        return JSONResponse(
            status_code=503,
            content=_error_body("service_unavailable", exc.message),
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""), exc.message, exc.context,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(GuestbookError)
    async def handle_guestbook_error(request: Request, exc: GuestbookError):
        logger.error("[%s] %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return JSONResponse(status_code=500, content=_error_body("server_error", exc.message))

    @app.exception_handler(CouchDBError)
    async def handle_couchdb_error(request: Request, exc: CouchDBError):
        rid = request_id_var.get("")
        logger.error("[%s] CouchDB client error: %s | Context: %s", rid, exc.message, exc.context)
        if isinstance(exc, ConfigurationError):
            return JSONResponse(
                status_code=400,
                content=_error_body("invalid_option", exc.message),
            )
        if isinstance(exc, TransportIOError):
            return JSONResponse(
                status_code=503,
                content=_error_body("service_unavailable", "The database is temporarily unavailable"),
            )
        details = None
        if isinstance(exc, ResponseError):
            details = {"status_code": exc.status_code, "error": exc.error_code}
        return JSONResponse(
            status_code=502,
            content=_error_body("database_error", "The database returned an error", details),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Guestbook API",
        description="A small guestbook that stores visitor names in CouchDB.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(visitors.router)
    app.include_router(health.router)
    app.include_router(frontend.router)

    # check_dir=False: importing the app does not require the directory to exist.
    app.mount("/static", StaticFiles(directory=settings.static_dir, check_dir=False), name="static")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.backend_host, port=settings.port)
