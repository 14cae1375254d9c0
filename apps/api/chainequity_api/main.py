"""ChainEquity API - Main FastAPI application."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from chainequity_api.db.session import Database
from chainequity_api.errors import (
    ChainSourceError,
    IndexerError,
    InvalidArgumentError,
    NotFoundError,
    StructuralError,
)
from chainequity_api.indexer.factory import build_pipeline, build_watcher
from chainequity_api.indexer.watcher import LiveWatcher
from chainequity_api.middleware.correlation import CorrelationIDMiddleware
from chainequity_api.routes import captable, corporate, events, indexer
from chainequity_api.settings import Settings, get_settings
from chainequity_api.utils.log import configure_logging

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Composition root: open the database, wire the watcher, tear both down."""
    settings: Settings = app.state.settings
    logger.info("Starting ChainEquity API...")
    try:
        settings.validate_production_settings()
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ValueError(f"Invalid configuration: {e}") from e

    owns_database = app.state.database is None
    if owns_database:
        app.state.database = Database(settings.database_url_computed).open()

    if app.state.watcher is None and settings.rpc_url and settings.token_contract_address:
        pipeline = build_pipeline(settings, app.state.database)
        app.state.watcher = build_watcher(settings, pipeline)
        if settings.watcher_autostart:
            app.state.watcher.start()

    yield

    logger.info("Shutting down ChainEquity API...")
    watcher: Optional[LiveWatcher] = app.state.watcher
    if watcher is not None and watcher.is_running():
        watcher.stop()
    if owns_database:
        if watcher is not None and watcher.is_running():
            logger.warning("Watcher still running; leaving the database open")
        else:
            app.state.database.close()
            app.state.database = None


def _error_response(status_code: int, exc: Exception, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error": type(exc).__name__,
            "correlation_id": getattr(request.state, "correlation_id", None),
        },
    )


def register_exception_handlers(app: FastAPI):
    """Map indexer errors to HTTP responses."""

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(request: Request, exc: InvalidArgumentError):
        return _error_response(status.HTTP_400_BAD_REQUEST, exc, request)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(status.HTTP_404_NOT_FOUND, exc, request)

    @app.exception_handler(ChainSourceError)
    async def chain_source_handler(request: Request, exc: ChainSourceError):
        logger.warning(f"Chain source unavailable: {exc}")
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, exc, request)

    @app.exception_handler(StructuralError)
    async def structural_handler(request: Request, exc: StructuralError):
        logger.error(f"Ledger error on {request.url.path}: {exc}", exc_info=exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc, request)

    @app.exception_handler(IndexerError)
    async def indexer_error_handler(request: Request, exc: IndexerError):
        logger.error(f"Indexer error on {request.url.path}: {exc}", exc_info=exc)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc, request)


def _migrations_at_head(database: Database) -> bool:
    from alembic.config import Config
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    alembic_ini_path = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")
    script = ScriptDirectory.from_config(Config(alembic_ini_path))
    with database.engine.connect() as connection:
        current_rev = MigrationContext.configure(connection).get_current_revision()
    head_rev = script.get_current_head()
    if current_rev != head_rev:
        logger.warning(f"Migrations not at head: current={current_rev}, head={head_rev}")
        return False
    return True


def create_app(
    database: Optional[Database] = None,
    watcher: Optional[LiveWatcher] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the application; an injected database/watcher is used as-is."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="ChainEquity API",
        description="Cap table indexer for tokenized equity",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.watcher = watcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(CorrelationIDMiddleware)

    register_exception_handlers(app)

    # Prometheus metrics
    app.mount("/metrics", make_asgi_app())

    app.include_router(captable.router)
    app.include_router(events.router)
    app.include_router(corporate.router)
    app.include_router(indexer.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint (basic liveness)."""
        return {
            "status": "healthy",
            "service": "chainequity-api",
            "version": VERSION,
        }

    @app.get("/ready")
    def readiness_check(request: Request):
        """Readiness check endpoint (verifies dependencies)."""
        db: Database = request.app.state.database
        current_watcher: Optional[LiveWatcher] = request.app.state.watcher
        checks = {
            "database": db.ping(),
            "migrations": None,  # None when the schema is created without Alembic
            "redis": None,
            "watcher": None,
        }

        if checks["database"] and not db.is_sqlite:
            try:
                checks["migrations"] = _migrations_at_head(db)
            except Exception as e:
                logger.error(f"Migration check failed: {e}")
                checks["migrations"] = False

        if settings.writer_lock_backend == "redis":
            try:
                redis.from_url(settings.redis_url).ping()
                checks["redis"] = True
            except Exception as e:
                logger.error(f"Redis check failed: {e}")
                checks["redis"] = False

        if current_watcher is not None:
            checks["watcher"] = not current_watcher.halted

        all_ready = all(value is not False for value in checks.values())
        return JSONResponse(
            content={
                "status": "ready" if all_ready else "not_ready",
                "checks": checks,
            },
            status_code=200 if all_ready else 503,
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "ChainEquity API",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()
