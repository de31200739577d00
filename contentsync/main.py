"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from contentsync import __version__
from contentsync.api.health import router as health_router
from contentsync.api.webhooks import router as webhooks_router
from contentsync.config import Settings
from contentsync.database import create_engine
from contentsync.exceptions import AuthenticationError
from contentsync.models.base import Base
from contentsync.rendering.pandoc import PandocRenderer
from contentsync.services.github_service import GitHubContentFetcher
from contentsync.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    logger.info("Starting contentsync %s (debug=%s)", __version__, settings.debug)

    try:
        settings.validate_required()
    except ValueError as exc:
        logger.critical("%s", exc)
        raise

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check DATABASE_URL and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    renderer = PandocRenderer.from_settings(settings)
    try:
        await renderer.start()
    except Exception as exc:
        logger.critical("Failed to start pandoc renderer (%s mode): %s", renderer.mode, exc)
        raise

    fetcher = GitHubContentFetcher.from_settings(settings)
    app.state.sync_engine = SyncEngine(session_factory, fetcher, renderer, settings)
    logger.info(
        "Syncing %s (branch %s) into %s",
        settings.repository,
        settings.content_branch or "*",
        engine.url.render_as_string(hide_password=True),
    )

    yield

    try:
        await fetcher.aclose()
    except Exception as exc:
        logger.error("Error during GitHub client shutdown: %s", exc, exc_info=True)

    try:
        await renderer.close()
    except Exception as exc:
        logger.error("Error during renderer shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("contentsync stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="contentsync",
        description="Sync Markdown content from GitHub pushes into a relational store",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(webhooks_router)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={"detail": str(exc)},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "contentsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
