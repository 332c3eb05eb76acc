"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (database, upload directory).
Everything a request or socket needs (engine, session factory, session
registry, command processor) hangs off app.state, so tests can build an
app against their own database.

Route order matters: the API and WebSocket routes are registered before the
static mounts, otherwise the "/" static mount would swallow them.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from sqlalchemy.ext.asyncio import AsyncEngine

from marketsync import __version__
from marketsync.api import api_router
from marketsync.config import Settings, settings as default_settings
from marketsync.db.engine import engine as default_engine, init_db, make_session_factory
from marketsync.logging_config import configure_logging
from marketsync.realtime.commands import ListingCommandProcessor
from marketsync.realtime.registry import SessionRegistry
from marketsync.services.image_store import ImageStore

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: A database that cannot be initialized is the one fatal error:
    the exception propagates and the server refuses to start.
    """
    cfg: Settings = app.state.settings
    logger.info(
        "marketsync.starting",
        version=__version__,
        environment=cfg.environment,
        port=cfg.port,
    )

    await init_db(app.state.engine)
    logger.info("marketsync.database_ready")

    app.state.images.ensure_directory()

    yield

    logger.info("marketsync.shutdown")
    await app.state.engine.dispose()


def create_app(
    engine: Optional[AsyncEngine] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    cfg = settings or default_settings
    configure_logging(cfg.log_level, json_logs=cfg.log_json)

    engine = engine or default_engine

    app = FastAPI(
        title="MarketSync",
        description="Real-time marketplace listings over WebSockets",
        version=__version__,
        lifespan=lifespan,
    )

    registry = SessionRegistry()
    session_factory = make_session_factory(engine)
    images = ImageStore(cfg.uploads_dir, url_prefix=cfg.uploads_url_prefix, max_bytes=cfg.max_image_bytes)

    app.state.settings = cfg
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.registry = registry
    app.state.images = images
    app.state.processor = ListingCommandProcessor(
        registry,
        session_factory,
        images=images,
        timeout=cfg.command_timeout_seconds,
    )

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (realtime listings)
    from marketsync.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    # Uploaded images; the directory is created at startup
    app.mount(
        cfg.uploads_url_prefix,
        StaticFiles(directory=cfg.uploads_dir, check_dir=False),
        name="uploads",
    )

    # Front-end assets, index.html at "/"
    if Path(cfg.static_dir).is_dir():
        app.mount("/", StaticFiles(directory=cfg.static_dir, html=True), name="static")
    else:
        logger.info("marketsync.static_disabled", static_dir=cfg.static_dir)

    return app


# Default app instance (used by uvicorn: marketsync.main:app)
app = create_app()
