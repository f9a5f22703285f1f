"""
FastAPI application entry point.

Run with:
    APP_ENV=local uvicorn schoolhub.main:create_app --factory --port 8000

Configuration is resolved once here (configs/ + APP_ENV + environment
variables) and handed to every component that needs it.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI

# ── Core infrastructure ──
from schoolhub.core.cache import Cache, MemoryCache, build_cache, purge_periodically
from schoolhub.core.config import Config, load_config
from schoolhub.core.database import (
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)
from schoolhub.core.errors import register_error_handlers
from schoolhub.core.logging_config import setup_logging
from schoolhub.core.middleware import RequestContextMiddleware

# ── Domain ──
from schoolhub.payment.fondy import client_factory
from schoolhub.schools.models import School
from schoolhub.schools.repository import (
    InMemorySchoolsRepository,
    SchoolsRepository,
    SQLSchoolsRepository,
)
from schoolhub.schools.service import GatewayFactory, SchoolsService

# ── API routers ──
from schoolhub.api.v1.schools import router as schools_router

logger = logging.getLogger(__name__)

APP_NAME = "SchoolHub"
APP_VERSION = "1.0.0"


def create_app(
    config: Optional[Config] = None,
    *,
    repo: Optional[SchoolsRepository] = None,
    cache: Optional[Cache[School]] = None,
    gateway_factory: Optional[GatewayFactory] = None,
) -> FastAPI:
    """Build the application. Collaborators not supplied are built from config."""
    config = config or load_config()
    setup_logging(config)

    engine = None
    if repo is None:
        if config.database.uri:
            engine = create_engine(config)
            repo = SQLSchoolsRepository(create_session_factory(engine))
        else:
            logger.warning("database.uri not set, using in-memory school store")
            repo = InMemorySchoolsRepository()

    if cache is None:
        cache = build_cache(config, School, prefix="school:")

    service = SchoolsService(
        repo=repo,
        cache=cache,
        ttl=config.cache.ttl,
        gateway_factory=gateway_factory or client_factory(config),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s v%s [%s]", APP_NAME, APP_VERSION, config.environment)
        if engine is not None and not config.is_production:
            await init_db(engine)
        purge_every = config.cache.purge_interval.total_seconds()
        if isinstance(cache, MemoryCache) and purge_every > 0:
            app.state.cache_purger = asyncio.create_task(purge_periodically(cache, purge_every))
        yield
        purger = getattr(app.state, "cache_purger", None)
        if purger is not None:
            purger.cancel()
            with suppress(asyncio.CancelledError):
                await purger
        await cache.close()
        if engine is not None:
            await close_db(engine)
        logger.info("Shutting down %s", APP_NAME)

    app = FastAPI(
        title=APP_NAME,
        description="Multi-tenant online school backend: school lookup and settings.",
        version=APP_VERSION,
        docs_url=None if config.is_production else "/docs",
        redoc_url=None if config.is_production else "/redoc",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.schools_service = service

    app.add_middleware(RequestContextMiddleware)
    register_error_handlers(app, production=config.is_production)
    app.include_router(schools_router)

    return app
