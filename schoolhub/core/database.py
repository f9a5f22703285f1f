"""
Database layer — async SQL via SQLAlchemy 2.0.

Provides:
    • Engine construction from the resolved Config (uri + user/password/name)
    • Session factory
    • Base model for ORM entities
    • Table creation / disposal helpers

Usage:
    from schoolhub.core.database import create_engine, create_session_factory

    engine = create_engine(config)
    session_factory = create_session_factory(engine)
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from schoolhub.core.config import Config

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def database_url(config: Config) -> URL:
    """Combine database.uri with the separately supplied credentials and name."""
    url = make_url(config.database.uri)
    if config.database.user:
        url = url.set(username=config.database.user)
    if config.database.password:
        url = url.set(password=config.database.password)
    if config.database.name:
        url = url.set(database=config.database.name)
    return url


# ── Engine ──
def create_engine(config: Config) -> AsyncEngine:
    url = database_url(config)
    logger.info("Database engine: %s", url.render_as_string(hide_password=True))
    return create_async_engine(url, future=True)


# ── Session Factory ──
def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
