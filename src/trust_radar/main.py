"""
Trust Radar — Application Entrypoint

Initializes the async SQLAlchemy engine, configures structlog, wires the
components and starts the job scheduler.

Run via:
    python -m trust_radar.main

The query API is served separately:
    uvicorn --factory trust_radar.main:create_api_app
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from trust_radar import __version__
from trust_radar.api.app import create_app
from trust_radar.components import build_components
from trust_radar.config import settings
from trust_radar.models import Base
from trust_radar.pipeline.scheduler import run_scheduler
from trust_radar.sources.http import BusinessViewsClient


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Route structlog through stdlib logging and render one JSON object per line.

    Args:
        log_level: Name of a stdlib level, e.g. "INFO" or "DEBUG".
    """
    # uvicorn, sqlalchemy and httpx log through stdlib
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


def build_db_engine() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Build the async engine and the session factory every component shares.

    Pool sizing applies to Postgres (asyncpg) only; sqlite URLs are used
    for local runs and get the driver defaults.

    Returns:
        The engine and its session factory.
    """
    logger = structlog.get_logger(__name__)
    logger.info("database_engine_initializing")

    options: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if not settings.DATABASE_URL.startswith("sqlite"):
        options["pool_size"] = settings.DATABASE_POOL_SIZE
        options["max_overflow"] = settings.DATABASE_MAX_OVERFLOW

    engine = create_async_engine(settings.DATABASE_URL, **options)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


async def prepare_database(engine: AsyncEngine, session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Health check, then create tables when AUTO_CREATE_TABLES is set (dev only)."""
    logger = structlog.get_logger(__name__)

    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
    logger.info("database_reachable")

    if settings.AUTO_CREATE_TABLES:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created")


# ---------------------------------------------------------------------------
# Query API factory
# ---------------------------------------------------------------------------


def create_api_app() -> FastAPI:
    """uvicorn factory: wires components around a fresh engine and views client."""
    _configure_logging(log_level=settings.LOG_LEVEL)
    engine, session_factory = build_db_engine()
    views = BusinessViewsClient()
    components = build_components(session_factory, views, views)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await prepare_database(engine, session_factory)
        async with views:
            yield
        await engine.dispose()

    return create_app(components.query, lifespan=lifespan)


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main() -> None:
    """
    Scheduler process entrypoint.

    Execution order:
    1. Logging
    2. Engine and session factory
    3. Database reachability check (and dev table creation)
    4. Wire components and start the scheduler (until shutdown signal)
    """
    _configure_logging(log_level=settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    logger.info("trust_radar_startup_begin", version=__version__)

    if not settings.BUSINESS_VIEWS_API_KEY:
        logger.warning("config_business_views_api_key_missing", note="sending unauthenticated requests")

    try:
        engine, session_factory = build_db_engine()
    except Exception as e:
        logger.error(
            "database_engine_build_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    try:
        await prepare_database(engine, session_factory)
    except Exception as e:
        logger.error(
            "database_unreachable",
            error=str(e),
            error_type=type(e).__name__,
        )
        await engine.dispose()
        raise

    try:
        async with BusinessViewsClient() as views:
            components = build_components(session_factory, views, views)
            logger.info(
                "trust_radar_startup_complete",
                jobs=components.registry.names(),
                policy_version=components.risk.policy.version,
            )
            await run_scheduler(components.registry)
    except KeyboardInterrupt:
        logger.info("trust_radar_interrupted_by_user")
    except Exception as e:
        logger.error(
            "trust_radar_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await engine.dispose()
        logger.info("trust_radar_shutdown_complete")


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    asyncio.run(main())
