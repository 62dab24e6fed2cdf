"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from habitquest.config import get_settings
from habitquest.database import close_db, create_schema, get_session_factory, init_db
from habitquest.gamification.engine import GamificationEngine
from habitquest.gamification.events import RedisEventForwarder
from habitquest.gamification.router import router as gamification_router
from habitquest.gamification.seed import seed_catalogs
from habitquest.health.router import router as health_router
from habitquest.middleware import setup_middleware
from habitquest.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.auto_create_schema:
        await create_schema()

    engine = GamificationEngine(
        get_session_factory(),
        history_window=settings.streak_history_window,
    )

    detach_forwarder = None
    redis = await init_redis(settings.redis_url, max_connections=settings.event_redis_max_connections)
    if redis is not None:
        forwarder = RedisEventForwarder(redis, prefix=settings.event_channel_prefix)
        detach_forwarder = engine.channel.attach(forwarder)

    # Seed badge catalog and default challenges (idempotent)
    try:
        await seed_catalogs(get_session_factory())
    except Exception:
        logger.warning("Catalog seeding failed (tables may not exist yet)", exc_info=True)

    app.state.engine = engine

    yield

    if detach_forwarder is not None:
        detach_forwarder()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="HabitQuest API",
        description="Gamification engine for habit tracking: XP, levels, badges and challenges",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)

    return app


app = create_app()
