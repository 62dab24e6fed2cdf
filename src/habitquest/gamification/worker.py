"""Challenge lifecycle arq worker.

Run with: ``arq habitquest.gamification.worker.ChallengeWorkerSettings``
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from habitquest.config import get_settings
from habitquest.database import close_db, get_session_factory, init_db
from habitquest.gamification.engine import GamificationEngine
from habitquest.gamification.events import RedisEventForwarder

logger = logging.getLogger(__name__)


async def challenge_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database and the engine on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    engine = GamificationEngine(
        get_session_factory(),
        history_window=settings.streak_history_window,
    )
    # arq's own connection doubles as the publisher for forwarded events
    engine.channel.attach(RedisEventForwarder(ctx["redis"], prefix=settings.event_channel_prefix))
    ctx["engine"] = engine
    logger.info("Challenge worker started")


async def challenge_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    ctx.pop("engine", None)
    await close_db()
    logger.info("Challenge worker shut down")


async def sweep_challenges(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled task: promote started challenges and settle expired ones."""
    engine: GamificationEngine = ctx["engine"]
    result = await engine.scheduler.process_expired_challenges()
    return {
        "promoted": len(result.promoted),
        "closed": len(result.closed),
        "winners_paid": result.winners_paid,
    }


def _sweep_minutes(interval: int) -> set[int]:
    interval = min(max(interval, 1), 60)
    return set(range(0, 60, interval))


class ChallengeWorkerSettings:
    """arq worker settings for the challenge lifecycle sweep."""

    functions = [sweep_challenges]
    cron_jobs = [
        cron(
            sweep_challenges,
            minute=_sweep_minutes(get_settings().challenge_sweep_minutes),
            run_at_startup=True,
            unique=True,
        ),
    ]
    on_startup = challenge_startup
    on_shutdown = challenge_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url or "redis://localhost:6379/0")
    max_jobs = 4
    job_timeout = 300
