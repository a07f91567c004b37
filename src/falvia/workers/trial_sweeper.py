"""arq worker for the trial expiry sweep.

ACTIVE trials past their end date are moved to EXPIRED on a cron
schedule. Reads never depend on the sweep having run; it only brings the
stored status in line with end_date.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from falvia.config import get_settings
from falvia.database import close_db, get_session_factory, init_db
from falvia.trials.trial_service import auto_expire_trials

logger = logging.getLogger(__name__)


async def sweeper_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Trial sweeper started (every %d min)", settings.trial_sweep_interval_minutes)


async def sweeper_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Trial sweeper shut down")


async def expire_trials(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled arq task: expire lapsed trials. Returns how many were expired."""
    async with get_session_factory()() as db:
        count = await auto_expire_trials(db, ctx.get("redis"))
    if count:
        logger.info("Expired %d trials", count)
    return count


def sweep_minutes(interval_minutes: int) -> set[int]:
    """Minutes of the hour the sweep fires on."""
    interval = max(1, min(interval_minutes, 60))
    return set(range(0, 60, interval))


class TrialSweeperSettings:
    """arq worker settings for the trial sweeper."""

    functions = [expire_trials]
    cron_jobs = [
        cron(expire_trials, minute=sweep_minutes(get_settings().trial_sweep_interval_minutes), run_at_startup=True),
    ]
    on_startup = sweeper_startup
    on_shutdown = sweeper_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 2
    job_timeout = 120
