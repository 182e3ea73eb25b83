"""Periodic sync arq worker.

Every ``sync_interval_hours`` it retries failed local saves, then syncs
every user holding XP the server has not acknowledged. Each user retries
with backoff on transient failures; permanent failures wait for the next
run.
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from learnxp.config import get_settings
from learnxp.engine import GamificationEngine, build_engine
from learnxp.logging_setup import setup_logging
from learnxp.redis_client import close_redis, init_redis
from learnxp.result import Error, Success

logger = structlog.get_logger()


def sync_hours(interval_hours: int) -> set[int]:
    """Hours of the day at which the sync runs."""
    interval = min(24, max(1, interval_hours))
    return set(range(0, 24, interval))


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Build the engine and its Redis broadcaster on worker startup."""
    settings = get_settings()
    setup_logging(settings)

    redis_client = await init_redis(settings.redis_url)
    engine = await build_engine(settings, redis=redis_client)
    await engine.start()

    ctx["redis"] = redis_client
    ctx["engine"] = engine
    logger.info("sync_worker_started", interval_hours=settings.sync_interval_hours)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Flush and close the engine, then the Redis connection."""
    engine: GamificationEngine | None = ctx.get("engine")
    if engine:
        await engine.close()

    await close_redis()
    ctx.pop("redis", None)

    logger.info("sync_worker_stopped")


async def periodic_sync(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Scheduled task: flush dirty ledgers, then sync everyone with pending XP."""
    engine: GamificationEngine = ctx["engine"]

    flushed = await engine.flush_pending()
    if isinstance(flushed, Error):
        logger.warning("flush_pending_failed", error=flushed.message)
        flushed_count = flushed.partial or 0
    else:
        flushed_count = flushed.data  # type: ignore[union-attr]

    results = await engine.sync_coordinator.sync_pending()
    if isinstance(results, Error):
        logger.warning("list_unsynced_failed", error=results.message)
        return {"flushed": flushed_count, "synced": 0, "failed": 0}

    synced = 0
    failed = 0
    for user_id, result in results.data.items():  # type: ignore[union-attr]
        if isinstance(result, Success):
            synced += 1
        else:
            failed += 1
            logger.warning(
                "user_sync_failed",
                user_id=user_id,
                kind=result.kind.value if isinstance(result, Error) else None,
            )

    logger.info("periodic_sync_done", flushed=flushed_count, synced=synced, failed=failed)
    return {"flushed": flushed_count, "synced": synced, "failed": failed}


class SyncWorkerSettings:
    """arq worker settings for the periodic sync."""

    functions = [periodic_sync]
    cron_jobs = [
        cron(periodic_sync, hour=sync_hours(get_settings().sync_interval_hours), minute=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 1
    job_timeout = 3600
