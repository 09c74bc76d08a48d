"""Cache maintenance worker — periodic sweep of expired signature cache entries.

Run with::

    arq app.workers.cache_tasks.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from app.config import get_settings
from app.core.logging import get_logger, setup_logging
from app.services.signature_cache import get_signature_cache

settings = get_settings()
logger = get_logger(__name__)


async def sweep_expired_entries(ctx: dict) -> int:
    """Cron task: delete ephemeral entries expired longer than the grace period.

    Returns the number of entries removed.
    """
    cache = get_signature_cache()
    cleared = await cache.clear_expired()
    logger.info("sweep_expired_entries_done", cleared=cleared)
    return cleared


async def startup(ctx: dict) -> None:
    setup_logging()
    logger.info("cache_worker_started")


class WorkerSettings:
    functions = [sweep_expired_entries]
    cron_jobs = [
        cron(sweep_expired_entries, minute=settings.signature_cache_sweep_minute, run_at_startup=False),
    ]
    on_startup = startup
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
