"""arq worker for periodic ledger housekeeping.

Runs as a separate process. Neither job is needed for correctness (expiry is
checked on every request); they keep the active-session and refresh-token
tables small.
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from mindcase.auth import tokens
from mindcase.config import get_settings
from mindcase.database import close_db, get_session_factory, init_db
from mindcase.middleware.logging import setup_logging
from mindcase.minigames.service import expire_stale_sessions

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open the database pool once per worker process."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    logger.info("Maintenance worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Maintenance worker shut down")


async def expire_minigame_sessions(ctx: dict) -> int:  # type: ignore[type-arg]
    """Flip active minigame sessions past their expiry to ``expired``."""
    async with get_session_factory()() as session:
        count = await expire_stale_sessions(session)
    if count > 0:
        logger.info("Expired %d stale minigame sessions", count)
    return count


async def purge_expired_refresh_tokens(ctx: dict) -> int:  # type: ignore[type-arg]
    """Delete refresh tokens past their expiry."""
    async with get_session_factory()() as session:
        count = await tokens.purge_expired_refresh_tokens(session)
    if count > 0:
        logger.info("Purged %d expired refresh tokens", count)
    return count


class WorkerSettings:
    """arq worker settings for the maintenance jobs."""

    functions = [expire_minigame_sessions, purge_expired_refresh_tokens]
    cron_jobs = [
        cron(expire_minigame_sessions, minute=set(range(0, 60, 5)), run_at_startup=True),
        cron(purge_expired_refresh_tokens, minute={17}),
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 2
    job_timeout = 300
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
