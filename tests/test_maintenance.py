"""Maintenance worker jobs."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.auth.tokens import issue_token_pair
from mindcase.db.models import MinigameSession, RefreshToken, User
from mindcase.minigames.service import start_session
from mindcase.workers.maintenance import (
    WorkerSettings,
    expire_minigame_sessions,
    purge_expired_refresh_tokens,
)


class TestWorkerSettings:
    def test_functions_registered(self):
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"expire_minigame_sessions", "purge_expired_refresh_tokens"}

    def test_cron_jobs(self):
        assert len(WorkerSettings.cron_jobs) == 2
        assert WorkerSettings.on_startup is not None
        assert WorkerSettings.on_shutdown is not None


class TestJobs:
    async def test_expire_minigame_sessions(self, db_session: AsyncSession, user: User):
        stale = await start_session(db_session, user.id, "memory")
        await start_session(db_session, user.id, "logic")
        await db_session.execute(
            update(MinigameSession)
            .where(MinigameSession.id == stale.session_id)
            .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        )
        await db_session.commit()

        assert await expire_minigame_sessions({}) == 1
        assert await expire_minigame_sessions({}) == 0

    async def test_purge_expired_refresh_tokens(self, db_session: AsyncSession, user: User):
        expired = await issue_token_pair(db_session, user)
        await issue_token_pair(db_session, user)
        await db_session.commit()
        await db_session.execute(
            update(RefreshToken)
            .where(RefreshToken.family_id == expired.family_id)
            .values(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        )
        await db_session.commit()

        assert await purge_expired_refresh_tokens({}) == 1
        remaining = await db_session.execute(select(func.count()).select_from(RefreshToken))
        assert remaining.scalar_one() == 1

    async def test_jobs_close_their_sessions(self, database: None, monkeypatch: pytest.MonkeyPatch):
        closed: list[AsyncSession] = []
        original_close = AsyncSession.close

        async def tracking_close(self: AsyncSession) -> None:
            closed.append(self)
            await original_close(self)

        monkeypatch.setattr(AsyncSession, "close", tracking_close)
        await expire_minigame_sessions({})
        await purge_expired_refresh_tokens({})
        assert len(closed) == 2
