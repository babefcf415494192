"""Daily streaks: UTC-day continuation, reset, offline sync."""

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.db.models import User, UserStreak
from mindcase.streaks.service import get_streak, record_activity, sync_streak
from mindcase.wallet.service import utc_today


async def _set_streak(db: AsyncSession, user_id: int, current: int, max_: int, days_ago: int) -> None:
    await db.execute(
        update(UserStreak)
        .where(UserStreak.user_id == user_id)
        .values(
            current_streak=current,
            max_streak=max_,
            last_activity_date=utc_today() - timedelta(days=days_ago),
        )
    )
    await db.commit()


class TestRecordActivity:
    async def test_first_activity(self, db_session: AsyncSession, user: User):
        update_ = await record_activity(db_session, user.id)
        assert update_.current_streak == 1
        assert update_.max_streak == 1
        assert update_.streak_increased is True
        assert update_.last_activity_date == utc_today()

    async def test_same_day_is_noop(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await record_activity(db_session, user_id)
        again = await record_activity(db_session, user_id)
        assert again.current_streak == 1
        assert again.streak_increased is False

    async def test_next_day_extends(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await record_activity(db_session, user_id)
        await _set_streak(db_session, user_id, current=4, max_=4, days_ago=1)

        update_ = await record_activity(db_session, user_id)
        assert update_.current_streak == 5
        assert update_.max_streak == 5
        assert update_.streak_increased is True

    async def test_gap_resets_but_keeps_max(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await record_activity(db_session, user_id)
        await _set_streak(db_session, user_id, current=6, max_=9, days_ago=2)

        update_ = await record_activity(db_session, user_id)
        assert update_.current_streak == 1
        assert update_.max_streak == 9
        assert update_.streak_increased is False


class TestGetStreak:
    async def test_no_row(self, db_session: AsyncSession, user: User):
        summary = await get_streak(db_session, user.id)
        assert (summary.current_streak, summary.max_streak, summary.last_activity_date) == (0, 0, None)

    @pytest.mark.parametrize(("days_ago", "expected"), [(0, 3), (1, 3), (2, 0)])
    async def test_broken_streak_reads_zero(self, db_session: AsyncSession, user: User, days_ago, expected):
        user_id = user.id
        await record_activity(db_session, user_id)
        await _set_streak(db_session, user_id, current=3, max_=7, days_ago=days_ago)

        summary = await get_streak(db_session, user_id)
        assert summary.current_streak == expected
        assert summary.max_streak == 7


class TestSync:
    async def test_longer_live_client_streak_wins(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await record_activity(db_session, user_id)

        summary = await sync_streak(db_session, user_id, 8, utc_today() - timedelta(days=1))
        assert summary.current_streak == 8
        assert summary.max_streak == 8

        # The synced streak continues today
        assert (await record_activity(db_session, user_id)).current_streak == 9

    async def test_server_wins_when_not_shorter(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await record_activity(db_session, user_id)
        await _set_streak(db_session, user_id, current=5, max_=5, days_ago=0)

        summary = await sync_streak(db_session, user_id, 3, utc_today())
        assert summary.current_streak == 5

    async def test_broken_client_streak_ignored(self, db_session: AsyncSession, user: User):
        summary = await sync_streak(db_session, user.id, 20, utc_today() - timedelta(days=5))
        assert summary.current_streak == 0
        assert summary.max_streak == 0

    async def test_future_date_rejected(self, db_session: AsyncSession, user: User):
        with pytest.raises(ValueError, match="future"):
            await sync_streak(db_session, user.id, 2, utc_today() + timedelta(days=1))


class TestStreakApi:
    async def test_activity_then_read(self, client: AsyncClient, user_headers: dict[str, str]):
        empty = await client.get("/api/progress/streak", headers=user_headers)
        assert empty.json() == {"currentStreak": 0, "maxStreak": 0, "lastActivityDate": None}

        recorded = await client.post("/api/progress/streak/activity", headers=user_headers)
        assert recorded.status_code == 200
        assert recorded.json() == {
            "currentStreak": 1,
            "maxStreak": 1,
            "lastActivityDate": utc_today().isoformat(),
            "streakIncreased": True,
        }

        again = await client.post("/api/progress/streak/activity", headers=user_headers)
        assert again.json()["streakIncreased"] is False

    async def test_sync(self, client: AsyncClient, user_headers: dict[str, str]):
        response = await client.post(
            "/api/progress/streak/sync",
            json={"currentStreak": 4, "lastActivityDate": utc_today().isoformat()},
            headers=user_headers,
        )
        assert response.status_code == 200
        assert response.json()["currentStreak"] == 4

    async def test_sync_future_date(self, client: AsyncClient, user_headers: dict[str, str]):
        tomorrow = (utc_today() + timedelta(days=1)).isoformat()
        response = await client.post(
            "/api/progress/streak/sync",
            json={"currentStreak": 4, "lastActivityDate": tomorrow},
            headers=user_headers,
        )
        assert response.status_code == 400

    async def test_requires_auth(self, client: AsyncClient):
        assert (await client.get("/api/progress/streak")).status_code == 401
