"""Wallet engine: balance invariant, daily limit, spends and the audit log."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mindcase.db.models import User, UserWallet, WalletTransaction
from mindcase.entitlements.service import EntitlementGrant, grant_entitlement
from mindcase.wallet.service import (
    DAILY_LIMIT_REACHED,
    EARN_AD,
    EARN_MINIGAME,
    INSUFFICIENT_BALANCE,
    SPEND_HINT,
    SPEND_UNLOCK,
    earn,
    get_daily_limit,
    get_or_create_wallet,
    get_transactions,
    get_wallet_summary,
    spend,
    utc_today,
)


async def _wallet(db: AsyncSession, user_id: int) -> UserWallet:
    result = await db.execute(
        select(UserWallet).where(UserWallet.user_id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _assert_ledger(wallet: UserWallet) -> None:
    assert wallet.balance == wallet.total_earned - wallet.total_spent
    assert wallet.balance >= 0


class TestGetOrCreate:
    async def test_creates_zero_wallet(self, db_session: AsyncSession, user: User):
        user_id = user.id
        wallet = await get_or_create_wallet(db_session, user_id)
        assert wallet.balance == 0
        assert wallet.total_earned == 0
        assert wallet.tokens_earned_today == 0
        assert wallet.last_reset_date == utc_today()

    async def test_second_call_returns_same_row(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await get_or_create_wallet(db_session, user_id)
        await earn(db_session, user_id, 2, EARN_AD)
        wallet = await get_or_create_wallet(db_session, user_id)
        assert wallet.balance == 2

    async def test_daily_counter_resets_on_new_day(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 3, EARN_MINIGAME)
        await db_session.execute(
            update(UserWallet)
            .where(UserWallet.user_id == user_id)
            .values(last_reset_date=utc_today() - timedelta(days=1))
        )
        await db_session.commit()

        wallet = await get_or_create_wallet(db_session, user_id)
        assert wallet.tokens_earned_today == 0
        assert wallet.last_reset_date == utc_today()
        assert wallet.balance == 3


class TestEarn:
    async def test_daily_limit_enforced(self, db_session: AsyncSession, user: User):
        """Three minigame credits succeed, the fourth is refused."""
        user_id = user.id
        for expected in (1, 2, 3):
            result = await earn(db_session, user_id, 1, EARN_MINIGAME)
            assert result.success is True
            assert result.balance == expected

        result = await earn(db_session, user_id, 1, EARN_MINIGAME)
        assert result.success is False
        assert result.reason == DAILY_LIMIT_REACHED
        assert result.balance == 3
        assert result.daily_limit == 3

        wallet = await _wallet(db_session, user_id)
        assert wallet.balance == 3
        _assert_ledger(wallet)

    async def test_minigame_credit_clipped_to_remaining(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 2, EARN_MINIGAME)
        result = await earn(db_session, user_id, 5, EARN_MINIGAME)
        assert result.success is True
        assert result.tokens_awarded == 1
        assert result.tokens_earned_today == 3

    async def test_ad_credit_not_capped_or_counted(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 3, EARN_MINIGAME)
        result = await earn(db_session, user_id, 10, EARN_AD)
        assert result.success is True
        assert result.tokens_awarded == 10
        assert result.balance == 13
        assert result.tokens_earned_today == 3

    async def test_premium_limit(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await grant_entitlement(
            db_session,
            EntitlementGrant(
                user_id=user_id,
                provider="stripe",
                provider_subscription_id="sub_premium",
                expires_at=datetime.now(timezone.utc) + timedelta(days=30),
            ),
        )
        assert await get_daily_limit(db_session, user_id) == 999

        for _ in range(5):
            assert (await earn(db_session, user_id, 1, EARN_MINIGAME)).success is True
        assert (await _wallet(db_session, user_id)).balance == 5

    async def test_reset_allows_earning_again(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 3, EARN_MINIGAME)
        await db_session.execute(
            update(UserWallet)
            .where(UserWallet.user_id == user_id)
            .values(last_reset_date=utc_today() - timedelta(days=1))
        )
        await db_session.commit()

        result = await earn(db_session, user_id, 1, EARN_MINIGAME)
        assert result.success is True
        assert result.tokens_earned_today == 1
        assert result.balance == 4

    @pytest.mark.parametrize("amount", [0, -1, True, 1.5])
    async def test_invalid_amount(self, db_session: AsyncSession, user: User, amount):
        user_id = user.id
        with pytest.raises(ValueError, match="positive integer"):
            await earn(db_session, user_id, amount, EARN_AD)

    async def test_unknown_source(self, db_session: AsyncSession, user: User):
        user_id = user.id
        with pytest.raises(ValueError, match="Unknown earn source"):
            await earn(db_session, user_id, 1, "EARN_FREE_MONEY")


class TestSpend:
    async def test_insufficient_balance_scenario(self, db_session: AsyncSession, user: User):
        """Balance 2, spend 5: refused and the balance stays 2."""
        user_id = user.id
        await earn(db_session, user_id, 2, EARN_AD)
        result = await spend(db_session, user_id, 5, SPEND_HINT)
        assert result.success is False
        assert result.reason == INSUFFICIENT_BALANCE
        assert result.balance == 2
        assert result.required == 5
        assert (await _wallet(db_session, user_id)).balance == 2

    async def test_spend_without_wallet(self, db_session: AsyncSession, user: User):
        user_id = user.id
        result = await spend(db_session, user_id, 1, SPEND_HINT)
        assert result.success is False
        assert result.reason == INSUFFICIENT_BALANCE
        assert result.balance == 0

    async def test_spend_success(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 5, EARN_AD)
        result = await spend(db_session, user_id, 3, SPEND_UNLOCK, {"contentId": "p1"})
        assert result.success is True
        assert result.balance == 2
        assert result.tokens_spent == 3

        wallet = await _wallet(db_session, user_id)
        assert wallet.total_spent == 3
        _assert_ledger(wallet)

    async def test_spend_exact_balance(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 3, EARN_AD)
        result = await spend(db_session, user_id, 3, SPEND_HINT)
        assert result.success is True
        assert result.balance == 0

    async def test_unknown_purpose(self, db_session: AsyncSession, user: User):
        user_id = user.id
        with pytest.raises(ValueError, match="Unknown spend purpose"):
            await spend(db_session, user_id, 1, "SPEND_ON_SNACKS")


class TestLedger:
    async def test_invariant_over_mixed_sequence(self, db_session: AsyncSession, user: User):
        user_id = user.id
        ops = [
            ("earn", 1, EARN_MINIGAME),
            ("earn", 4, EARN_AD),
            ("spend", 3, SPEND_HINT),
            ("spend", 9, SPEND_HINT),
            ("earn", 2, EARN_MINIGAME),
            ("earn", 1, EARN_MINIGAME),
            ("spend", 2, SPEND_UNLOCK),
        ]
        for kind, amount, tag in ops:
            if kind == "earn":
                await earn(db_session, user_id, amount, tag)
            else:
                await spend(db_session, user_id, amount, tag)
            _assert_ledger(await _wallet(db_session, user_id))

        summary = await get_wallet_summary(db_session, user_id)
        assert summary.balance == 2
        assert summary.total_earned == 7
        assert summary.total_spent == 5
        assert summary.remaining_today == 0

    async def test_one_audit_row_per_mutation(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 2, EARN_AD)
        await spend(db_session, user_id, 1, SPEND_HINT)
        await spend(db_session, user_id, 50, SPEND_HINT)  # refused, not logged

        rows = (await db_session.execute(select(WalletTransaction))).scalars().all()
        assert len(rows) == 2

    async def test_transactions_newest_first_with_balance_after(self, db_session: AsyncSession, user: User):
        user_id = user.id
        await earn(db_session, user_id, 5, EARN_AD, {"transactionId": "t1"})
        await spend(db_session, user_id, 2, SPEND_HINT)

        transactions = await get_transactions(db_session, user_id)
        assert [t.type for t in transactions] == [SPEND_HINT, EARN_AD]
        assert [t.amount for t in transactions] == [-2, 5]
        assert [t.balance_after for t in transactions] == [3, 5]
        assert transactions[1].details == {"transactionId": "t1"}

    async def test_transactions_limit_clamped(self, db_session: AsyncSession, user: User):
        user_id = user.id
        for _ in range(4):
            await earn(db_session, user_id, 1, EARN_AD)
        assert len(await get_transactions(db_session, user_id, limit=2)) == 2
        assert len(await get_transactions(db_session, user_id, limit=0)) == 1
        assert len(await get_transactions(db_session, user_id, limit=10_000)) == 4
