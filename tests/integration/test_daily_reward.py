"""Integration tests for the daily login reward."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from falvia.accounts.queries import get_account_or_raise
from falvia.badges.badge_service import has_badge
from falvia.database import get_session_factory
from falvia.db.models import DailyClaimRecord, TokenTransaction
from falvia.errors import AccountNotFoundError, StorageConflictError, TransientIOError
from falvia.rewards import daily_reward_service
from falvia.rewards.daily_reward_service import (
    claim_daily_reward,
    get_current_streak_status,
    get_login_history,
)
from tests.conftest import NOW


async def _claim_count(db, account_id: int) -> int:
    return await db.scalar(
        select(func.count()).select_from(DailyClaimRecord).where(DailyClaimRecord.account_id == account_id)
    )


class TestClaimDailyReward:
    """Exactly one credited claim per account per reference day."""

    @pytest.mark.asyncio
    async def test_first_claim(self, db_session, account):
        result = await claim_daily_reward(db_session, None, account.id, now=NOW)

        assert result.claimed is True
        assert result.consecutive_days == 1
        assert result.tokens_earned == 1
        assert result.total_balance == 1
        assert result.claim_date == date(2026, 3, 10)

    @pytest.mark.asyncio
    async def test_second_claim_same_day(self, db_session, account):
        await claim_daily_reward(db_session, None, account.id, now=NOW)
        again = await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(hours=5))

        assert again.claimed is False
        assert again.tokens_earned == 0
        assert again.total_balance == 1
        assert again.consecutive_days == 1
        assert await _claim_count(db_session, account.id) == 1

    @pytest.mark.asyncio
    async def test_day_seven_pays_two(self, db_session, account):
        for day in range(6):
            await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(days=day))

        seventh = await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(days=6))
        assert seventh.consecutive_days == 7
        assert seventh.tokens_earned == 2
        assert seventh.total_balance == 8

    @pytest.mark.asyncio
    async def test_gap_resets_streak(self, db_session, account):
        await claim_daily_reward(db_session, None, account.id, now=NOW)
        await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(days=1))
        after_gap = await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(days=3))

        assert after_gap.consecutive_days == 1
        assert after_gap.tokens_earned == 1
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.longest_login_streak == 2

    @pytest.mark.asyncio
    async def test_day_eight_continues_streak_at_base(self, db_session, account):
        for day in range(8):
            result = await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(days=day))
        assert result.consecutive_days == 8
        assert result.tokens_earned == 1

    @pytest.mark.asyncio
    async def test_lost_race_is_already_claimed(self, db_session, account):
        """Another writer committed today's record but the projection has not moved yet."""
        db_session.add(DailyClaimRecord(
            account_id=account.id,
            claim_date=date(2026, 3, 10),
            consecutive_days=1,
            tokens_earned=1,
            created_at=NOW,
        ))
        await db_session.commit()

        result = await claim_daily_reward(db_session, None, account.id, now=NOW)

        assert result.claimed is False
        assert result.tokens_earned == 0
        assert result.total_balance == 0
        tx_count = await db_session.scalar(select(func.count()).select_from(TokenTransaction))
        assert tx_count == 0

    @pytest.mark.asyncio
    async def test_unknown_account(self, db_session, database):
        with pytest.raises(AccountNotFoundError):
            await claim_daily_reward(db_session, None, 9999, now=NOW)

    @pytest.mark.asyncio
    async def test_seven_day_streak_grants_badge(self, db_session, account):
        redis = AsyncMock()
        badges = []
        for day in range(7):
            result = await claim_daily_reward(db_session, redis, account.id, now=NOW + timedelta(days=day))
            badges.append(result.badge)

        assert badges == [None] * 6 + ["active_user"]
        assert await has_badge(db_session, account.id, "active_user")
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.token_balance == 8
        assert refreshed.badges_earned == 1

        channels = [call.args[0] for call in redis.publish.await_args_list]
        assert channels == ["pubsub:badge_earned"]

    @pytest.mark.asyncio
    async def test_claim_writes_status_cache(self, db_session, account):
        redis = AsyncMock()
        await claim_daily_reward(db_session, redis, account.id, now=NOW)

        redis.setex.assert_awaited_once()
        key, ttl, _payload = redis.setex.await_args.args
        assert key == f"streak_status:{account.id}"
        assert ttl == 60


class TestStreakStatus:
    """Status for display."""

    @pytest.mark.asyncio
    async def test_before_any_claim(self, db_session, account):
        status = await get_current_streak_status(db_session, None, account.id, now=NOW)
        assert status["consecutive_days"] == 0
        assert status["has_claimed_today"] is False
        assert status["next_reward"] == 1
        assert status["token_balance"] == 0

    @pytest.mark.asyncio
    async def test_after_claim(self, db_session, account):
        await claim_daily_reward(db_session, None, account.id, now=NOW)
        status = await get_current_streak_status(db_session, None, account.id, now=NOW)
        assert status["consecutive_days"] == 1
        assert status["has_claimed_today"] is True
        assert status["last_login_date"] == "2026-03-10"
        assert status["token_balance"] == 1

    @pytest.mark.asyncio
    async def test_next_reward_on_day_six(self, db_session, account):
        for day in range(6):
            await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(days=day))
        status = await get_current_streak_status(db_session, None, account.id, now=NOW + timedelta(days=6))
        assert status["consecutive_days"] == 6
        assert status["has_claimed_today"] is False
        assert status["next_reward"] == 2

    @pytest.mark.asyncio
    async def test_broken_streak_shows_zero(self, db_session, account):
        await claim_daily_reward(db_session, None, account.id, now=NOW)
        status = await get_current_streak_status(db_session, None, account.id, now=NOW + timedelta(days=2))
        assert status["consecutive_days"] == 0
        assert status["next_reward"] == 1


class TestLoginHistory:
    """Claims newest first."""

    @pytest.mark.asyncio
    async def test_history_order_and_limit(self, db_session, account):
        for day in range(4):
            await claim_daily_reward(db_session, None, account.id, now=NOW + timedelta(days=day))

        history = await get_login_history(db_session, account.id, limit=3)
        assert [r.consecutive_days for r in history] == [4, 3, 2]
        assert history[0].claim_date == date(2026, 3, 13)


class TestClaimConcurrency:
    """Concurrent and failing claims never double-credit or report a phantom credit."""

    @pytest.mark.asyncio
    async def test_concurrent_claims_from_two_sessions(self, db_session, account):
        factory = get_session_factory()

        async def _claim():
            async with factory() as session:
                return await claim_daily_reward(session, None, account.id, now=NOW)

        first, second = await asyncio.gather(_claim(), _claim())

        assert sorted([first.claimed, second.claimed]) == [False, True]
        assert first.total_balance == second.total_balance == 1
        assert await _claim_count(db_session, account.id) == 1
        ledger_sum = await db_session.scalar(
            select(func.sum(TokenTransaction.amount)).where(TokenTransaction.account_id == account.id)
        )
        assert ledger_sum == 1
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.token_balance == 1

    @pytest.mark.asyncio
    async def test_moved_projection_is_recomputed(self, db_session, account, monkeypatch):
        real_advance = daily_reward_service._advance_projection
        calls = []

        async def _moved_once(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                return False
            return await real_advance(*args, **kwargs)

        monkeypatch.setattr(daily_reward_service, "_advance_projection", _moved_once)
        result = await claim_daily_reward(db_session, None, account.id, now=NOW)

        assert len(calls) == 2
        assert result.claimed is True
        assert result.total_balance == 1
        assert await _claim_count(db_session, account.id) == 1

    @pytest.mark.asyncio
    async def test_projection_that_keeps_moving_gives_up(self, db_session, account, monkeypatch):
        async def _always_moved(*args, **kwargs):
            return False

        monkeypatch.setattr(daily_reward_service, "_advance_projection", _always_moved)
        with pytest.raises(StorageConflictError):
            await claim_daily_reward(db_session, None, account.id, now=NOW)

        assert await _claim_count(db_session, account.id) == 0
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.token_balance == 0

    @pytest.mark.asyncio
    async def test_storage_failure_during_credit_propagates(self, db_session, account, monkeypatch):
        failing_credit = AsyncMock(
            side_effect=OperationalError("UPDATE accounts", {}, Exception("disk I/O error"))
        )
        monkeypatch.setattr(daily_reward_service, "credit_tokens", failing_credit)

        with pytest.raises(TransientIOError) as exc_info:
            await claim_daily_reward(db_session, None, account.id, now=NOW)

        assert exc_info.value.retryable is True
        assert await _claim_count(db_session, account.id) == 0
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.token_balance == 0
        assert refreshed.last_login_date is None
