"""Integration tests for the streak status read-through cache."""

from __future__ import annotations

import json
from datetime import date
from unittest.mock import AsyncMock

import pytest

from falvia.rewards.daily_reward_service import get_current_streak_status
from falvia.rewards.status_cache import (
    invalidate_cached_status,
    read_cached_status,
    write_cached_status,
)
from tests.conftest import NOW


class TestStatusCache:
    """Entries only count for the day they were computed on."""

    @pytest.mark.asyncio
    async def test_no_redis(self):
        assert await read_cached_status(None, 1, date(2026, 3, 10)) is None
        await write_cached_status(None, 1, {}, 60)
        await invalidate_cached_status(None, 1)

    @pytest.mark.asyncio
    async def test_hit_for_today(self):
        redis = AsyncMock()
        redis.get.return_value = json.dumps({"reference_date": "2026-03-10", "consecutive_days": 3})
        cached = await read_cached_status(redis, 1, date(2026, 3, 10))
        assert cached["consecutive_days"] == 3
        redis.get.assert_awaited_once_with("streak_status:1")

    @pytest.mark.asyncio
    async def test_stale_day_is_ignored(self):
        redis = AsyncMock()
        redis.get.return_value = json.dumps({"reference_date": "2026-03-09", "consecutive_days": 3})
        assert await read_cached_status(redis, 1, date(2026, 3, 10)) is None

    @pytest.mark.asyncio
    async def test_redis_failure_is_a_miss(self):
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("down")
        assert await read_cached_status(redis, 1, date(2026, 3, 10)) is None

    @pytest.mark.asyncio
    async def test_invalidate_deletes_key(self):
        redis = AsyncMock()
        await invalidate_cached_status(redis, 7)
        redis.delete.assert_awaited_once_with("streak_status:7")

    @pytest.mark.asyncio
    async def test_status_served_from_cache(self, db_session, account):
        redis = AsyncMock()
        redis.get.return_value = json.dumps({
            "reference_date": "2026-03-10",
            "last_login_date": "2026-03-10",
            "consecutive_days": 5,
            "has_claimed_today": True,
            "next_reward": 1,
            "token_balance": 9,
        })
        status = await get_current_streak_status(db_session, redis, account.id, now=NOW)
        assert status["consecutive_days"] == 5
        redis.setex.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_miss_populates_cache(self, db_session, account):
        redis = AsyncMock()
        redis.get.return_value = None
        status = await get_current_streak_status(db_session, redis, account.id, now=NOW)
        assert status["reference_date"] == "2026-03-10"
        redis.setex.assert_awaited_once()
