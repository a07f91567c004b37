"""Integration tests for badge evaluation."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update

from falvia.accounts.queries import get_account_or_raise
from falvia.badges.badge_service import (
    BadgeOutcome,
    evaluate,
    evaluate_all,
    get_account_badges,
    get_grant,
    set_badge_display,
)
from falvia.db.models import Account, BadgeGrant
from falvia.errors import AccountNotFoundError, BadgeNotFoundError
from tests.conftest import NOW


async def _set_metrics(db, account_id: int, **values) -> None:
    await db.execute(update(Account).where(Account.id == account_id).values(**values))
    await db.commit()


class TestEvaluate:
    """Grant once, never twice."""

    @pytest.mark.asyncio
    async def test_not_eligible_is_not_an_error(self, db_session, account):
        result = await evaluate(db_session, None, account.id, "active_user", now=NOW)
        assert result.outcome is BadgeOutcome.NOT_ELIGIBLE
        assert result.grant is None

    @pytest.mark.asyncio
    async def test_granted_when_threshold_met(self, db_session, account):
        await _set_metrics(db_session, account.id, total_fortunes_sent=10)
        redis = AsyncMock()

        result = await evaluate(db_session, redis, account.id, "fortune_lover", now=NOW)

        assert result.outcome is BadgeOutcome.GRANTED
        channel, payload = redis.publish.await_args.args
        assert channel == "pubsub:badge_earned"
        assert json.loads(payload) == {
            "account_id": account.id,
            "badge_key": "fortune_lover",
            "badge_name": "Fortune Lover",
        }
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.badges_earned == 1

    @pytest.mark.asyncio
    async def test_second_evaluation_already_has(self, db_session, account):
        await _set_metrics(db_session, account.id, consecutive_login_days=7)
        await evaluate(db_session, None, account.id, "active_user", now=NOW)

        again = await evaluate(db_session, None, account.id, "active_user", now=NOW)
        assert again.outcome is BadgeOutcome.ALREADY_HAS
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.badges_earned == 1

    @pytest.mark.asyncio
    async def test_badge_kept_when_streak_breaks(self, db_session, account):
        await _set_metrics(db_session, account.id, consecutive_login_days=7)
        await evaluate(db_session, None, account.id, "active_user", now=NOW)
        await _set_metrics(db_session, account.id, consecutive_login_days=1)

        again = await evaluate(db_session, None, account.id, "active_user", now=NOW)
        assert again.outcome is BadgeOutcome.ALREADY_HAS

    @pytest.mark.asyncio
    async def test_lost_race_reports_already_has(self, db_session, account, monkeypatch):
        """The grant row exists but the pre-check missed it."""
        await _set_metrics(db_session, account.id, consecutive_login_days=7)
        db_session.add(BadgeGrant(account_id=account.id, badge_key="active_user", earned_at=NOW))
        await db_session.commit()

        real_get_grant = get_grant
        calls = {"n": 0}

        async def stale_first_read(db, account_id, badge_key):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_get_grant(db, account_id, badge_key)

        monkeypatch.setattr("falvia.badges.badge_service.get_grant", stale_first_read)

        result = await evaluate(db_session, None, account.id, "active_user", now=NOW)
        assert result.outcome is BadgeOutcome.ALREADY_HAS
        assert result.grant is not None
        refreshed = await get_account_or_raise(db_session, account.id, refresh=True)
        assert refreshed.badges_earned == 0

    @pytest.mark.asyncio
    async def test_unknown_badge(self, db_session, account):
        with pytest.raises(BadgeNotFoundError):
            await evaluate(db_session, None, account.id, "night_owl", now=NOW)

    @pytest.mark.asyncio
    async def test_unknown_account(self, db_session, database):
        with pytest.raises(AccountNotFoundError):
            await evaluate(db_session, None, 4242, "active_user", now=NOW)


class TestEvaluateAll:
    """Returns only newly granted keys."""

    @pytest.mark.asyncio
    async def test_nothing_eligible(self, db_session, account):
        assert await evaluate_all(db_session, None, account.id, now=NOW) == []

    @pytest.mark.asyncio
    async def test_grants_all_eligible_then_none(self, db_session, account):
        await _set_metrics(
            db_session,
            account.id,
            consecutive_login_days=7,
            total_fortunes_sent=12,
            first_purchase_date=NOW,
        )
        granted = await evaluate_all(db_session, None, account.id, now=NOW)
        assert set(granted) == {"active_user", "fortune_lover", "vip_experience"}
        assert await evaluate_all(db_session, None, account.id, now=NOW) == []


class TestDisplay:
    """Listing and hiding earned badges."""

    @pytest.mark.asyncio
    async def test_hide_and_show(self, db_session, account):
        await _set_metrics(db_session, account.id, first_purchase_date=NOW)
        await evaluate(db_session, None, account.id, "vip_experience", now=NOW)

        listed = await get_account_badges(db_session, account.id)
        assert [(g.badge_key, r.name) for g, r in listed] == [("vip_experience", "VIP Experience")]

        await set_badge_display(db_session, account.id, "vip_experience", False)
        assert await get_account_badges(db_session, account.id) == []
        assert len(await get_account_badges(db_session, account.id, include_hidden=True)) == 1

    @pytest.mark.asyncio
    async def test_hide_unearned_badge(self, db_session, account):
        with pytest.raises(BadgeNotFoundError):
            await set_badge_display(db_session, account.id, "vip_experience", False)
