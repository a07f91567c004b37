"""Tests for the arq trial sweeper job and its schedule."""

from __future__ import annotations

from datetime import timedelta

import pytest

from falvia.db.models import TrialStatus
from falvia.trials.trial_service import get_trial_record, start_trial
from falvia.time_utils import utc_now
from falvia.workers.trial_sweeper import TrialSweeperSettings, expire_trials, sweep_minutes


class TestSchedule:
    """Cron minutes derived from the configured interval."""

    def test_every_fifteen_minutes(self):
        assert sweep_minutes(15) == {0, 15, 30, 45}

    def test_interval_clamped(self):
        assert sweep_minutes(0) == set(range(60))
        assert sweep_minutes(90) == {0}

    def test_job_registered(self):
        assert expire_trials in TrialSweeperSettings.functions
        assert len(TrialSweeperSettings.cron_jobs) == 1


class TestExpireTrialsJob:
    """The job opens its own session."""

    @pytest.mark.asyncio
    async def test_expires_lapsed_trial(self, db_session, account):
        await start_trial(db_session, None, account.id, now=utc_now() - timedelta(days=4))

        count = await expire_trials({"redis": None})

        assert count == 1
        record = await get_trial_record(db_session, account.id)
        assert record.status == TrialStatus.EXPIRED.value

    @pytest.mark.asyncio
    async def test_nothing_to_expire(self, database):
        assert await expire_trials({}) == 0
