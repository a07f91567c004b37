"""Streak tracking: decides whether today's claim is new and how long the streak becomes.

Pure functions only; the reward service feeds them the stored projection.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from falvia.time_utils import reference_date


@dataclass(frozen=True)
class StreakDecision:
    today: date
    is_new_claim: bool
    consecutive_days: int


def compute_streak(
    last_login_date: date | None,
    consecutive_login_days: int,
    now: datetime,
    tz_name: str = "UTC",
) -> StreakDecision:
    """Compute (is_new_claim, new_consecutive_days) for a claim at ``now``.

    - last claim today (or later, after a reference zone change): not new
    - last claim yesterday: streak + 1
    - no claim yet, or a gap of 2+ days: streak restarts at 1
    """
    today = reference_date(now, tz_name)

    if last_login_date is not None and last_login_date >= today:
        return StreakDecision(today, False, consecutive_login_days)

    if last_login_date == today - timedelta(days=1):
        return StreakDecision(today, True, consecutive_login_days + 1)

    return StreakDecision(today, True, 1)


def effective_streak(last_login_date: date | None, consecutive_login_days: int, today: date) -> int:
    """Streak length as seen on ``today``: 0 once a day has been missed."""
    if last_login_date is None:
        return 0
    if last_login_date >= today - timedelta(days=1):
        return consecutive_login_days
    return 0
