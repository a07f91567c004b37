"""Daily login reward tiers.

Day 7 of a streak pays the bonus. The streak keeps counting after day 7
and every later day pays the base reward; there is no weekly cycle reset.
"""

from __future__ import annotations

BASE_DAILY_REWARD = 1

DAILY_REWARD_TABLE: list[dict] = [
    {"day": 1, "tokens": 1},
    {"day": 2, "tokens": 1},
    {"day": 3, "tokens": 1},
    {"day": 4, "tokens": 1},
    {"day": 5, "tokens": 1},
    {"day": 6, "tokens": 1},
    {"day": 7, "tokens": 2},
]

_TOKENS_BY_DAY = {row["day"]: row["tokens"] for row in DAILY_REWARD_TABLE}


def compute_daily_reward(consecutive_days: int) -> int:
    """Tokens earned for the claim that makes the streak ``consecutive_days`` long."""
    if consecutive_days < 1:
        msg = f"consecutive_days must be >= 1, got {consecutive_days}"
        raise ValueError(msg)
    return _TOKENS_BY_DAY.get(consecutive_days, BASE_DAILY_REWARD)
