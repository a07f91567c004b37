"""Read-through Redis cache for streak status.

Entries are tagged with the reference date they were computed for and are
ignored on any other day. The cache is a hint for status reads only;
claims always go to the account row.
"""

from __future__ import annotations

import json
import logging
from datetime import date

logger = logging.getLogger(__name__)

STREAK_STATUS_CACHE_KEY = "streak_status:{account_id}"


async def read_cached_status(redis: object, account_id: int, today: date) -> dict | None:
    """Return the cached status if it was computed for ``today``."""
    if redis is None:
        return None
    try:
        cached = await redis.get(STREAK_STATUS_CACHE_KEY.format(account_id=account_id))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Streak status cache read failed", exc_info=True)
        return None
    if not cached:
        return None
    try:
        status = json.loads(cached)
    except (json.JSONDecodeError, TypeError):
        return None
    if status.get("reference_date") != today.isoformat():
        return None
    return status


async def write_cached_status(redis: object, account_id: int, status: dict, ttl_seconds: int) -> None:
    """Store a freshly computed status."""
    if redis is None:
        return
    try:
        await redis.setex(  # type: ignore[attr-defined]
            STREAK_STATUS_CACHE_KEY.format(account_id=account_id),
            ttl_seconds,
            json.dumps(status),
        )
    except Exception:
        logger.warning("Streak status cache write failed", exc_info=True)


async def invalidate_cached_status(redis: object, account_id: int) -> None:
    """Drop the entry after a balance change outside the claim path."""
    if redis is None:
        return
    try:
        await redis.delete(STREAK_STATUS_CACHE_KEY.format(account_id=account_id))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Streak status cache invalidation failed", exc_info=True)
