"""Reference-timezone calendar helpers shared by the rewards services."""

from __future__ import annotations

from datetime import date, datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes read back from storage as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@lru_cache(maxsize=16)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def reference_date(now: datetime, tz_name: str = "UTC") -> date:
    """Calendar date of ``now`` in the fixed reference timezone.

    Every device claiming for the same account must agree on "today", so
    the device's local zone is never used.
    """
    return as_utc(now).astimezone(_zone(tz_name)).date()
