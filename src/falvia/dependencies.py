"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from falvia.database import get_session as _get_session
from falvia.redis_client import get_redis_or_none

get_db = _get_session


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None when not initialised) as a FastAPI dependency."""
    yield get_redis_or_none()
