"""Health, readiness, and version endpoints.

Readiness queries the accounts table, so it fails until migrations have
run. Version reports the reward calendar: the reference timezone and the
day a claim made right now would count for.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.config import get_settings
from falvia.database import get_session
from falvia.redis_client import get_redis
from falvia.time_utils import reference_date, utc_now

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: checks the rewards schema and Redis connectivity."""
    checks: dict[str, object] = {}

    try:
        result = await db.execute(text("SELECT 1 FROM accounts LIMIT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        redis = get_redis()
        await redis.ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """API version, environment and the current reward day."""
    settings = get_settings()
    today = reference_date(utc_now(), settings.reward_timezone)
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "reward_timezone": settings.reward_timezone,
        "reward_date": today.isoformat(),
    }
