"""Daily reward endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.dependencies import get_db, get_redis_dep
from falvia.errors import ErrorCode
from falvia.rewards.daily_reward_service import (
    claim_daily_reward,
    get_current_streak_status,
    get_login_history,
)
from falvia.rewards.schemas import (
    ClaimResponse,
    LoginHistoryEntry,
    LoginHistoryResponse,
    StreakStatusResponse,
)
from falvia.schemas import Envelope, ok
from falvia.time_utils import as_utc

router = APIRouter(prefix="/api/v1/accounts/{account_id}/daily-reward", tags=["Daily Reward"])


@router.post("/claim", response_model=Envelope[ClaimResponse])
async def claim(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Claim today's reward. A repeat claim answers ALREADY_CLAIMED_TODAY with the same shape."""
    result = await claim_daily_reward(db, redis, account_id)
    data = ClaimResponse(
        claim_date=result.claim_date,
        consecutive_days=result.consecutive_days,
        tokens_earned=result.tokens_earned,
        total_balance=result.total_balance,
        message=result.message,
        badge=result.badge,
    )
    if not result.claimed:
        return Envelope(
            success=False,
            data=data,
            error=result.message,
            code=ErrorCode.ALREADY_CLAIMED_TODAY.value,
        )
    return ok(data)


@router.get("/status", response_model=Envelope[StreakStatusResponse])
async def status(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Current streak and whether today's reward is still available."""
    return ok(StreakStatusResponse(**await get_current_streak_status(db, redis, account_id)))


@router.get("/history", response_model=Envelope[LoginHistoryResponse])
async def history(
    account_id: int,
    limit: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Recent claims, newest first."""
    records = await get_login_history(db, account_id, limit)
    return ok(LoginHistoryResponse(entries=[
        LoginHistoryEntry(
            claim_date=r.claim_date,
            consecutive_days=r.consecutive_days,
            tokens_earned=r.tokens_earned,
            created_at=as_utc(r.created_at),
        )
        for r in records
    ]))
