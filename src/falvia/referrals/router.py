"""Referral endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.dependencies import get_db, get_redis_dep
from falvia.referrals.referral_service import (
    get_referral_stats,
    get_referral_summary,
    redeem_referral_code,
)
from falvia.referrals.schemas import (
    RedeemRequest,
    RedeemResponse,
    ReferralStatsResponse,
    ReferralSummaryResponse,
)
from falvia.schemas import Envelope, ok

router = APIRouter(prefix="/api/v1/accounts/{account_id}/referral", tags=["Referrals"])


@router.post("/redeem", response_model=Envelope[RedeemResponse])
async def redeem(
    account_id: int,
    body: RedeemRequest,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Redeem another account's referral code; both sides get the bonus."""
    result = await redeem_referral_code(db, redis, account_id, body.code)
    return ok(RedeemResponse(
        bonus_awarded=result.bonus_awarded,
        token_balance=result.token_balance,
        badges=result.badges,
    ))


@router.get("", response_model=Envelope[ReferralSummaryResponse])
async def summary(account_id: int, db: AsyncSession = Depends(get_db)):
    """Own code, referral count and whether a code has been redeemed."""
    return ok(ReferralSummaryResponse(**await get_referral_summary(db, account_id)))


@router.get("/stats", response_model=Envelope[ReferralStatsResponse])
async def stats(
    account_id: int,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Summary plus the referred accounts."""
    return ok(ReferralStatsResponse(**await get_referral_stats(db, account_id, limit)))
