"""Badge endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.badges.badge_rules import BADGE_RULES
from falvia.badges.badge_service import (
    BadgeOutcome,
    evaluate,
    evaluate_all,
    get_account_badges,
    set_badge_display,
)
from falvia.badges.schemas import (
    AccountBadgesResponse,
    AllBadgesResponse,
    BadgeDisplayRequest,
    BadgeRuleResponse,
    EarnedBadgeResponse,
    EvaluateAllResponse,
    EvaluateResponse,
)
from falvia.dependencies import get_db, get_redis_dep
from falvia.errors import ErrorCode
from falvia.schemas import Envelope, ok
from falvia.time_utils import as_utc

router = APIRouter(prefix="/api/v1", tags=["Badges"])


@router.get("/badges", response_model=Envelope[AllBadgesResponse])
async def list_badges():
    """The static badge rule table."""
    return ok(AllBadgesResponse(badges=[
        BadgeRuleResponse(
            key=rule.key.value,
            name=rule.name,
            description=rule.description,
            requirement=rule.requirement.value,
            threshold=rule.threshold,
        )
        for rule in BADGE_RULES.values()
    ]))


@router.post("/accounts/{account_id}/badges/evaluate", response_model=Envelope[EvaluateAllResponse])
async def evaluate_badges(
    account_id: int,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Evaluate every badge; returns the ones newly granted."""
    return ok(EvaluateAllResponse(granted=await evaluate_all(db, redis, account_id)))


@router.post("/accounts/{account_id}/badges/{badge_key}/evaluate", response_model=Envelope[EvaluateResponse])
async def evaluate_badge(
    account_id: int,
    badge_key: str,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Evaluate one badge. Not eligible is informational, not an error."""
    result = await evaluate(db, redis, account_id, badge_key)
    data = EvaluateResponse(
        badge_key=result.badge_key,
        outcome=result.outcome.value,
        earned_at=as_utc(result.grant.earned_at) if result.grant else None,
    )
    code = ErrorCode.BADGE_NOT_ELIGIBLE.value if result.outcome is BadgeOutcome.NOT_ELIGIBLE else None
    return ok(data, code=code)


@router.get("/accounts/{account_id}/badges", response_model=Envelope[AccountBadgesResponse])
async def account_badges(
    account_id: int,
    include_hidden: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """Badges the account has earned."""
    grants = await get_account_badges(db, account_id, include_hidden=include_hidden)
    earned = [
        EarnedBadgeResponse(
            key=grant.badge_key,
            name=rule.name,
            description=rule.description,
            earned_at=as_utc(grant.earned_at),
            displayed=grant.displayed,
        )
        for grant, rule in grants
    ]
    return ok(AccountBadgesResponse(
        earned=earned,
        total_available=len(BADGE_RULES),
        total_earned=len(earned),
    ))


@router.patch("/accounts/{account_id}/badges/{badge_key}", response_model=Envelope[EarnedBadgeResponse])
async def update_badge_display(
    account_id: int,
    badge_key: str,
    body: BadgeDisplayRequest,
    db: AsyncSession = Depends(get_db),
):
    """Show or hide an earned badge."""
    grant = await set_badge_display(db, account_id, badge_key, body.displayed)
    rule = BADGE_RULES[badge_key]
    return ok(EarnedBadgeResponse(
        key=grant.badge_key,
        name=rule.name,
        description=rule.description,
        earned_at=as_utc(grant.earned_at),
        displayed=grant.displayed,
    ))
