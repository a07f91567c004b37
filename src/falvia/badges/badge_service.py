"""Badge evaluation with duplicate prevention and notification."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.queries import get_account_or_raise
from falvia.badges.badge_rules import BADGE_RULES, BadgeRule, get_rule
from falvia.database import storage_errors
from falvia.db.models import Account, BadgeGrant
from falvia.errors import BadgeNotFoundError, StorageConflictError
from falvia.time_utils import utc_now

logger = logging.getLogger(__name__)


class BadgeOutcome(str, Enum):
    GRANTED = "granted"
    ALREADY_HAS = "already_has"
    NOT_ELIGIBLE = "not_eligible"


@dataclass
class BadgeEvaluation:
    badge_key: str
    outcome: BadgeOutcome
    grant: BadgeGrant | None = None


def _rule_or_raise(badge_key: str) -> BadgeRule:
    rule = get_rule(badge_key)
    if rule is None:
        raise BadgeNotFoundError(f"Unknown badge: {badge_key}")
    return rule


async def get_grant(db: AsyncSession, account_id: int, badge_key: str) -> BadgeGrant | None:
    """Fetch the grant row for (account, badge), if any."""
    result = await db.execute(
        select(BadgeGrant).where(
            BadgeGrant.account_id == account_id,
            BadgeGrant.badge_key == badge_key,
        )
    )
    return result.scalar_one_or_none()


async def has_badge(db: AsyncSession, account_id: int, badge_key: str) -> bool:
    """Check if the account already holds a badge."""
    return await get_grant(db, account_id, badge_key) is not None


async def evaluate(
    db: AsyncSession,
    redis: object,
    account_id: int,
    badge_key: str,
    now: datetime | None = None,
) -> BadgeEvaluation:
    """Grant ``badge_key`` if the account meets its rule.

    Commits its own transaction. The (account, badge) unique constraint is
    what makes concurrent grants safe; losing that race reports
    ``ALREADY_HAS``.
    """
    rule = _rule_or_raise(badge_key)
    account = await get_account_or_raise(db, account_id, refresh=True)

    existing = await get_grant(db, account_id, badge_key)
    if existing is not None:
        return BadgeEvaluation(badge_key, BadgeOutcome.ALREADY_HAS, existing)

    if not rule.is_satisfied(account):
        return BadgeEvaluation(badge_key, BadgeOutcome.NOT_ELIGIBLE)

    now = now or utc_now()
    grant = BadgeGrant(account_id=account_id, badge_key=badge_key, earned_at=now, displayed=True)
    try:
        async with storage_errors(db):
            db.add(grant)
            await db.flush()
            await db.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(badges_earned=Account.badges_earned + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
    except StorageConflictError:
        logger.info("Badge %s already granted to account %d (race)", badge_key, account_id)
        return BadgeEvaluation(badge_key, BadgeOutcome.ALREADY_HAS, await get_grant(db, account_id, badge_key))

    logger.info("Granted badge %s to account %d", badge_key, account_id)
    await _emit_badge_earned(redis, account_id, rule)
    return BadgeEvaluation(badge_key, BadgeOutcome.GRANTED, grant)


async def evaluate_all(
    db: AsyncSession,
    redis: object,
    account_id: int,
    now: datetime | None = None,
) -> list[str]:
    """Evaluate every known badge. Returns the keys granted by this call."""
    granted: list[str] = []
    for badge_key in BADGE_RULES:
        result = await evaluate(db, redis, account_id, badge_key, now=now)
        if result.outcome is BadgeOutcome.GRANTED:
            granted.append(badge_key)
    return granted


async def get_account_badges(
    db: AsyncSession,
    account_id: int,
    include_hidden: bool = False,
) -> list[tuple[BadgeGrant, BadgeRule]]:
    """List an account's grants (newest first) with their rule rows."""
    await get_account_or_raise(db, account_id)
    stmt = select(BadgeGrant).where(BadgeGrant.account_id == account_id)
    if not include_hidden:
        stmt = stmt.where(BadgeGrant.displayed.is_(True))
    result = await db.execute(stmt.order_by(BadgeGrant.earned_at.desc()))
    return [
        (grant, BADGE_RULES[grant.badge_key])
        for grant in result.scalars()
        if grant.badge_key in BADGE_RULES
    ]


async def set_badge_display(
    db: AsyncSession,
    account_id: int,
    badge_key: str,
    displayed: bool,
) -> BadgeGrant:
    """Show or hide an earned badge on the profile."""
    _rule_or_raise(badge_key)
    await get_account_or_raise(db, account_id)
    grant = await get_grant(db, account_id, badge_key)
    if grant is None:
        raise BadgeNotFoundError(f"Account {account_id} has not earned {badge_key}")

    async with storage_errors(db):
        grant.displayed = displayed
        await db.commit()
    return grant


async def _emit_badge_earned(redis: object, account_id: int, rule: BadgeRule) -> None:
    """Broadcast the grant for push delivery."""
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[attr-defined]
            "pubsub:badge_earned",
            json.dumps({
                "account_id": account_id,
                "badge_key": rule.key.value,
                "badge_name": rule.name,
            }),
        )
    except Exception:
        logger.warning("Failed to publish badge_earned notification", exc_info=True)
