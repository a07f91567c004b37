"""Daily login reward: exactly one credited claim per account per reference day."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.queries import get_account_or_raise
from falvia.badges.badge_rules import BadgeKey
from falvia.badges.badge_service import BadgeOutcome, evaluate
from falvia.config import get_settings
from falvia.database import storage_errors
from falvia.db.models import Account, DailyClaimRecord, TransactionKind
from falvia.errors import StorageConflictError, TransientIOError
from falvia.ledger.balance_service import credit_tokens
from falvia.rewards.reward_table import compute_daily_reward
from falvia.rewards.status_cache import read_cached_status, write_cached_status
from falvia.rewards.streak import StreakDecision, compute_streak, effective_streak
from falvia.time_utils import as_utc, reference_date, utc_now

logger = logging.getLogger(__name__)

# Streak length that triggers the active-user badge check.
STREAK_BADGE_THRESHOLD = 7

_MAX_CLAIM_ATTEMPTS = 3


@dataclass
class DailyClaimResult:
    claimed: bool
    claim_date: date
    consecutive_days: int
    tokens_earned: int
    total_balance: int
    badge: str | None = None

    @property
    def message(self) -> str:
        if not self.claimed:
            return "Daily reward already claimed today"
        if self.consecutive_days >= STREAK_BADGE_THRESHOLD:
            return f"{self.consecutive_days} days in a row! You earned {self.tokens_earned} tokens"
        return f"Daily reward claimed: {self.tokens_earned} tokens"


async def get_claim(db: AsyncSession, account_id: int, claim_date: date) -> DailyClaimRecord | None:
    """Fetch the claim row for one reference day."""
    result = await db.execute(
        select(DailyClaimRecord).where(
            DailyClaimRecord.account_id == account_id,
            DailyClaimRecord.claim_date == claim_date,
        )
    )
    return result.scalar_one_or_none()


async def claim_daily_reward(
    db: AsyncSession,
    redis: object,
    account_id: int,
    now: datetime | None = None,
) -> DailyClaimResult:
    """Claim today's login reward.

    One transaction covers:
    1. Insert the DailyClaimRecord (unique per account and day, the sole gate)
    2. Append the token transaction and increment the balance
    3. Advance last_login_date / consecutive_login_days, guarded on the
       last_login_date the streak was computed from

    A second caller for the same day fails at step 1 and gets the existing
    claim back as ALREADY_CLAIMED_TODAY. If step 3 finds the projection
    moved underneath it, the whole claim is rolled back and recomputed.
    """
    settings = get_settings()
    now = as_utc(now) if now is not None else utc_now()

    for _ in range(_MAX_CLAIM_ATTEMPTS):
        account = await get_account_or_raise(db, account_id, refresh=True)
        decision = compute_streak(
            account.last_login_date,
            account.consecutive_login_days,
            now,
            settings.reward_timezone,
        )
        if not decision.is_new_claim:
            return await _already_claimed(db, account_id, decision.today)

        expected_last = account.last_login_date
        longest = max(account.longest_login_streak, decision.consecutive_days)
        tokens = compute_daily_reward(decision.consecutive_days)

        try:
            async with storage_errors(db):
                record = DailyClaimRecord(
                    account_id=account_id,
                    claim_date=decision.today,
                    consecutive_days=decision.consecutive_days,
                    tokens_earned=tokens,
                    created_at=now,
                )
                db.add(record)
                await db.flush()

                balance = await credit_tokens(
                    db,
                    account_id,
                    tokens,
                    TransactionKind.DAILY_REWARD,
                    idempotency_key=f"daily:{account_id}:{decision.today.isoformat()}",
                    reference_id=str(record.id),
                    description=f"Daily login reward, day {decision.consecutive_days}",
                    now=now,
                )

                if not await _advance_projection(db, account_id, expected_last, decision, longest, now):
                    await db.rollback()
                    logger.info("Streak projection moved for account %d, recomputing claim", account_id)
                    continue

                await db.commit()
        except StorageConflictError:
            logger.info("Daily reward for account %d on %s lost a race", account_id, decision.today)
            return await _already_claimed(db, account_id, decision.today)

        logger.info(
            "Account %d claimed day %d (+%d tokens, balance %d)",
            account_id, decision.consecutive_days, tokens, balance,
        )
        result = DailyClaimResult(
            claimed=True,
            claim_date=decision.today,
            consecutive_days=decision.consecutive_days,
            tokens_earned=tokens,
            total_balance=balance,
        )

        await write_cached_status(
            redis,
            account_id,
            _build_status(decision.today, decision.consecutive_days, decision.today, balance),
            settings.streak_status_cache_ttl_seconds,
        )

        if decision.consecutive_days >= STREAK_BADGE_THRESHOLD:
            result.badge = await _check_streak_badge(db, redis, account_id, now)
        return result

    raise StorageConflictError("Account changed during the claim, retry")


async def _advance_projection(
    db: AsyncSession,
    account_id: int,
    expected_last: date | None,
    decision: StreakDecision,
    longest: int,
    now: datetime,
) -> bool:
    """Move the cached streak fields forward if nobody else already did."""
    guard = (
        Account.last_login_date.is_(None)
        if expected_last is None
        else Account.last_login_date == expected_last
    )
    result = await db.execute(
        update(Account)
        .where(Account.id == account_id, guard)
        .values(
            last_login_date=decision.today,
            consecutive_login_days=decision.consecutive_days,
            longest_login_streak=longest,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _already_claimed(db: AsyncSession, account_id: int, today: date) -> DailyClaimResult:
    """Same shape as a successful claim, reflecting no change."""
    record = await get_claim(db, account_id, today)
    account = await get_account_or_raise(db, account_id, refresh=True)
    return DailyClaimResult(
        claimed=False,
        claim_date=today,
        consecutive_days=record.consecutive_days if record else account.consecutive_login_days,
        tokens_earned=0,
        total_balance=account.token_balance,
    )


async def _check_streak_badge(db: AsyncSession, redis: object, account_id: int, now: datetime) -> str | None:
    """Run the active-user badge check after a committed claim."""
    try:
        evaluation = await evaluate(db, redis, account_id, BadgeKey.ACTIVE_USER.value, now=now)
    except TransientIOError:
        # The credit is committed; evaluate_all will pick the badge up later.
        logger.warning("Streak badge check failed for account %d", account_id, exc_info=True)
        return None
    if evaluation.outcome is BadgeOutcome.GRANTED:
        return evaluation.badge_key
    return None


def _build_status(
    last_login_date: date | None,
    consecutive_days: int,
    today: date,
    token_balance: int,
) -> dict:
    streak = effective_streak(last_login_date, consecutive_days, today)
    return {
        "reference_date": today.isoformat(),
        "last_login_date": last_login_date.isoformat() if last_login_date else None,
        "consecutive_days": streak,
        "has_claimed_today": last_login_date == today,
        "next_reward": compute_daily_reward(streak + 1),
        "token_balance": token_balance,
    }


async def get_current_streak_status(
    db: AsyncSession,
    redis: object,
    account_id: int,
    now: datetime | None = None,
) -> dict:
    """Streak status for display. Served from cache when it is for today."""
    settings = get_settings()
    now = as_utc(now) if now is not None else utc_now()
    today = reference_date(now, settings.reward_timezone)

    cached = await read_cached_status(redis, account_id, today)
    if cached is not None:
        return cached

    account = await get_account_or_raise(db, account_id, refresh=True)
    status = _build_status(
        account.last_login_date, account.consecutive_login_days, today, account.token_balance
    )
    await write_cached_status(redis, account_id, status, settings.streak_status_cache_ttl_seconds)
    return status


async def get_login_history(db: AsyncSession, account_id: int, limit: int = 30) -> list[DailyClaimRecord]:
    """Most recent claims first."""
    await get_account_or_raise(db, account_id)
    result = await db.execute(
        select(DailyClaimRecord)
        .where(DailyClaimRecord.account_id == account_id)
        .order_by(DailyClaimRecord.claim_date.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
