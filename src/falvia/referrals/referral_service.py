"""Referral redemption: one-time, two-sided token bonus."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.queries import get_account_by_referral_code, get_account_or_raise
from falvia.accounts.referral_codes import normalize_referral_code
from falvia.badges.badge_service import evaluate_all
from falvia.config import get_settings
from falvia.database import storage_errors
from falvia.db.models import Account, ReferralRecord, TransactionKind
from falvia.errors import (
    ReferralAlreadyUsedError,
    ReferralCodeNotFoundError,
    SelfReferralError,
    StorageConflictError,
    TransientIOError,
)
from falvia.ledger.balance_service import credit_tokens
from falvia.rewards.status_cache import invalidate_cached_status
from falvia.time_utils import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ReferralRedemption:
    bonus_awarded: int
    referrer_id: int
    token_balance: int
    badges: list[str] = field(default_factory=list)


async def get_referee_record(db: AsyncSession, account_id: int) -> ReferralRecord | None:
    """The redemption this account made as referee, if any."""
    result = await db.execute(select(ReferralRecord).where(ReferralRecord.referee_id == account_id))
    return result.scalar_one_or_none()


async def redeem_referral_code(
    db: AsyncSession,
    redis: object,
    account_id: int,
    code: str,
    now: datetime | None = None,
) -> ReferralRedemption:
    """Redeem another account's referral code.

    Validation order is fixed: own code, then already redeemed, then
    unknown code. The record, both credits and the referee's flag commit
    together; the unique referee_id is what stops two concurrent
    redemptions from both paying out.
    """
    settings = get_settings()
    now = as_utc(now) if now is not None else utc_now()
    normalized = normalize_referral_code(code)

    account = await get_account_or_raise(db, account_id, refresh=True)
    if normalized == account.referral_code:
        logger.info("Account %d tried to redeem its own referral code", account_id)
        raise SelfReferralError("You cannot use your own referral code")

    if account.referral_used or await get_referee_record(db, account_id) is not None:
        raise ReferralAlreadyUsedError("This account has already used a referral code")

    referrer = await get_account_by_referral_code(db, normalized)
    if referrer is None:
        raise ReferralCodeNotFoundError("Referral code not found")
    referrer_id = referrer.id

    bonus = settings.referral_bonus_tokens
    record = ReferralRecord(referrer_id=referrer_id, referee_id=account_id, code=normalized, used_at=now)
    try:
        async with storage_errors(db):
            db.add(record)
            await db.flush()

            flagged = await db.execute(
                update(Account)
                .where(Account.id == account_id, Account.referral_used.is_(False))
                .values(referral_used=True, referred_by_code=normalized, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if flagged.rowcount == 0:
                await db.rollback()
                raise ReferralAlreadyUsedError("This account has already used a referral code")

            await db.execute(
                update(Account)
                .where(Account.id == referrer_id)
                .values(referral_count=Account.referral_count + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )

            # Credit in ascending account id order.
            balances: dict[int, int] = {}
            for target_id, side in sorted(((referrer_id, "referrer"), (account_id, "referee"))):
                balances[target_id] = await credit_tokens(
                    db,
                    target_id,
                    bonus,
                    TransactionKind.REFERRAL_BONUS,
                    idempotency_key=f"referral:{record.id}:{side}",
                    reference_id=str(record.id),
                    description=f"Referral bonus ({side})",
                    now=now,
                )
            await db.commit()
    except StorageConflictError as exc:
        logger.info("Referral redemption by account %d lost a race", account_id)
        raise ReferralAlreadyUsedError("This account has already used a referral code") from exc

    logger.info(
        "Account %d redeemed referral code of account %d (+%d tokens each)",
        account_id, referrer_id, bonus,
    )
    result = ReferralRedemption(
        bonus_awarded=bonus,
        referrer_id=referrer_id,
        token_balance=balances[account_id],
    )

    for target_id in (referrer_id, account_id):
        await invalidate_cached_status(redis, target_id)
        try:
            granted = await evaluate_all(db, redis, target_id, now=now)
        except TransientIOError:
            logger.warning("Badge evaluation after referral failed for account %d", target_id, exc_info=True)
            continue
        if target_id == account_id:
            result.badges = granted
    return result


async def get_referral_summary(db: AsyncSession, account_id: int) -> dict:
    """Code, referral count and whether the account has redeemed one."""
    account = await get_account_or_raise(db, account_id, refresh=True)
    return {
        "referral_code": account.referral_code,
        "referral_count": account.referral_count,
        "has_used_referral": account.referral_used,
        "referred_by_code": account.referred_by_code,
    }


async def get_referral_stats(db: AsyncSession, account_id: int, limit: int = 50) -> dict:
    """Summary plus the referees this account brought in, newest first."""
    summary = await get_referral_summary(db, account_id)

    total = await db.scalar(
        select(func.count()).select_from(ReferralRecord).where(ReferralRecord.referrer_id == account_id)
    )
    result = await db.execute(
        select(ReferralRecord, Account.display_name)
        .join(Account, Account.id == ReferralRecord.referee_id)
        .where(ReferralRecord.referrer_id == account_id)
        .order_by(ReferralRecord.used_at.desc(), ReferralRecord.id.desc())
        .limit(limit)
    )
    referees = [
        {
            "account_id": record.referee_id,
            "display_name": display_name,
            "joined_at": as_utc(record.used_at),
        }
        for record, display_name in result.all()
    ]
    return {**summary, "total_referrals": int(total or 0), "referees": referees}
