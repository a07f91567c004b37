"""Account lifecycle plus the fortune and purchase events that feed badge metrics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.queries import get_account_or_raise
from falvia.accounts.referral_codes import generate_unique_referral_code
from falvia.badges.badge_rules import BadgeKey
from falvia.badges.badge_service import BadgeOutcome, evaluate
from falvia.config import get_settings
from falvia.database import storage_errors
from falvia.db.models import Account, PurchaseRecord, TransactionKind, TrialStatus
from falvia.errors import StorageConflictError, TransientIOError
from falvia.ledger.balance_service import credit_tokens, debit_tokens, get_transaction
from falvia.rewards.status_cache import invalidate_cached_status
from falvia.time_utils import as_utc, utc_now
from falvia.trials.trial_service import end_trial, get_trial_record, is_trial_active

logger = logging.getLogger(__name__)

_MAX_CREATE_ATTEMPTS = 3


class PurchaseKind(str, Enum):
    TOKEN_PACK = "token_pack"
    SUBSCRIPTION = "subscription"


@dataclass
class FortuneResult:
    recorded: bool
    token_balance: int
    total_fortunes_sent: int
    badge: str | None = None


@dataclass
class PurchaseResult:
    recorded: bool
    token_balance: int
    first_purchase: bool
    trial_converted: bool = False
    badge: str | None = None


async def create_account(db: AsyncSession, display_name: str | None = None, now: datetime | None = None) -> Account:
    """Create an account with a fresh referral code."""
    now = as_utc(now) if now is not None else utc_now()
    for _ in range(_MAX_CREATE_ATTEMPTS):
        code = await generate_unique_referral_code(db)
        account = Account(display_name=display_name, referral_code=code, created_at=now)
        try:
            async with storage_errors(db):
                db.add(account)
                await db.commit()
        except StorageConflictError:
            # Another account took the code between the check and the insert.
            logger.info("Referral code collision on create, retrying")
            continue
        await db.refresh(account)
        logger.info("Created account %d with referral code %s", account.id, code)
        return account
    raise StorageConflictError("Could not allocate a unique referral code")


async def record_fortune_sent(
    db: AsyncSession,
    redis: object,
    account_id: int,
    fortune_id: str,
    now: datetime | None = None,
) -> FortuneResult:
    """Charge for a fortune and count it. Replays of the same fortune id are no-ops."""
    settings = get_settings()
    now = as_utc(now) if now is not None else utc_now()
    await get_account_or_raise(db, account_id)
    key = f"fortune:{fortune_id}"

    if await get_transaction(db, key) is not None:
        return await _fortune_replay(db, account_id)

    try:
        async with storage_errors(db):
            balance = await debit_tokens(
                db,
                account_id,
                settings.fortune_token_cost,
                TransactionKind.FORTUNE,
                idempotency_key=key,
                reference_id=fortune_id,
                description="Fortune sent",
                now=now,
            )
            await db.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(total_fortunes_sent=Account.total_fortunes_sent + 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
    except StorageConflictError:
        return await _fortune_replay(db, account_id)

    account = await get_account_or_raise(db, account_id, refresh=True)
    result = FortuneResult(
        recorded=True,
        token_balance=balance,
        total_fortunes_sent=account.total_fortunes_sent,
    )
    await invalidate_cached_status(redis, account_id)
    result.badge = await _check_badge(db, redis, account_id, BadgeKey.FORTUNE_LOVER, now)
    return result


async def _fortune_replay(db: AsyncSession, account_id: int) -> FortuneResult:
    account = await get_account_or_raise(db, account_id, refresh=True)
    return FortuneResult(
        recorded=False,
        token_balance=account.token_balance,
        total_fortunes_sent=account.total_fortunes_sent,
    )


async def get_purchase(db: AsyncSession, store_transaction_id: str) -> PurchaseRecord | None:
    """The recorded purchase for a store transaction id, if any."""
    result = await db.execute(
        select(PurchaseRecord).where(PurchaseRecord.store_transaction_id == store_transaction_id)
    )
    return result.scalar_one_or_none()


async def record_purchase(
    db: AsyncSession,
    redis: object,
    account_id: int,
    store_transaction_id: str,
    product_kind: PurchaseKind,
    tokens: int = 0,
    now: datetime | None = None,
) -> PurchaseResult:
    """Apply a confirmed store purchase.

    The PurchaseRecord (unique per store transaction id) gates replays,
    whether or not the purchase carries tokens. In the same transaction it
    sets first_purchase_date once and credits purchased tokens. A
    subscription then converts an active trial.
    """
    now = as_utc(now) if now is not None else utc_now()
    await get_account_or_raise(db, account_id)

    if await get_purchase(db, store_transaction_id) is not None:
        return await _purchase_replay(db, account_id)

    try:
        async with storage_errors(db):
            db.add(PurchaseRecord(
                account_id=account_id,
                store_transaction_id=store_transaction_id,
                product_kind=product_kind.value,
                tokens=tokens,
                created_at=now,
            ))
            await db.flush()
            if tokens > 0:
                await credit_tokens(
                    db,
                    account_id,
                    tokens,
                    TransactionKind.PURCHASE,
                    idempotency_key=f"purchase:{store_transaction_id}",
                    reference_id=store_transaction_id,
                    description=f"Purchase ({product_kind.value})",
                    now=now,
                )
            first = await db.execute(
                update(Account)
                .where(Account.id == account_id, Account.first_purchase_date.is_(None))
                .values(first_purchase_date=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
    except StorageConflictError:
        logger.info("Purchase %s already recorded", store_transaction_id)
        return await _purchase_replay(db, account_id)

    result = PurchaseResult(recorded=True, token_balance=0, first_purchase=first.rowcount == 1)
    if first.rowcount == 1:
        logger.info("First purchase recorded for account %d", account_id)

    if product_kind is PurchaseKind.SUBSCRIPTION:
        trial = await get_trial_record(db, account_id)
        if is_trial_active(trial, now):
            trial = await end_trial(db, redis, account_id, "converted", now=now)
            result.trial_converted = trial.status == TrialStatus.CONVERTED.value

    account = await get_account_or_raise(db, account_id, refresh=True)
    result.token_balance = account.token_balance
    await invalidate_cached_status(redis, account_id)
    result.badge = await _check_badge(db, redis, account_id, BadgeKey.VIP_EXPERIENCE, now)
    return result


async def _purchase_replay(db: AsyncSession, account_id: int) -> PurchaseResult:
    account = await get_account_or_raise(db, account_id, refresh=True)
    return PurchaseResult(recorded=False, token_balance=account.token_balance, first_purchase=False)


async def _check_badge(
    db: AsyncSession,
    redis: object,
    account_id: int,
    badge_key: BadgeKey,
    now: datetime,
) -> str | None:
    try:
        evaluation = await evaluate(db, redis, account_id, badge_key.value, now=now)
    except TransientIOError:
        logger.warning("Badge %s check failed for account %d", badge_key.value, account_id, exc_info=True)
        return None
    if evaluation.outcome is BadgeOutcome.GRANTED:
        return evaluation.badge_key
    return None
