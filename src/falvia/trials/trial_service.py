"""Free trial lifecycle: ELIGIBLE -> ACTIVE -> {EXPIRED | CONVERTED | CANCELLED}.

ELIGIBLE is implicit (no record and trial_used is false). Nothing returns
to ELIGIBLE: trial_used is set when the trial starts and never cleared.
Stored status can lag behind end_date until the expiry sweep runs, so
"active" is always recomputed as ``status == ACTIVE and now < end_date``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.queries import get_account_or_raise
from falvia.config import get_settings
from falvia.database import storage_errors
from falvia.db.models import Account, TrialRecord, TrialStatus
from falvia.errors import (
    InvalidRequestError,
    StorageConflictError,
    TrialAlreadyActiveError,
    TrialAlreadyUsedError,
    TrialNotFoundError,
)
from falvia.time_utils import as_utc, utc_now
from falvia.trials.events import publish_trial_change

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[TrialStatus, list[TrialStatus]] = {
    TrialStatus.ACTIVE: [TrialStatus.EXPIRED, TrialStatus.CONVERTED, TrialStatus.CANCELLED],
    TrialStatus.EXPIRED: [],
    TrialStatus.CONVERTED: [],
    TrialStatus.CANCELLED: [],
}

END_REASONS: dict[str, TrialStatus] = {
    "expired": TrialStatus.EXPIRED,
    "converted": TrialStatus.CONVERTED,
    "cancelled": TrialStatus.CANCELLED,
}


def validate_transition(current: TrialStatus, target: TrialStatus) -> None:
    """Raise ValueError if ``current -> target`` is not a legal move."""
    if target not in VALID_TRANSITIONS[current]:
        msg = f"Invalid transition: {current.value} -> {target.value}"
        raise ValueError(msg)


def is_trial_active(record: TrialRecord | None, now: datetime) -> bool:
    """Effective activity, independent of whether the sweep has run."""
    if record is None:
        return False
    return record.status == TrialStatus.ACTIVE.value and as_utc(now) < as_utc(record.end_date)


def calculate_remaining_time(end_date: datetime | None, now: datetime) -> dict:
    """Break the time left until ``end_date`` into days/hours/minutes."""
    if end_date is None:
        return {"days": 0, "hours": 0, "minutes": 0, "total_hours": 0, "expired": True}

    remaining = as_utc(end_date) - as_utc(now)
    total_seconds = int(remaining.total_seconds())
    if total_seconds <= 0:
        return {"days": 0, "hours": 0, "minutes": 0, "total_hours": 0, "expired": True}

    return {
        "days": total_seconds // 86400,
        "hours": (total_seconds % 86400) // 3600,
        "minutes": (total_seconds % 3600) // 60,
        "total_hours": total_seconds // 3600,
        "expired": False,
    }


@dataclass
class TrialStatusView:
    can_start_trial: bool
    is_trial_active: bool
    remaining_days: int
    remaining_hours: int
    remaining_minutes: int
    trial_end_date: datetime | None
    show_expiry_warning: bool
    status: str | None


async def get_trial_record(db: AsyncSession, account_id: int) -> TrialRecord | None:
    """Fetch the account's trial row (at most one exists)."""
    result = await db.execute(
        select(TrialRecord)
        .where(TrialRecord.account_id == account_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def check_trial_status(
    db: AsyncSession,
    account_id: int,
    now: datetime | None = None,
) -> TrialStatusView:
    """Report eligibility and, if active, the time left."""
    settings = get_settings()
    now = as_utc(now) if now is not None else utc_now()
    account = await get_account_or_raise(db, account_id, refresh=True)
    record = await get_trial_record(db, account_id)

    active = is_trial_active(record, now)
    if not active:
        return TrialStatusView(
            can_start_trial=not account.trial_used and record is None,
            is_trial_active=False,
            remaining_days=0,
            remaining_hours=0,
            remaining_minutes=0,
            trial_end_date=as_utc(record.end_date) if record else None,
            show_expiry_warning=False,
            status=_effective_status(record, now),
        )

    remaining = calculate_remaining_time(record.end_date, now)
    return TrialStatusView(
        can_start_trial=False,
        is_trial_active=True,
        remaining_days=remaining["days"],
        remaining_hours=remaining["hours"],
        remaining_minutes=remaining["minutes"],
        trial_end_date=as_utc(record.end_date),
        show_expiry_warning=remaining["total_hours"] < settings.trial_expiry_warning_hours,
        status=TrialStatus.ACTIVE.value,
    )


def _effective_status(record: TrialRecord | None, now: datetime) -> str | None:
    if record is None:
        return None
    if record.status == TrialStatus.ACTIVE.value and not is_trial_active(record, now):
        return TrialStatus.EXPIRED.value
    return record.status


async def has_premium_access(db: AsyncSession, account_id: int, now: datetime | None = None) -> bool:
    """Trial-based premium check, recomputed from end_date."""
    now = as_utc(now) if now is not None else utc_now()
    return is_trial_active(await get_trial_record(db, account_id), now)


async def _raise_for_existing(db: AsyncSession, account_id: int, now: datetime) -> None:
    record = await get_trial_record(db, account_id)
    if is_trial_active(record, now):
        raise TrialAlreadyActiveError("A trial is already active")
    raise TrialAlreadyUsedError("This account has already used its free trial")


async def start_trial(
    db: AsyncSession,
    redis: object,
    account_id: int,
    now: datetime | None = None,
) -> TrialRecord:
    """Start the account's one free trial.

    trial_used flips false -> true with a conditional UPDATE, and the
    record insert is unique per account; either guard losing a race is
    reported as TRIAL_ALREADY_ACTIVE or TRIAL_ALREADY_USED.
    """
    settings = get_settings()
    now = as_utc(now) if now is not None else utc_now()
    account = await get_account_or_raise(db, account_id, refresh=True)
    record = await get_trial_record(db, account_id)

    if is_trial_active(record, now):
        raise TrialAlreadyActiveError("A trial is already active")
    if account.trial_used or record is not None:
        raise TrialAlreadyUsedError("This account has already used its free trial")

    record = TrialRecord(
        account_id=account_id,
        start_date=now,
        end_date=now + timedelta(days=settings.trial_duration_days),
        status=TrialStatus.ACTIVE.value,
        used_flag=True,
    )
    try:
        async with storage_errors(db):
            result = await db.execute(
                update(Account)
                .where(Account.id == account_id, Account.trial_used.is_(False))
                .values(trial_used=True, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                await _raise_for_existing(db, account_id, now)
            db.add(record)
            await db.flush()
            await db.commit()
    except StorageConflictError:
        await _raise_for_existing(db, account_id, now)

    logger.info("Started trial for account %d until %s", account_id, record.end_date.isoformat())
    await publish_trial_change(redis, record, "trial_started")
    return record


async def end_trial(
    db: AsyncSession,
    redis: object,
    account_id: int,
    reason: str,
    now: datetime | None = None,
) -> TrialRecord:
    """Move an ACTIVE trial to its terminal state. Idempotent once terminal."""
    target = END_REASONS.get(reason)
    if target is None:
        raise InvalidRequestError(f"Invalid end reason: {reason}")

    now = as_utc(now) if now is not None else utc_now()
    await get_account_or_raise(db, account_id)
    record = await get_trial_record(db, account_id)
    if record is None:
        raise TrialNotFoundError(f"Account {account_id} has no trial")

    current = TrialStatus(record.status)
    if current is not TrialStatus.ACTIVE:
        return record
    validate_transition(current, target)

    async with storage_errors(db):
        result = await db.execute(
            update(TrialRecord)
            .where(TrialRecord.id == record.id, TrialRecord.status == TrialStatus.ACTIVE.value)
            .values(status=target.value, ended_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    record = await get_trial_record(db, account_id)
    if result.rowcount == 1:
        logger.info("Trial for account %d ended: %s", account_id, target.value)
        await publish_trial_change(redis, record, f"trial_{target.value.lower()}")
    return record


async def auto_expire_trials(db: AsyncSession, redis: object, now: datetime | None = None) -> int:
    """Sweep ACTIVE trials whose end_date has passed to EXPIRED.

    Returns the number of trials expired by this run.
    """
    now = as_utc(now) if now is not None else utc_now()
    result = await db.execute(
        select(TrialRecord.id).where(
            TrialRecord.status == TrialStatus.ACTIVE.value,
            TrialRecord.end_date < now,
        )
    )
    ids = list(result.scalars().all())
    if not ids:
        return 0

    async with storage_errors(db):
        updated = await db.execute(
            update(TrialRecord)
            .where(TrialRecord.id.in_(ids), TrialRecord.status == TrialStatus.ACTIVE.value)
            .values(status=TrialStatus.EXPIRED.value, ended_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    expired = await db.execute(
        select(TrialRecord)
        .where(TrialRecord.id.in_(ids), TrialRecord.status == TrialStatus.EXPIRED.value)
        .execution_options(populate_existing=True)
    )
    for record in expired.scalars():
        await publish_trial_change(redis, record, "trial_expired")

    logger.info("Trial sweep expired %d trials", updated.rowcount)
    return updated.rowcount


async def get_trial_history(db: AsyncSession, account_id: int) -> TrialRecord | None:
    """The account's trial record, whatever its state."""
    await get_account_or_raise(db, account_id)
    return await get_trial_record(db, account_id)
