"""Account lookups shared by every rewards service."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.db.models import Account
from falvia.errors import AccountNotFoundError


async def get_account(db: AsyncSession, account_id: int) -> Account | None:
    """Fetch an account by id."""
    result = await db.execute(select(Account).where(Account.id == account_id))
    return result.scalar_one_or_none()


async def get_account_or_raise(db: AsyncSession, account_id: int, *, refresh: bool = False) -> Account:
    """Fetch an account or raise ACCOUNT_NOT_FOUND.

    ``refresh`` forces a reload, for callers that need the authoritative
    row after a bulk UPDATE in the same session.
    """
    stmt = select(Account).where(Account.id == account_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(f"Account {account_id} not found")
    return account


async def get_account_by_referral_code(db: AsyncSession, code: str) -> Account | None:
    """Resolve a normalized referral code to its owner."""
    result = await db.execute(select(Account).where(Account.referral_code == code))
    return result.scalar_one_or_none()
