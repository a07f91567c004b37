"""Token balance store: append-only ledger plus an additive cached balance.

The balance is never written as "read, add, write". Each change appends a
TokenTransaction with a unique idempotency key and then applies the same
delta with a single ``UPDATE ... SET token_balance = token_balance + :delta``.
Neither function commits; callers own the transaction so a credit and the
record that justifies it land together.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.queries import get_account_or_raise
from falvia.db.models import Account, TokenTransaction, TransactionKind
from falvia.errors import InsufficientBalanceError, InvalidRequestError
from falvia.time_utils import utc_now

logger = logging.getLogger(__name__)


async def _apply_delta(
    db: AsyncSession,
    account_id: int,
    amount: int,
    kind: TransactionKind,
    idempotency_key: str,
    reference_id: str | None,
    description: str | None,
    now: datetime,
) -> int:
    """Append the ledger row, then move the cached balance. Returns the new balance."""
    entry = TokenTransaction(
        account_id=account_id,
        amount=amount,
        kind=kind.value,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
        description=description,
        created_at=now,
    )
    db.add(entry)
    # Duplicate idempotency keys fail here, before the balance moves.
    await db.flush()

    stmt = update(Account).where(Account.id == account_id)
    if amount < 0:
        stmt = stmt.where(Account.token_balance >= -amount)
    result = await db.execute(
        stmt.values(token_balance=Account.token_balance + amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise InsufficientBalanceError(
            f"Account {account_id} cannot cover a debit of {-amount} tokens"
        )

    balance = await db.scalar(select(Account.token_balance).where(Account.id == account_id))
    return int(balance or 0)


async def credit_tokens(
    db: AsyncSession,
    account_id: int,
    amount: int,
    kind: TransactionKind,
    idempotency_key: str,
    reference_id: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> int:
    """Credit ``amount`` tokens. Returns the new balance; does not commit."""
    if amount <= 0:
        raise InvalidRequestError("Credit amount must be positive")
    balance = await _apply_delta(
        db, account_id, amount, kind, idempotency_key, reference_id, description, now or utc_now()
    )
    logger.info("Credited %d tokens to account %d (%s)", amount, account_id, idempotency_key)
    return balance


async def debit_tokens(
    db: AsyncSession,
    account_id: int,
    amount: int,
    kind: TransactionKind,
    idempotency_key: str,
    reference_id: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> int:
    """Debit ``amount`` tokens without letting the balance go negative."""
    if amount <= 0:
        raise InvalidRequestError("Debit amount must be positive")
    balance = await _apply_delta(
        db, account_id, -amount, kind, idempotency_key, reference_id, description, now or utc_now()
    )
    logger.info("Debited %d tokens from account %d (%s)", amount, account_id, idempotency_key)
    return balance


async def get_transaction(db: AsyncSession, idempotency_key: str) -> TokenTransaction | None:
    """Look up a ledger entry by its idempotency key."""
    result = await db.execute(
        select(TokenTransaction).where(TokenTransaction.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def get_transaction_history(
    db: AsyncSession,
    account_id: int,
    page: int = 1,
    per_page: int = 50,
) -> tuple[list[TokenTransaction], int]:
    """Return one page of ledger entries (newest first) and the total count."""
    await get_account_or_raise(db, account_id)

    total_result = await db.execute(
        select(func.count()).select_from(TokenTransaction).where(TokenTransaction.account_id == account_id)
    )
    total = total_result.scalar_one()

    offset = (page - 1) * per_page
    result = await db.execute(
        select(TokenTransaction)
        .where(TokenTransaction.account_id == account_id)
        .order_by(TokenTransaction.created_at.desc(), TokenTransaction.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def reconcile_balance(db: AsyncSession, account_id: int) -> dict:
    """Compare the cached balance with the sum of the ledger."""
    account = await get_account_or_raise(db, account_id, refresh=True)
    ledger_sum = await db.scalar(
        select(func.coalesce(func.sum(TokenTransaction.amount), 0)).where(
            TokenTransaction.account_id == account_id
        )
    )
    ledger_balance = int(ledger_sum or 0)
    consistent = ledger_balance == account.token_balance
    if not consistent:
        logger.warning(
            "Balance drift on account %d: cached=%d ledger=%d",
            account_id, account.token_balance, ledger_balance,
        )
    return {
        "account_id": account_id,
        "cached_balance": account.token_balance,
        "ledger_balance": ledger_balance,
        "consistent": consistent,
    }
