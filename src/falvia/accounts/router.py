"""Account endpoints: creation, fortune and purchase events, ledger views."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.accounts.queries import get_account_or_raise
from falvia.accounts.schemas import (
    AccountResponse,
    CreateAccountRequest,
    FortuneRequest,
    FortuneResponse,
    PurchaseRequest,
    PurchaseResponse,
    ReconcileResponse,
    TransactionEntry,
    TransactionHistoryResponse,
)
from falvia.accounts.service import create_account, record_fortune_sent, record_purchase
from falvia.db.models import Account
from falvia.dependencies import get_db, get_redis_dep
from falvia.ledger.balance_service import get_transaction_history, reconcile_balance
from falvia.schemas import Envelope, ok
from falvia.time_utils import as_utc

router = APIRouter(prefix="/api/v1/accounts", tags=["Accounts"])


def _account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        display_name=account.display_name,
        referral_code=account.referral_code,
        token_balance=account.token_balance,
        consecutive_login_days=account.consecutive_login_days,
        longest_login_streak=account.longest_login_streak,
        trial_used=account.trial_used,
        referral_used=account.referral_used,
        referral_count=account.referral_count,
        total_fortunes_sent=account.total_fortunes_sent,
        first_purchase_date=as_utc(account.first_purchase_date) if account.first_purchase_date else None,
        badges_earned=account.badges_earned,
        created_at=as_utc(account.created_at),
    )


@router.post("", response_model=Envelope[AccountResponse], status_code=201)
async def create(body: CreateAccountRequest, db: AsyncSession = Depends(get_db)):
    """Create an account with a generated referral code."""
    account = await create_account(db, body.display_name)
    return ok(_account_response(account))


@router.get("/{account_id}", response_model=Envelope[AccountResponse])
async def get(account_id: int, db: AsyncSession = Depends(get_db)):
    """Get an account's entitlement projection."""
    account = await get_account_or_raise(db, account_id, refresh=True)
    return ok(_account_response(account))


@router.post("/{account_id}/fortunes", response_model=Envelope[FortuneResponse])
async def fortune_sent(
    account_id: int,
    body: FortuneRequest,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Charge for a sent fortune and count it toward badges."""
    result = await record_fortune_sent(db, redis, account_id, body.fortune_id)
    return ok(FortuneResponse(
        recorded=result.recorded,
        token_balance=result.token_balance,
        total_fortunes_sent=result.total_fortunes_sent,
        badge=result.badge,
    ))


@router.post("/{account_id}/purchases", response_model=Envelope[PurchaseResponse])
async def purchase(
    account_id: int,
    body: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
):
    """Apply a purchase confirmed by the store."""
    result = await record_purchase(
        db, redis, account_id, body.store_transaction_id, body.product_kind, body.tokens
    )
    return ok(PurchaseResponse(
        recorded=result.recorded,
        token_balance=result.token_balance,
        first_purchase=result.first_purchase,
        trial_converted=result.trial_converted,
        badge=result.badge,
    ))


@router.get("/{account_id}/transactions", response_model=Envelope[TransactionHistoryResponse])
async def transactions(
    account_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Paginated token ledger, newest first."""
    entries, total = await get_transaction_history(db, account_id, page, per_page)
    return ok(TransactionHistoryResponse(
        entries=[
            TransactionEntry(
                amount=e.amount,
                kind=e.kind,
                reference_id=e.reference_id,
                description=e.description,
                created_at=as_utc(e.created_at),
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    ))


@router.get("/{account_id}/balance/reconcile", response_model=Envelope[ReconcileResponse])
async def reconcile(account_id: int, db: AsyncSession = Depends(get_db)):
    """Compare the cached balance against the ledger."""
    return ok(ReconcileResponse(**await reconcile_balance(db, account_id)))
