"""Pydantic request/response models for account endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from falvia.accounts.service import PurchaseKind


class CreateAccountRequest(BaseModel):
    display_name: str | None = Field(default=None, max_length=64)


class AccountResponse(BaseModel):
    id: int
    display_name: str | None
    referral_code: str
    token_balance: int
    consecutive_login_days: int
    longest_login_streak: int
    trial_used: bool
    referral_used: bool
    referral_count: int
    total_fortunes_sent: int
    first_purchase_date: datetime | None = None
    badges_earned: int
    created_at: datetime


class FortuneRequest(BaseModel):
    fortune_id: str = Field(min_length=1, max_length=100)


class FortuneResponse(BaseModel):
    recorded: bool
    token_balance: int
    total_fortunes_sent: int
    badge: str | None = None


class PurchaseRequest(BaseModel):
    store_transaction_id: str = Field(min_length=1, max_length=100)
    product_kind: PurchaseKind
    tokens: int = Field(default=0, ge=0)


class PurchaseResponse(BaseModel):
    recorded: bool
    token_balance: int
    first_purchase: bool
    trial_converted: bool
    badge: str | None = None


# --- Ledger ---


class TransactionEntry(BaseModel):
    amount: int
    kind: str
    reference_id: str | None = None
    description: str | None = None
    created_at: datetime


class TransactionHistoryResponse(BaseModel):
    entries: list[TransactionEntry]
    total: int
    page: int
    per_page: int


class ReconcileResponse(BaseModel):
    account_id: int
    cached_balance: int
    ledger_balance: int
    consistent: bool
