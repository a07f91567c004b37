"""Pydantic response models for daily reward endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class ClaimResponse(BaseModel):
    claim_date: date
    consecutive_days: int
    tokens_earned: int
    total_balance: int
    message: str
    badge: str | None = None


class StreakStatusResponse(BaseModel):
    reference_date: date
    last_login_date: date | None = None
    consecutive_days: int
    has_claimed_today: bool
    next_reward: int
    token_balance: int


class LoginHistoryEntry(BaseModel):
    claim_date: date
    consecutive_days: int
    tokens_earned: int
    created_at: datetime


class LoginHistoryResponse(BaseModel):
    entries: list[LoginHistoryEntry]
