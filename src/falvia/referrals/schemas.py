"""Pydantic request/response models for referral endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class RedeemRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)


class RedeemResponse(BaseModel):
    bonus_awarded: int
    token_balance: int
    badges: list[str] = []


class ReferralSummaryResponse(BaseModel):
    referral_code: str
    referral_count: int
    has_used_referral: bool
    referred_by_code: str | None = None


class RefereeEntry(BaseModel):
    account_id: int
    display_name: str | None = None
    joined_at: datetime


class ReferralStatsResponse(ReferralSummaryResponse):
    total_referrals: int
    referees: list[RefereeEntry]
