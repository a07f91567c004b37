"""Pydantic request/response models for badge endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class BadgeRuleResponse(BaseModel):
    key: str
    name: str
    description: str
    requirement: str
    threshold: int


class AllBadgesResponse(BaseModel):
    badges: list[BadgeRuleResponse]


class EvaluateAllResponse(BaseModel):
    granted: list[str]


class EvaluateResponse(BaseModel):
    badge_key: str
    outcome: str
    earned_at: datetime | None = None


class EarnedBadgeResponse(BaseModel):
    key: str
    name: str
    description: str
    earned_at: datetime
    displayed: bool


class AccountBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_available: int
    total_earned: int


class BadgeDisplayRequest(BaseModel):
    displayed: bool
