"""Pydantic request/response models for trial endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class TrialStatusResponse(BaseModel):
    can_start_trial: bool
    is_trial_active: bool
    remaining_days: int
    remaining_hours: int
    remaining_minutes: int
    trial_end_date: datetime | None = None
    show_expiry_warning: bool
    status: str | None = None


class StartTrialResponse(BaseModel):
    trial_end_date: datetime


class EndTrialRequest(BaseModel):
    reason: Literal["expired", "converted", "cancelled"]


class TrialRecordResponse(BaseModel):
    status: str
    start_date: datetime
    end_date: datetime
    ended_at: datetime | None = None


class ExpireTrialsResponse(BaseModel):
    expired: int
