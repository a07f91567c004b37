"""Error taxonomy for the entitlements engine.

Every failure a caller can see carries a stable ``ErrorCode``. Terminal
results (already claimed, already used, self referral) are never retried;
``TransientIOError`` is the only retryable class.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    ALREADY_CLAIMED_TODAY = "ALREADY_CLAIMED_TODAY"
    TRIAL_ALREADY_ACTIVE = "TRIAL_ALREADY_ACTIVE"
    TRIAL_ALREADY_USED = "TRIAL_ALREADY_USED"
    TRIAL_NOT_FOUND = "TRIAL_NOT_FOUND"
    REFERRAL_CODE_NOT_FOUND = "REFERRAL_CODE_NOT_FOUND"
    REFERRAL_ALREADY_USED = "REFERRAL_ALREADY_USED"
    INVALID_REFERRAL_CODE_SELF = "INVALID_REFERRAL_CODE_SELF"
    BADGE_NOT_ELIGIBLE = "BADGE_NOT_ELIGIBLE"
    BADGE_NOT_FOUND = "BADGE_NOT_FOUND"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_REQUEST = "INVALID_REQUEST"
    STORAGE_CONFLICT = "STORAGE_CONFLICT"
    TRANSIENT_IO_ERROR = "TRANSIENT_IO_ERROR"


class EntitlementError(Exception):
    """Base class for all engine errors surfaced to callers."""

    code: ErrorCode = ErrorCode.INVALID_REQUEST
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code.value)
        self.message = message or self.code.value


class AccountNotFoundError(EntitlementError):
    code = ErrorCode.ACCOUNT_NOT_FOUND
    status_code = 404


class TrialAlreadyActiveError(EntitlementError):
    code = ErrorCode.TRIAL_ALREADY_ACTIVE
    status_code = 409


class TrialAlreadyUsedError(EntitlementError):
    code = ErrorCode.TRIAL_ALREADY_USED
    status_code = 409


class TrialNotFoundError(EntitlementError):
    code = ErrorCode.TRIAL_NOT_FOUND
    status_code = 404


class ReferralCodeNotFoundError(EntitlementError):
    code = ErrorCode.REFERRAL_CODE_NOT_FOUND
    status_code = 404


class ReferralAlreadyUsedError(EntitlementError):
    code = ErrorCode.REFERRAL_ALREADY_USED
    status_code = 409


class SelfReferralError(EntitlementError):
    code = ErrorCode.INVALID_REFERRAL_CODE_SELF
    status_code = 400


class BadgeNotFoundError(EntitlementError):
    code = ErrorCode.BADGE_NOT_FOUND
    status_code = 404


class InsufficientBalanceError(EntitlementError):
    code = ErrorCode.INSUFFICIENT_BALANCE
    status_code = 409


class InvalidRequestError(EntitlementError):
    code = ErrorCode.INVALID_REQUEST
    status_code = 400


class StorageConflictError(EntitlementError):
    """A uniqueness constraint rejected a write (lost a race or a replay)."""

    code = ErrorCode.STORAGE_CONFLICT
    status_code = 409


class TransientIOError(EntitlementError):
    """Storage or network unavailable. Outcome unknown, safe to retry."""

    code = ErrorCode.TRANSIENT_IO_ERROR
    status_code = 503
    retryable = True
