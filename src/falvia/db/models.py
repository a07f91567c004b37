"""ORM models for accounts and the rewards event log.

DailyClaimRecord, TokenTransaction, BadgeGrant and ReferralRecord rows are
append-only. The counters on Account are cached projections of those logs.
Each uniqueness constraint below is the race guard for one operation.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from falvia.db.base import Base, BigIntPK


class TransactionKind(str, Enum):
    DAILY_REWARD = "daily_reward"
    REFERRAL_BONUS = "referral_bonus"
    PURCHASE = "purchase"
    FORTUNE = "fortune"


class TrialStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CONVERTED = "CONVERTED"
    CANCELLED = "CANCELLED"


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class Account(Base):
    """Per-user entitlement projection. Mutated only by the rewards services."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("token_balance >= 0", name="ck_accounts_token_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    referral_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    token_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # --- Daily login ---
    last_login_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    consecutive_login_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_login_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # --- Irreversible flags ---
    trial_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    referral_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())

    # --- Referral ---
    referred_by_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    referral_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # --- Derived metrics ---
    total_fortunes_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    first_purchase_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    badges_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    trial: Mapped[TrialRecord | None] = relationship("TrialRecord", back_populates="account", uselist=False)


# ---------------------------------------------------------------------------
# Daily claims
# ---------------------------------------------------------------------------


class DailyClaimRecord(Base):
    """One row per account per reference calendar day."""

    __tablename__ = "daily_claims"
    __table_args__ = (
        UniqueConstraint("account_id", "claim_date", name="uq_daily_claims_account_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    consecutive_days: Mapped[int] = mapped_column(Integer, nullable=False)
    tokens_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Token ledger
# ---------------------------------------------------------------------------


class TokenTransaction(Base):
    """Signed balance delta. sum(amount) per account == Account.token_balance."""

    __tablename__ = "token_transactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Trials
# ---------------------------------------------------------------------------


class TrialRecord(Base):
    """The single free-trial window of an account."""

    __tablename__ = "trial_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TrialStatus.ACTIVE.value)
    used_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    account: Mapped[Account] = relationship("Account", back_populates="trial")


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeGrant(Base):
    """Permanent badge award. Rules live in falvia.badges.badge_rules."""

    __tablename__ = "badge_grants"
    __table_args__ = (
        UniqueConstraint("account_id", "badge_key", name="uq_badge_grants_account_badge"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    badge_key: Mapped[str] = mapped_column(String(64), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    displayed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------


class ReferralRecord(Base):
    """One redemption. An account can be a referee at most once, ever."""

    __tablename__ = "referral_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    referrer_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    referee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


class PurchaseRecord(Base):
    """One confirmed store purchase. The store transaction id is seen once."""

    __tablename__ = "purchase_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    store_transaction_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    product_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
