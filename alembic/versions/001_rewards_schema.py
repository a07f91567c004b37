"""Rewards schema.

Creates accounts, daily_claims, token_transactions, trial_records,
badge_grants, referral_records and purchase_records. Each UNIQUE
constraint is the race guard for one operation.

Revision ID: 001_rewards_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_rewards_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            referral_code VARCHAR(16) UNIQUE NOT NULL,
            token_balance INTEGER NOT NULL DEFAULT 0,
            last_login_date DATE,
            consecutive_login_days INTEGER NOT NULL DEFAULT 0,
            longest_login_streak INTEGER NOT NULL DEFAULT 0,
            trial_used BOOLEAN NOT NULL DEFAULT false,
            referral_used BOOLEAN NOT NULL DEFAULT false,
            referred_by_code VARCHAR(16),
            referral_count INTEGER NOT NULL DEFAULT 0,
            total_fortunes_sent INTEGER NOT NULL DEFAULT 0,
            first_purchase_date TIMESTAMPTZ,
            badges_earned INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ,
            CONSTRAINT ck_accounts_token_balance_non_negative CHECK (token_balance >= 0)
        )
    """)

    # --- Daily Claims ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_claims (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            claim_date DATE NOT NULL,
            consecutive_days INTEGER NOT NULL,
            tokens_earned INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_daily_claims_account_date UNIQUE (account_id, claim_date)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_daily_claims_account_id
        ON daily_claims(account_id)
    """)

    # --- Token Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS token_transactions (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            kind VARCHAR(32) NOT NULL,
            reference_id VARCHAR(128),
            idempotency_key VARCHAR(256) UNIQUE NOT NULL,
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_token_transactions_account_id
        ON token_transactions(account_id)
    """)

    # --- Trials ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS trial_records (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT UNIQUE NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'ACTIVE',
            used_flag BOOLEAN NOT NULL DEFAULT true,
            ended_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_trial_records_active_end
        ON trial_records(end_date) WHERE status = 'ACTIVE'
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_grants (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            badge_key VARCHAR(64) NOT NULL,
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            displayed BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT uq_badge_grants_account_badge UNIQUE (account_id, badge_key)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_badge_grants_account_id
        ON badge_grants(account_id)
    """)

    # --- Referrals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS referral_records (
            id BIGSERIAL PRIMARY KEY,
            referrer_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            referee_id BIGINT UNIQUE NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            code VARCHAR(16) NOT NULL,
            used_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_referral_records_referrer_id
        ON referral_records(referrer_id)
    """)

    # --- Purchases ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS purchase_records (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            store_transaction_id VARCHAR(128) UNIQUE NOT NULL,
            product_kind VARCHAR(32) NOT NULL,
            tokens INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_purchase_records_account_id
        ON purchase_records(account_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS purchase_records")
    op.execute("DROP TABLE IF EXISTS referral_records")
    op.execute("DROP TABLE IF EXISTS badge_grants")
    op.execute("DROP TABLE IF EXISTS trial_records")
    op.execute("DROP TABLE IF EXISTS token_transactions")
    op.execute("DROP TABLE IF EXISTS daily_claims")
    op.execute("DROP TABLE IF EXISTS accounts")
