"""Referral code generation.

Codes are alphanumeric (A-Z, 0-9), generated server-side with a
cryptographic random source. Users cannot choose their own codes.
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from falvia.config import get_settings
from falvia.db.models import Account

REFERRAL_CHARSET = string.ascii_uppercase + string.digits  # A-Z, 0-9


def generate_referral_code(length: int | None = None) -> str:
    """Generate a cryptographically random referral code."""
    length = length or get_settings().referral_code_length
    return "".join(secrets.choice(REFERRAL_CHARSET) for _ in range(length))


def normalize_referral_code(code: str) -> str:
    """Trim and upper-case a code for case-insensitive lookup."""
    return code.strip().upper()


async def generate_unique_referral_code(db: AsyncSession) -> str:
    """Generate a referral code that doesn't already exist in the database."""
    for _ in range(10):
        code = generate_referral_code()
        existing = await db.execute(select(Account.id).where(Account.referral_code == code))
        if existing.scalar_one_or_none() is None:
            return code
    raise RuntimeError("Failed to generate unique referral code after 10 attempts")
