"""Static badge rule table.

A badge is a row here: requirement type plus threshold. Adding a badge is
adding a row; the evaluator never branches on badge keys.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from falvia.db.models import Account


class BadgeKey(str, Enum):
    ACTIVE_USER = "active_user"
    FORTUNE_LOVER = "fortune_lover"
    VIP_EXPERIENCE = "vip_experience"


class RequirementType(str, Enum):
    CONSECUTIVE_LOGIN = "consecutive_login"
    FORTUNE_COUNT = "fortune_count"
    FIRST_PURCHASE = "first_purchase"


@dataclass(frozen=True)
class BadgeRule:
    key: BadgeKey
    name: str
    description: str
    requirement: RequirementType
    threshold: int

    def is_satisfied(self, account: Account) -> bool:
        return metric_value(account, self.requirement) >= self.threshold


BADGE_RULES: dict[str, BadgeRule] = {
    rule.key.value: rule
    for rule in (
        BadgeRule(
            key=BadgeKey.ACTIVE_USER,
            name="Active User",
            description="Claimed the daily reward 7 days in a row",
            requirement=RequirementType.CONSECUTIVE_LOGIN,
            threshold=7,
        ),
        BadgeRule(
            key=BadgeKey.FORTUNE_LOVER,
            name="Fortune Lover",
            description="Sent 10 fortunes in total",
            requirement=RequirementType.FORTUNE_COUNT,
            threshold=10,
        ),
        BadgeRule(
            key=BadgeKey.VIP_EXPERIENCE,
            name="VIP Experience",
            description="Made a first purchase",
            requirement=RequirementType.FIRST_PURCHASE,
            threshold=1,
        ),
    )
}


_METRICS: dict[RequirementType, Callable[[Account], int]] = {
    RequirementType.CONSECUTIVE_LOGIN: lambda a: a.consecutive_login_days,
    RequirementType.FORTUNE_COUNT: lambda a: a.total_fortunes_sent,
    RequirementType.FIRST_PURCHASE: lambda a: 1 if a.first_purchase_date is not None else 0,
}


def metric_value(account: Account, requirement: RequirementType) -> int:
    """Read the account metric a requirement type is measured against."""
    return _METRICS[requirement](account)


def get_rule(badge_key: str) -> BadgeRule | None:
    """Look up a rule by key."""
    return BADGE_RULES.get(badge_key)
