"""
askmoe/models/plan.py

Plan tiers a user can hold.

Plans are provisioned by the payment pipeline; this service only reads them
to pick an admission path, a rate-limit tier and a generation model.
"""

from enum import Enum
from typing import Optional


class PlanTier(str, Enum):
    TRIAL = "trial"
    FREE = "free"
    HOBBY = "hobby"
    OCCASIONAL = "occasional"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @property
    def is_paid(self) -> bool:
        return self not in (PlanTier.TRIAL, PlanTier.FREE)

    @property
    def sees_ads(self) -> bool:
        return not self.is_paid

    @classmethod
    def parse(cls, value: Optional[str]) -> "PlanTier":
        """Resolve a plan name, accepting the short names billing still sends.

        Raises:
            ValueError: unknown plan name
        """
        key = (value or "").strip().lower()
        key = LEGACY_PLAN_ALIASES.get(key, key)
        return cls(key)


# Short names used by the checkout metadata
LEGACY_PLAN_ALIASES = {
    "occ": PlanTier.OCCASIONAL.value,
    "pro": PlanTier.PROFESSIONAL.value,
    "ent": PlanTier.ENTERPRISE.value,
}

PAID_PLANS = tuple(plan for plan in PlanTier if plan.is_paid)
