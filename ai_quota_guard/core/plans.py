"""
Plan tiers and their token limits.

Limits are static configuration; users cannot edit them.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union

logger = logging.getLogger(__name__)


class PlanType(str, Enum):
    """Subscription tiers with distinct token quotas."""
    FREE = "FREE"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"


@dataclass(frozen=True)
class PlanLimits:
    """Token ceilings for a plan tier."""
    daily: int
    monthly: int

    def __post_init__(self):
        """Validate limits are positive."""
        if self.daily <= 0:
            raise ValueError("daily limit must be > 0")
        if self.monthly <= 0:
            raise ValueError("monthly limit must be > 0")


DEFAULT_PLAN_LIMITS: Dict[PlanType, PlanLimits] = {
    PlanType.FREE: PlanLimits(daily=10_000, monthly=200_000),
    PlanType.PREMIUM: PlanLimits(daily=100_000, monthly=2_000_000),
    PlanType.ENTERPRISE: PlanLimits(daily=500_000, monthly=10_000_000),
}


def resolve_plan(plan: Union[PlanType, str, None]) -> PlanType:
    """Map a plan name to a PlanType, falling back to FREE for unknown tiers."""
    if isinstance(plan, PlanType):
        return plan
    if not plan:
        return PlanType.FREE
    try:
        return PlanType(plan.strip().upper())
    except ValueError:
        logger.warning("Unknown plan tier %r, using FREE limits", plan)
        return PlanType.FREE
