"""
Quota evaluation and limit warnings.

Pure decision logic over a user's current usage and plan limits.

Check Order:
1. Daily limit - checked first, so it wins when both windows would be exceeded
2. Monthly limit

Exceeding a limit is an expected outcome, reported as a QuotaDecision rather
than raised.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Optional

from .plans import PlanLimits
from .windows import UsageWindow, next_reset


DAILY_LIMIT_EXCEEDED = "Daily token limit exceeded"
MONTHLY_LIMIT_EXCEEDED = "Monthly token limit exceeded"


class DecisionStatus(Enum):
    """Outcome of a quota check."""
    ALLOWED = auto()   # Within both limits
    DENIED = auto()    # A limit would be exceeded
    DEGRADED = auto()  # Usage could not be read; outcome set by FailurePolicy


class FailurePolicy(str, Enum):
    """How a quota check behaves when the counter store cannot be read."""
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class UsageLimit:
    """A user's usage in the current day and month against plan limits."""
    user_id: str
    daily_limit: int
    monthly_limit: int
    daily_used: int
    monthly_used: int
    reset_time: datetime
    degraded: bool = False

    @property
    def daily_remaining(self) -> int:
        return max(0, self.daily_limit - self.daily_used)

    @property
    def monthly_remaining(self) -> int:
        return max(0, self.monthly_limit - self.monthly_used)


@dataclass(frozen=True)
class QuotaDecision:
    """Result of asking whether a request may proceed."""
    status: DecisionStatus
    allowed: bool
    reason: Optional[str] = None
    reset_time: Optional[datetime] = None

    @classmethod
    def allow(cls) -> "QuotaDecision":
        return cls(status=DecisionStatus.ALLOWED, allowed=True)

    @classmethod
    def deny(cls, reason: str, reset_time: datetime) -> "QuotaDecision":
        return cls(status=DecisionStatus.DENIED, allowed=False, reason=reason, reset_time=reset_time)

    @classmethod
    def degraded(cls, reason: str, policy: FailurePolicy) -> "QuotaDecision":
        return cls(
            status=DecisionStatus.DEGRADED,
            allowed=policy == FailurePolicy.FAIL_OPEN,
            reason=reason
        )

    @property
    def is_degraded(self) -> bool:
        return self.status == DecisionStatus.DEGRADED


@dataclass(frozen=True)
class LimitWarnings:
    """How close a user is to their plan limits."""
    daily_warning: bool
    monthly_warning: bool
    daily_percentage: float
    monthly_percentage: float


def evaluate_quota(
    daily_used: int,
    monthly_used: int,
    requested_tokens: int,
    limits: PlanLimits,
    now: datetime
) -> QuotaDecision:
    """
    Decide whether requested_tokens more may be spent.

    Args:
        daily_used: Tokens already used today
        monthly_used: Tokens already used this month
        requested_tokens: Estimated tokens the pending request will consume
        limits: Plan limits to enforce
        now: Current time, used to compute the reset time on denial

    Returns:
        QuotaDecision: ALLOWED, or DENIED with reason and reset time

    Raises:
        ValueError: If requested_tokens is negative
    """
    if requested_tokens < 0:
        raise ValueError("requested_tokens must be >= 0")

    if daily_used + requested_tokens > limits.daily:
        return QuotaDecision.deny(DAILY_LIMIT_EXCEEDED, next_reset(UsageWindow.DAILY, now))

    if monthly_used + requested_tokens > limits.monthly:
        return QuotaDecision.deny(MONTHLY_LIMIT_EXCEEDED, next_reset(UsageWindow.MONTHLY, now))

    return QuotaDecision.allow()


def compute_warnings(usage: UsageLimit, limits: PlanLimits, threshold: float = 0.8) -> LimitWarnings:
    """Flag each window whose usage ratio is at or above threshold."""
    daily_ratio = usage.daily_used / limits.daily
    monthly_ratio = usage.monthly_used / limits.monthly

    return LimitWarnings(
        daily_warning=daily_ratio >= threshold,
        monthly_warning=monthly_ratio >= threshold,
        daily_percentage=round(daily_ratio * 100, 1),
        monthly_percentage=round(monthly_ratio * 100, 1),
    )
