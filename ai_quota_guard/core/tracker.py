"""
Per-user AI token usage tracking.

The UsageTracker gates paid completion requests against plan quotas and
records what each completed request actually spent.

Caller contract:
1. can_make_request must return allowed=True before a metered AI call
2. record_usage is called exactly once after the call succeeds, with the
   provider's actual token counts

The tracker absorbs counter-store failures at every public method: checks
degrade according to the configured FailurePolicy, reads return zeroed
results, and writes are dropped with an error log. Malformed stored values
read as zero. Only invalid arguments (a negative token count, an unknown
time range or reset scope) raise ValueError.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from redis.exceptions import RedisError

from ai_quota_guard.config.loader import DEFAULT_CONFIG, TrackerConfig
from ai_quota_guard.storage.models import UsageMetadata, UsageRecord
from ai_quota_guard.storage.repository import UsageRepository
from .plans import PlanType
from .quota import LimitWarnings, QuotaDecision, UsageLimit, compute_warnings, evaluate_quota
from .stats import LifetimeStats, UsageStats, aggregate_usage, parse_lifetime_stats
from .token_counter import TokenUsage, estimate_tokens
from .windows import TimeRange, UsageWindow, as_utc, next_reset, range_cutoff, utcnow

logger = logging.getLogger(__name__)

# Store faults: redis-py errors (InMemoryCounterStore raises ResponseError too) and socket failures
STORE_ERRORS = (RedisError, OSError)

PlanArg = Union[PlanType, str, None]


class ResetScope(str, Enum):
    """Which counters an administrative reset clears."""
    DAILY = "daily"
    MONTHLY = "monthly"
    ALL = "all"


class UsageTracker:
    """Tracks token spend per user against daily and monthly plan quotas.

    Construct one per process with a counter-store handle and pass it to
    request handlers; tests construct their own with an in-memory store.
    """

    def __init__(
        self,
        store: Any,
        config: Optional[TrackerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """Initialize the tracker.

        Args:
            store: redis-py client (``decode_responses=True``) or InMemoryCounterStore
            config: Plan limits and tracker settings (defaults to DEFAULT_CONFIG)
            clock: Returns the current time; defaults to UTC now
        """
        self.config = config or DEFAULT_CONFIG
        self.repository = UsageRepository(
            store,
            history_limit=self.config.history_limit,
            daily_ttl_days=self.config.daily_ttl_days,
            monthly_ttl_days=self.config.monthly_ttl_days,
            stats_ttl_days=self.config.stats_ttl_days,
        )
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return as_utc(self._clock())

    def can_make_request(self, user_id: str, requested_tokens: int, plan: PlanArg = PlanType.FREE) -> QuotaDecision:
        """
        Check whether user_id may spend requested_tokens more right now.

        Args:
            user_id: User to check
            requested_tokens: Estimated tokens the pending request will consume
            plan: Plan tier whose limits apply

        Returns:
            QuotaDecision: ALLOWED, DENIED with reason and reset time, or
            DEGRADED when usage could not be read

        Raises:
            ValueError: If requested_tokens is negative
        """
        if requested_tokens < 0:
            raise ValueError("requested_tokens must be >= 0")

        now = self.now()
        try:
            daily_used, monthly_used = self._read_usage(user_id, now)
        except STORE_ERRORS as e:
            logger.error("Usage check failed for %s: %s", user_id, e)
            return QuotaDecision.degraded(f"Usage store unavailable: {e}", self.config.failure_policy)

        return evaluate_quota(daily_used, monthly_used, requested_tokens, self.config.get_limits(plan), now)

    def record_usage(self, user_id: str, usage: TokenUsage, metadata: UsageMetadata) -> None:
        """
        Record the actual usage of a completed request.

        Updates the daily and monthly buckets, the history list and the
        lifetime stats in one atomic batch. Calling this twice for the same
        request counts it twice.

        Failures are logged and swallowed so usage tracking never breaks the
        request that triggered it.
        """
        record = UsageRecord(user_id=user_id, timestamp=self.now(), usage=usage, metadata=metadata)
        try:
            self.repository.record(record)
        except STORE_ERRORS as e:
            logger.error(
                "Failed to record usage for %s (%s/%s, %d tokens): %s",
                user_id, metadata.feature, metadata.model, usage.total_tokens, e
            )

    def get_current_usage(self, user_id: str, plan: PlanArg = PlanType.FREE) -> UsageLimit:
        """Current day and month usage for a user.

        Returns zeroed usage flagged ``degraded`` if the store cannot be read.
        """
        now = self.now()
        limits = self.config.get_limits(plan)
        degraded = False
        try:
            daily_used, monthly_used = self._read_usage(user_id, now)
        except STORE_ERRORS as e:
            logger.error("Failed to get current usage for %s: %s", user_id, e)
            daily_used, monthly_used, degraded = 0, 0, True

        return UsageLimit(
            user_id=user_id,
            daily_limit=limits.daily,
            monthly_limit=limits.monthly,
            daily_used=daily_used,
            monthly_used=monthly_used,
            reset_time=next_reset(UsageWindow.DAILY, now),
            degraded=degraded,
        )

    def get_usage_stats(self, user_id: str, time_range: Union[TimeRange, str] = TimeRange.MONTH) -> UsageStats:
        """Aggregate a user's history over the last day, week or month.

        Returns an all-zero report if the history cannot be read.

        Raises:
            ValueError: If time_range is not day, week or month
        """
        time_range = TimeRange(time_range)
        cutoff = range_cutoff(time_range, self.now())
        try:
            records = self.repository.get_history(user_id)
        except STORE_ERRORS as e:
            logger.error("Failed to get usage stats for %s: %s", user_id, e)
            return UsageStats()

        return aggregate_usage(records, cutoff)

    def get_lifetime_stats(self, user_id: str) -> LifetimeStats:
        """All-time totals with per-model and per-feature breakdowns."""
        try:
            raw = self.repository.get_lifetime_stats(user_id)
        except STORE_ERRORS as e:
            logger.error("Failed to get lifetime stats for %s: %s", user_id, e)
            return LifetimeStats()
        return parse_lifetime_stats(raw)

    def check_limit_warnings(self, user_id: str, plan: PlanArg = PlanType.FREE) -> LimitWarnings:
        """Flag windows where usage has reached the warning threshold."""
        usage = self.get_current_usage(user_id, plan)
        return compute_warnings(usage, self.config.get_limits(plan), self.config.warning_threshold)

    def reset_usage(self, user_id: str, scope: Union[ResetScope, str] = ResetScope.ALL) -> bool:
        """Delete a user's current counters. Administrative use only.

        ``all`` also clears the history list and lifetime stats.

        Returns:
            True if the counters were deleted, False if the store failed

        Raises:
            ValueError: If scope is not daily, monthly or all
        """
        scope = ResetScope(scope)
        windows = []
        if scope in (ResetScope.DAILY, ResetScope.ALL):
            windows.append(UsageWindow.DAILY)
        if scope in (ResetScope.MONTHLY, ResetScope.ALL):
            windows.append(UsageWindow.MONTHLY)

        try:
            self.repository.delete_windows(user_id, windows, self.now(), include_history=scope == ResetScope.ALL)
        except STORE_ERRORS as e:
            logger.error("Failed to reset %s usage for %s: %s", scope.value, user_id, e)
            return False

        logger.info("Reset %s usage for %s", scope.value, user_id)
        return True

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def get_rate_limit_headers(self, user_id: str, plan: PlanArg = PlanType.FREE) -> Dict[str, str]:
        """Rate limit response headers for the daily and monthly windows."""
        usage = self.get_current_usage(user_id, plan)
        now = self.now()

        return {
            'X-RateLimit-Limit-Daily': str(usage.daily_limit),
            'X-RateLimit-Remaining-Daily': str(usage.daily_remaining),
            'X-RateLimit-Reset-Daily': str(int(next_reset(UsageWindow.DAILY, now).timestamp())),
            'X-RateLimit-Limit-Monthly': str(usage.monthly_limit),
            'X-RateLimit-Remaining-Monthly': str(usage.monthly_remaining),
            'X-RateLimit-Reset-Monthly': str(int(next_reset(UsageWindow.MONTHLY, now).timestamp())),
        }

    def _read_usage(self, user_id: str, now: datetime) -> Tuple[int, int]:
        daily_used = self.repository.get_window_tokens(user_id, UsageWindow.DAILY, now)
        monthly_used = self.repository.get_window_tokens(user_id, UsageWindow.MONTHLY, now)
        return daily_used, monthly_used
