"""
Repository pattern for data access.

Handles the counter-store key layout and batched store operations.
Store errors propagate from here; the tracker decides how to degrade.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List

from ai_quota_guard.core.windows import UsageWindow, history_key, stats_key, window_key
from .models import UsageRecord

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# Hash fields of a daily/monthly bucket
TOKENS_FIELD = "tokens"
COST_FIELD = "cost"
REQUESTS_FIELD = "requests"


def to_int(value: Any) -> int:
    """Coerce a stored counter to an int, treating malformed values as 0."""
    return int(to_float(value))


def to_float(value: Any) -> float:
    """Coerce a stored amount to a float, treating malformed values as 0."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(result) or result < 0:
        return 0.0
    return result


class UsageRepository:
    """Repository for per-user usage counters, history and lifetime stats.

    Every write for a single usage record goes out as one MULTI/EXEC
    pipeline, so either all counters move or none do.
    """

    def __init__(
        self,
        store: Any,
        history_limit: int = 1000,
        daily_ttl_days: int = 2,
        monthly_ttl_days: int = 35,
        stats_ttl_days: int = 90
    ):
        """Initialize the repository.

        Args:
            store: redis-py client (``decode_responses=True``) or InMemoryCounterStore
            history_limit: Number of most recent history records retained per user
            daily_ttl_days: Lifetime of a daily bucket
            monthly_ttl_days: Lifetime of a monthly bucket
            stats_ttl_days: Lifetime of the lifetime-stats hash since its last update
        """
        self.store = store
        self.history_limit = history_limit
        self.daily_ttl = daily_ttl_days * SECONDS_PER_DAY
        self.monthly_ttl = monthly_ttl_days * SECONDS_PER_DAY
        self.stats_ttl = stats_ttl_days * SECONDS_PER_DAY

    def get_bucket(self, user_id: str, window: UsageWindow, moment: datetime) -> Dict[str, str]:
        """Raw counter hash for the window containing moment; empty if missing."""
        return self.store.hgetall(window_key(user_id, window, moment)) or {}

    def get_window_tokens(self, user_id: str, window: UsageWindow, moment: datetime) -> int:
        return to_int(self.get_bucket(user_id, window, moment).get(TOKENS_FIELD))

    def record(self, record: UsageRecord) -> None:
        """Apply one usage record to every counter and the history list atomically."""
        user_id = record.user_id
        usage = record.usage
        model = record.metadata.model
        feature = record.metadata.feature

        pipe = self.store.pipeline(transaction=True)

        for window, ttl in ((UsageWindow.DAILY, self.daily_ttl), (UsageWindow.MONTHLY, self.monthly_ttl)):
            key = window_key(user_id, window, record.timestamp)
            pipe.hincrby(key, TOKENS_FIELD, usage.total_tokens)
            pipe.hincrbyfloat(key, COST_FIELD, usage.cost)
            pipe.hincrby(key, REQUESTS_FIELD, 1)
            pipe.expire(key, ttl)

        history = history_key(user_id)
        pipe.lpush(history, record.to_json())
        pipe.ltrim(history, 0, self.history_limit - 1)

        stats = stats_key(user_id)
        pipe.hincrby(stats, "totalTokens", usage.total_tokens)
        pipe.hincrbyfloat(stats, "totalCost", usage.cost)
        pipe.hincrby(stats, "totalRequests", 1)
        pipe.hincrby(stats, f"model:{model}:tokens", usage.total_tokens)
        pipe.hincrbyfloat(stats, f"model:{model}:cost", usage.cost)
        pipe.hincrby(stats, f"feature:{feature}:tokens", usage.total_tokens)
        pipe.hincrbyfloat(stats, f"feature:{feature}:cost", usage.cost)
        pipe.expire(stats, self.stats_ttl)

        pipe.execute()

    def get_history(self, user_id: str) -> List[UsageRecord]:
        """All retained history records for a user, newest first.

        Entries that cannot be parsed are skipped.
        """
        records = []
        for raw in self.store.lrange(history_key(user_id), 0, -1):
            try:
                records.append(UsageRecord.from_json(raw))
            except ValueError as e:
                logger.warning("Skipping malformed usage record for %s: %s", user_id, e)
        return records

    def get_lifetime_stats(self, user_id: str) -> Dict[str, str]:
        return self.store.hgetall(stats_key(user_id)) or {}

    def delete_windows(
        self,
        user_id: str,
        windows: Iterable[UsageWindow],
        moment: datetime,
        include_history: bool = False
    ) -> None:
        """Delete the current bucket of each window, and optionally history and stats."""
        pipe = self.store.pipeline(transaction=True)
        for window in windows:
            pipe.delete(window_key(user_id, window, moment))
        if include_history:
            pipe.delete(history_key(user_id))
            pipe.delete(stats_key(user_id))
        pipe.execute()
