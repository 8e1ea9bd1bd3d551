"""
Tests for the usage tracker.

Covers quota checks, usage recording, reporting, and the fail-open
behavior when the counter store is unavailable.
"""
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import redis

from ai_quota_guard.config.loader import TrackerConfig
from ai_quota_guard.core.plans import PlanType
from ai_quota_guard.core.quota import DecisionStatus, FailurePolicy
from ai_quota_guard.core.stats import FeatureUsage, UsageStats
from ai_quota_guard.core.token_counter import TokenUsage
from ai_quota_guard.core.tracker import ResetScope, UsageTracker
from ai_quota_guard.storage.models import UsageMetadata


def usage(total, cost=0.0):
    return TokenUsage(prompt_tokens=total, completion_tokens=0, cost=cost)


META = UsageMetadata(model="gpt-3.5-turbo", feature="ats_analysis")


def failing_store():
    """A store whose every operation fails like an unreachable Redis."""
    store = MagicMock()
    error = redis.exceptions.ConnectionError("Connection refused")
    store.hgetall.side_effect = error
    store.lrange.side_effect = error
    store.pipeline.return_value.execute.side_effect = error
    return store


class TestCanMakeRequest:
    """Test quota checks against recorded usage."""

    def test_fresh_user_allowed(self, tracker):
        decision = tracker.can_make_request("user-1", 1000, PlanType.FREE)
        assert decision.allowed
        assert decision.status == DecisionStatus.ALLOWED

    def test_free_plan_daily_scenario(self, tracker):
        """At 9500 of 10000 daily tokens, 400 more fits and 600 does not."""
        tracker.record_usage("user-1", usage(9500), META)

        assert tracker.can_make_request("user-1", 400, "FREE").allowed

        decision = tracker.can_make_request("user-1", 600, "FREE")
        assert not decision.allowed
        assert decision.reason == "Daily token limit exceeded"
        assert decision.reset_time == datetime(2024, 3, 16, tzinfo=timezone.utc)

    def test_monthly_limit(self, tracker, clock):
        """Usage on earlier days counts toward the monthly limit only."""
        for day in range(1, 15):
            clock.now = datetime(2024, 3, day, 9, tzinfo=timezone.utc)
            tracker.record_usage("user-1", usage(9000), META)

        # 126000 used this month, none today
        clock.now = datetime(2024, 3, 15, 8, tzinfo=timezone.utc)
        assert tracker.can_make_request("user-1", 10000, PlanType.FREE).allowed

        for day in range(15, 23):
            clock.now = datetime(2024, 3, day, 9, tzinfo=timezone.utc)
            tracker.record_usage("user-1", usage(9000), META)

        # 198000 used this month, 9000 today
        decision = tracker.can_make_request("user-1", 1000, PlanType.FREE)
        assert decision.allowed
        decision = tracker.can_make_request("user-1", 1001, PlanType.FREE)
        assert not decision.allowed
        assert "Daily" in decision.reason

        clock.now = datetime(2024, 3, 23, 9, tzinfo=timezone.utc)
        decision = tracker.can_make_request("user-1", 2001, PlanType.FREE)
        assert not decision.allowed
        assert decision.reason == "Monthly token limit exceeded"
        assert decision.reset_time == datetime(2024, 4, 1, tzinfo=timezone.utc)

    def test_new_day_resets_daily_budget(self, tracker, clock):
        tracker.record_usage("user-1", usage(10000), META)
        assert not tracker.can_make_request("user-1", 1).allowed

        clock.advance(days=1)
        assert tracker.can_make_request("user-1", 1).allowed

    def test_premium_plan_limits(self, tracker):
        tracker.record_usage("user-1", usage(50000), META)
        assert not tracker.can_make_request("user-1", 1, PlanType.FREE).allowed
        assert tracker.can_make_request("user-1", 50000, PlanType.PREMIUM).allowed

    def test_unknown_plan_uses_free_limits(self, tracker):
        tracker.record_usage("user-1", usage(9999), META)
        assert not tracker.can_make_request("user-1", 2, "GOLD").allowed

    def test_negative_request_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.can_make_request("user-1", -1)

    def test_check_has_no_side_effects(self, tracker, store):
        tracker.can_make_request("user-1", 100)
        assert store.hgetall("usage:daily:user-1:2024-03-15") == {}


class TestRecordUsage:
    """Test recording actual usage."""

    def test_current_usage_reflects_record(self, tracker):
        """Recording 100 tokens raises daily and monthly usage by exactly 100."""
        before = tracker.get_current_usage("user-1")
        tracker.record_usage("user-1", usage(100, 0.001), META)
        after = tracker.get_current_usage("user-1")

        assert after.daily_used == before.daily_used + 100
        assert after.monthly_used == before.monthly_used + 100

    def test_recording_twice_double_counts(self, tracker):
        """There is no deduplication by request id."""
        meta = UsageMetadata(model="gpt-4", feature="cover_letter", request_id="req_1")
        tracker.record_usage("user-1", usage(100), meta)
        tracker.record_usage("user-1", usage(100), meta)
        assert tracker.get_current_usage("user-1").daily_used == 200

    def test_history_bounded(self, store, clock):
        tracker = UsageTracker(store, TrackerConfig(history_limit=5), clock=clock)
        for _ in range(8):
            tracker.record_usage("user-1", usage(10), META)
        assert len(store.lrange("usage:history:user-1", 0, -1)) == 5
        assert tracker.get_current_usage("user-1").daily_used == 80

    def test_lifetime_stats(self, tracker):
        tracker.record_usage("user-1", usage(100, 0.002), UsageMetadata(model="gpt-4", feature="cover_letter"))
        tracker.record_usage("user-1", usage(50, 0.0001), META)

        stats = tracker.get_lifetime_stats("user-1")
        assert stats.total_tokens == 150
        assert stats.total_requests == 2
        assert stats.total_cost == 0.0021
        assert stats.by_model["gpt-4"].tokens == 100
        assert stats.by_feature["ats_analysis"].tokens == 50

    def test_store_failure_does_not_raise(self):
        """A failed batch is logged and dropped."""
        tracker = UsageTracker(failing_store())
        tracker.record_usage("user-1", usage(100), META)


class TestGetCurrentUsage:
    """Test current usage reads."""

    def test_fresh_user(self, tracker):
        current = tracker.get_current_usage("user-1")
        assert current.daily_used == 0
        assert current.monthly_used == 0
        assert current.daily_limit == 10000
        assert current.monthly_limit == 200000
        assert current.reset_time == datetime(2024, 3, 16, tzinfo=timezone.utc)
        assert not current.degraded

    def test_plan_limits(self, tracker):
        current = tracker.get_current_usage("user-1", PlanType.ENTERPRISE)
        assert current.daily_limit == 500000
        assert current.monthly_limit == 10000000

    def test_malformed_counter_treated_as_zero(self, tracker, store):
        store.hincrbyfloat("usage:daily:user-1:2024-03-15", "tokens", 0)
        store._data["usage:daily:user-1:2024-03-15"]["tokens"] = "not-a-number"
        assert tracker.get_current_usage("user-1").daily_used == 0

    def test_store_failure_returns_zeroed_usage(self):
        current = UsageTracker(failing_store()).get_current_usage("user-1")
        assert current.daily_used == 0
        assert current.monthly_used == 0
        assert current.degraded


class TestGetUsageStats:
    """Test usage reports."""

    def test_single_record_report(self, tracker):
        tracker.record_usage(
            "user-1",
            TokenUsage(prompt_tokens=100, completion_tokens=50, cost=0.0023),
            UsageMetadata(model="gpt-3.5-turbo", feature="ats_analysis")
        )

        stats = tracker.get_usage_stats("user-1", "day")
        assert stats.total_tokens == 150
        assert stats.total_requests == 1
        assert stats.total_cost == 0.0023
        assert stats.average_cost_per_request == 0.0023
        assert stats.top_features == [FeatureUsage(feature="ats_analysis", tokens=150, cost=0.0023)]
        assert [d.date for d in stats.daily_breakdown] == ["2024-03-15"]

    def test_day_range_excludes_older_records(self, tracker, clock):
        tracker.record_usage("user-1", usage(100), META)
        clock.advance(hours=24, seconds=1)
        tracker.record_usage("user-1", usage(7), META)

        assert tracker.get_usage_stats("user-1", "day").total_tokens == 7
        assert tracker.get_usage_stats("user-1", "week").total_tokens == 107

    def test_record_exactly_at_cutoff_included(self, tracker, clock):
        tracker.record_usage("user-1", usage(100), META)
        clock.advance(days=1)
        assert tracker.get_usage_stats("user-1", "day").total_tokens == 100

    def test_month_range(self, tracker, clock):
        clock.now = datetime(2024, 2, 14, 12, tzinfo=timezone.utc)
        tracker.record_usage("user-1", usage(1), META)
        clock.now = datetime(2024, 2, 15, 12, tzinfo=timezone.utc)
        tracker.record_usage("user-1", usage(10), META)
        clock.now = datetime(2024, 3, 15, 12, tzinfo=timezone.utc)
        tracker.record_usage("user-1", usage(100), META)

        assert tracker.get_usage_stats("user-1", "month").total_tokens == 110

    def test_empty_report(self, tracker):
        assert tracker.get_usage_stats("user-1") == UsageStats()

    def test_store_failure_returns_zero_report(self):
        assert UsageTracker(failing_store()).get_usage_stats("user-1", "week") == UsageStats()


class TestLimitWarnings:
    """Test warnings near plan limits."""

    def test_warning_at_eighty_percent(self, tracker):
        tracker.record_usage("user-1", usage(8000), META)
        warnings = tracker.check_limit_warnings("user-1", PlanType.FREE)
        assert warnings.daily_warning
        assert warnings.daily_percentage == 80.0
        assert not warnings.monthly_warning
        assert warnings.monthly_percentage == 4.0

    def test_no_warning_below_threshold(self, tracker):
        tracker.record_usage("user-1", usage(7999), META)
        assert not tracker.check_limit_warnings("user-1").daily_warning

    def test_configured_threshold(self, store, clock):
        tracker = UsageTracker(store, TrackerConfig(warning_threshold=0.5), clock=clock)
        tracker.record_usage("user-1", usage(5000), META)
        assert tracker.check_limit_warnings("user-1").daily_warning


class TestResetUsage:
    """Test administrative resets."""

    def test_reset_daily(self, tracker):
        tracker.record_usage("user-1", usage(500), META)
        assert tracker.reset_usage("user-1", ResetScope.DAILY)

        current = tracker.get_current_usage("user-1")
        assert current.daily_used == 0
        assert current.monthly_used == 500
        assert tracker.get_usage_stats("user-1").total_tokens == 500

    def test_reset_monthly(self, tracker):
        tracker.record_usage("user-1", usage(500), META)
        assert tracker.reset_usage("user-1", "monthly")

        current = tracker.get_current_usage("user-1")
        assert current.daily_used == 500
        assert current.monthly_used == 0

    def test_reset_all_clears_history_and_stats(self, tracker):
        tracker.record_usage("user-1", usage(500), META)
        assert tracker.reset_usage("user-1")

        assert tracker.get_current_usage("user-1").daily_used == 0
        assert tracker.get_usage_stats("user-1").total_requests == 0
        assert tracker.get_lifetime_stats("user-1").total_tokens == 0

    def test_reset_failure_returns_false(self):
        assert not UsageTracker(failing_store()).reset_usage("user-1")


class TestRateLimitHeaders:
    """Test rate limit header formatting."""

    def test_headers(self, tracker):
        tracker.record_usage("user-1", usage(2500), META)
        headers = tracker.get_rate_limit_headers("user-1", PlanType.FREE)

        assert headers == {
            'X-RateLimit-Limit-Daily': '10000',
            'X-RateLimit-Remaining-Daily': '7500',
            'X-RateLimit-Reset-Daily': str(int(datetime(2024, 3, 16, tzinfo=timezone.utc).timestamp())),
            'X-RateLimit-Limit-Monthly': '200000',
            'X-RateLimit-Remaining-Monthly': '197500',
            'X-RateLimit-Reset-Monthly': str(int(datetime(2024, 4, 1, tzinfo=timezone.utc).timestamp())),
        }

    def test_remaining_clamped_to_zero(self, tracker):
        tracker.record_usage("user-1", usage(12000), META)
        headers = tracker.get_rate_limit_headers("user-1")
        assert headers['X-RateLimit-Remaining-Daily'] == '0'


class TestEstimateTokens:
    def test_estimate(self, tracker):
        assert tracker.estimate_tokens("a" * 400) == 100


class TestStoreFailure:
    """Test degraded behavior when the counter store is down."""

    def test_fail_open(self):
        decision = UsageTracker(failing_store()).can_make_request("user-1", 10**9, PlanType.FREE)
        assert decision.allowed
        assert decision.status == DecisionStatus.DEGRADED
        assert "unavailable" in decision.reason

    def test_fail_closed(self):
        config = TrackerConfig(failure_policy=FailurePolicy.FAIL_CLOSED)
        decision = UsageTracker(failing_store(), config).can_make_request("user-1", 1)
        assert not decision.allowed
        assert decision.is_degraded

    def test_timeouts_degrade(self):
        store = failing_store()
        store.hgetall.side_effect = redis.exceptions.TimeoutError("Timeout reading from socket")
        assert UsageTracker(store).can_make_request("user-1", 1).is_degraded

    def test_warnings_and_headers_survive_failure(self):
        tracker = UsageTracker(failing_store())
        assert not tracker.check_limit_warnings("user-1").daily_warning
        assert tracker.get_rate_limit_headers("user-1")['X-RateLimit-Remaining-Daily'] == '10000'
        assert tracker.get_lifetime_stats("user-1").total_tokens == 0


class TestMalformedStoredData:
    """Test that corrupt stored values read as zero instead of raising."""

    def test_infinite_counters_read_as_zero(self, tracker, store):
        store.hincrbyfloat("usage:daily:user-1:2024-03-15", "tokens", float("inf"))
        store.hincrbyfloat("usage:monthly:user-1:2024-03", "tokens", float("inf"))

        current = tracker.get_current_usage("user-1")
        assert current.daily_used == 0
        assert current.monthly_used == 0
        assert not current.degraded

        decision = tracker.can_make_request("user-1", 100)
        assert decision.allowed
        assert decision.status == DecisionStatus.ALLOWED

    def test_infinite_history_cost_skipped(self, tracker, store):
        tracker.record_usage("user-1", usage(150, 0.0023), META)
        entry = json.loads(store.lrange("usage:history:user-1", 0, 0)[0])
        entry["usage"]["cost"] = float("inf")
        store.lpush("usage:history:user-1", json.dumps(entry))

        stats = tracker.get_usage_stats("user-1", "day")
        assert stats.total_requests == 1
        assert stats.total_cost == 0.0023

    def test_infinite_lifetime_stats_read_as_zero(self, tracker, store):
        store.hincrbyfloat("usage:stats:user-1", "totalCost", float("inf"))
        store.hincrbyfloat("usage:stats:user-1", "model:gpt-4:cost", float("inf"))
        store.hincrbyfloat("usage:stats:user-1", "totalTokens", float("inf"))

        stats = tracker.get_lifetime_stats("user-1")
        assert stats.total_cost == 0.0
        assert stats.total_tokens == 0
        assert stats.by_model["gpt-4"].cost == 0.0


class TestInvalidArguments:
    """Test that caller errors are reported as ValueError."""

    def test_unknown_time_range(self, tracker):
        with pytest.raises(ValueError):
            tracker.get_usage_stats("user-1", "year")

    def test_unknown_reset_scope(self, tracker):
        tracker.record_usage("user-1", usage(500), META)
        with pytest.raises(ValueError):
            tracker.reset_usage("user-1", "weekly")
        assert tracker.get_current_usage("user-1").daily_used == 500
