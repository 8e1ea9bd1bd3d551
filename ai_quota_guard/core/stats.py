"""
Usage reporting and aggregation.

Builds usage reports from history records and lifetime counters.
Pure functions; reading the store is the tracker's job.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping

from ai_quota_guard.storage.models import UsageRecord
from ai_quota_guard.storage.repository import to_float, to_int
from .pricing import round_cost


TOP_FEATURES_LIMIT = 10


@dataclass(frozen=True)
class FeatureUsage:
    """Tokens and cost spent on one feature."""
    feature: str
    tokens: int
    cost: float


@dataclass(frozen=True)
class DailyUsage:
    """Tokens and cost spent on one UTC calendar date."""
    date: str
    tokens: int
    cost: float


@dataclass(frozen=True)
class UsageStats:
    """Aggregated usage over a reporting range."""
    total_tokens: int = 0
    total_cost: float = 0.0
    total_requests: int = 0
    average_cost_per_request: float = 0.0
    top_features: List[FeatureUsage] = field(default_factory=list)
    daily_breakdown: List[DailyUsage] = field(default_factory=list)


@dataclass(frozen=True)
class UsageBreakdown:
    tokens: int
    cost: float


@dataclass(frozen=True)
class LifetimeStats:
    """All-time totals with per-model and per-feature breakdowns."""
    total_tokens: int = 0
    total_cost: float = 0.0
    total_requests: int = 0
    by_model: Dict[str, UsageBreakdown] = field(default_factory=dict)
    by_feature: Dict[str, UsageBreakdown] = field(default_factory=dict)


def aggregate_usage(records: Iterable[UsageRecord], cutoff: datetime) -> UsageStats:
    """
    Aggregate records stamped at or after cutoff.

    Args:
        records: History records in any order
        cutoff: Inclusive lower bound on record timestamps

    Returns:
        UsageStats with features sorted by tokens (top 10) and dates ascending
    """
    total_tokens = 0
    total_cost = 0.0
    total_requests = 0
    features: Dict[str, List[float]] = {}
    days: Dict[str, List[float]] = {}

    for record in records:
        if record.timestamp < cutoff:
            continue

        tokens = record.usage.total_tokens
        cost = record.usage.cost
        total_tokens += tokens
        total_cost += cost
        total_requests += 1

        for bucket, name in ((features, record.metadata.feature), (days, record.date)):
            totals = bucket.setdefault(name, [0, 0.0])
            totals[0] += tokens
            totals[1] += cost

    top_features = sorted(
        (FeatureUsage(feature=name, tokens=int(t[0]), cost=round_cost(t[1])) for name, t in features.items()),
        key=lambda f: f.tokens,
        reverse=True
    )[:TOP_FEATURES_LIMIT]

    daily_breakdown = [
        DailyUsage(date=date, tokens=int(t[0]), cost=round_cost(t[1]))
        for date, t in sorted(days.items())
    ]

    return UsageStats(
        total_tokens=total_tokens,
        total_cost=round_cost(total_cost),
        total_requests=total_requests,
        average_cost_per_request=round_cost(total_cost / total_requests) if total_requests else 0.0,
        top_features=top_features,
        daily_breakdown=daily_breakdown,
    )


def parse_lifetime_stats(raw: Mapping[str, str]) -> LifetimeStats:
    """Build LifetimeStats from the stored hash.

    Breakdown fields look like ``model:gpt-4:tokens`` or ``feature:ats_analysis:cost``.
    """
    by_model: Dict[str, List[float]] = {}
    by_feature: Dict[str, List[float]] = {}

    for name, value in raw.items():
        kind, sep, rest = name.partition(":")
        if not sep or kind not in ("model", "feature"):
            continue
        label, sep, metric = rest.rpartition(":")
        if not sep or metric not in ("tokens", "cost"):
            continue
        totals = (by_model if kind == "model" else by_feature).setdefault(label, [0, 0.0])
        if metric == "tokens":
            totals[0] = to_int(value)
        else:
            totals[1] = to_float(value)

    def _breakdown(bucket: Dict[str, List[float]]) -> Dict[str, UsageBreakdown]:
        return {
            label: UsageBreakdown(tokens=int(t[0]), cost=round_cost(t[1]))
            for label, t in bucket.items()
        }

    return LifetimeStats(
        total_tokens=to_int(raw.get("totalTokens")),
        total_cost=round_cost(to_float(raw.get("totalCost"))),
        total_requests=to_int(raw.get("totalRequests")),
        by_model=_breakdown(by_model),
        by_feature=_breakdown(by_feature),
    )
