"""
Data models for storage layer.

Defines the usage history entries kept in the counter store.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ai_quota_guard.core.token_counter import TokenUsage


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a 'Z' suffix."""
    moment = moment.astimezone(timezone.utc) if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass(frozen=True)
class UsageMetadata:
    """What a usage record was spent on."""
    model: str
    feature: str
    request_id: Optional[str] = None

    def __post_init__(self):
        if not self.model or not self.model.strip():
            raise ValueError("model is required and cannot be empty")
        if not self.feature or not self.feature.strip():
            raise ValueError("feature is required and cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        data = {"model": self.model, "feature": self.feature}
        if self.request_id is not None:
            data["requestId"] = self.request_id
        return data


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one completed AI call.

    Append-only: records are pushed onto a bounded per-user history list and
    are never modified afterwards.
    """
    user_id: str
    timestamp: datetime
    usage: TokenUsage
    metadata: UsageMetadata

    @property
    def date(self) -> str:
        """UTC calendar date of the record, e.g. '2024-03-15'."""
        return format_timestamp(self.timestamp)[:10]

    def to_json(self) -> str:
        return json.dumps({
            "userId": self.user_id,
            "timestamp": format_timestamp(self.timestamp),
            "usage": self.usage.to_dict(),
            "metadata": self.metadata.to_dict(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "UsageRecord":
        """Parse a stored history entry.

        Raises:
            ValueError: If the entry is not a valid usage record
        """
        try:
            data = json.loads(raw)
            metadata = data["metadata"]
            return cls(
                user_id=data["userId"],
                timestamp=parse_timestamp(data["timestamp"]),
                usage=TokenUsage.from_dict(data["usage"]),
                metadata=UsageMetadata(
                    model=metadata["model"],
                    feature=metadata["feature"],
                    request_id=metadata.get("requestId")
                )
            )
        except (KeyError, TypeError, AttributeError, OverflowError) as e:
            raise ValueError(f"Malformed usage record: {e}")
