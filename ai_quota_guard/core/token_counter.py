"""
Token counting and usage tracking.

Holds the token usage value object and the pre-flight token estimator.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict


# Rough ratio for English text; only used before the provider reports real counts
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage and cost of a single completed AI call.

    Counts come from the provider response, never from estimation.
    """
    prompt_tokens: int
    completion_tokens: int
    cost: float = 0.0

    def __post_init__(self):
        """Validate counts are non-negative and cost is a finite non-negative amount."""
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be >= 0")
        if not math.isfinite(self.cost) or self.cost < 0:
            raise ValueError("cost must be a finite amount >= 0")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenUsage":
        return cls(
            prompt_tokens=int(data.get("promptTokens", 0)),
            completion_tokens=int(data.get("completionTokens", 0)),
            cost=float(data.get("cost", 0.0)),
        )


def estimate_tokens(text: str) -> int:
    """Estimate the token count of text as ceil(len / 4).

    This is intentionally crude. It only gates the quota check before a
    request is dispatched; the provider's real count is what gets recorded.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
