"""
Guarded OpenAI client wrapper.

Checks the user's quota before each completion and records actual usage
after it, without modifying the provider response.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from openai import OpenAI

from ..core.plans import PlanType
from ..core.pricing import priced_usage
from ..core.quota import QuotaDecision
from ..core.token_counter import estimate_tokens
from ..core.tracker import UsageTracker
from ..storage.models import UsageMetadata

logger = logging.getLogger(__name__)

# Completion tokens reserved in the pre-flight estimate when max_tokens is not set
DEFAULT_COMPLETION_RESERVE = 1000


class UsageLimitExceeded(Exception):
    """Raised when a user's quota does not allow the requested completion."""
    def __init__(self, decision: QuotaDecision):
        super().__init__(decision.reason or "Usage limit exceeded")
        self.decision = decision
        self.reset_time = decision.reset_time


class GuardedOpenAI:
    """OpenAI client wrapper that enforces per-user token quotas.

    Each chat call is checked against the tracker first and recorded once
    after the provider responds.
    """

    def __init__(
        self,
        model: str,
        feature: str,
        tracker: UsageTracker,
        plan: Union[PlanType, str] = PlanType.FREE,
        client: Optional[OpenAI] = None
    ):
        """Initialize guarded OpenAI client.

        Args:
            model: OpenAI model name (required)
            feature: Feature identifier for tracking (required)
            tracker: Usage tracker holding the counter store
            plan: Plan tier whose limits apply to callers of this client
            client: OpenAI client to use (a default client is created if None)

        Raises:
            ValueError: If model or feature is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not feature or not feature.strip():
            raise ValueError("feature is required and cannot be empty")

        self.model = model
        self.feature = feature
        self.tracker = tracker
        self.plan = plan
        self.client = client or OpenAI()

    def estimate_request_tokens(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None) -> int:
        """Pre-flight estimate: prompt text plus the completion reserve."""
        prompt_text = "".join(str(message.get("content") or "") for message in messages)
        reserve = max_tokens if max_tokens is not None else DEFAULT_COMPLETION_RESERVE
        return estimate_tokens(prompt_text) + reserve

    def chat(
        self,
        user_id: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion within the user's quota.

        Args:
            user_id: User the completion is billed to
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response

        Raises:
            ValueError: If user_id or messages is empty
            UsageLimitExceeded: If the quota check denies the request
            OpenAI API errors: Propagated without modification
        """
        if not user_id:
            raise ValueError("user_id is required and cannot be empty")
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        estimated = self.estimate_request_tokens(messages, max_tokens)
        decision = self.tracker.can_make_request(user_id, estimated, self.plan)
        if decision.is_degraded:
            logger.warning("Quota check degraded for %s: %s", user_id, decision.reason)
        if not decision.allowed:
            raise UsageLimitExceeded(decision)

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        usage = response.usage
        if not usage:
            logger.warning("OpenAI response %s missing usage information, not recorded", response.id)
            return response

        token_usage = priced_usage(self.model, usage.prompt_tokens, usage.completion_tokens)
        self.tracker.record_usage(
            user_id,
            token_usage,
            UsageMetadata(model=self.model, feature=self.feature, request_id=response.id)
        )

        return response
