"""
SDK for AI Quota Guard.

Provides quota-enforcing wrappers around AI provider clients.
"""

from .openai_client import GuardedOpenAI, UsageLimitExceeded

__all__ = ["GuardedOpenAI", "UsageLimitExceeded"]
