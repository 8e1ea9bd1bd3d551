"""
Counter store connection management.

Provides the Redis client used for quota counters, or an in-memory store
when no Redis URL is configured.
"""

import logging
from typing import Any, Optional

import redis

from .memory import InMemoryCounterStore

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_TIMEOUT = 2.0


def get_counter_store(url: Optional[str] = None, socket_timeout: float = DEFAULT_SOCKET_TIMEOUT) -> Any:
    """Create the counter store for a Redis URL.

    The client connects lazily, so an unreachable server surfaces as a
    ``redis.exceptions.ConnectionError`` on first use rather than here.

    Args:
        url: Redis URL (e.g. ``redis://localhost:6379/0``). If None, an
            in-memory store is returned instead.
        socket_timeout: Seconds before a store operation times out

    Returns:
        A redis-py client with ``decode_responses=True``, or an
        InMemoryCounterStore
    """
    if not url:
        logger.warning("No Redis URL configured, using in-memory counter store")
        return InMemoryCounterStore()

    logger.info("Using Redis counter store at %s", _redact(url))
    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


def _redact(url: str) -> str:
    """Hide the password part of a Redis URL for logging."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
