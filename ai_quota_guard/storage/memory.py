"""
In-memory counter store.

Mimics the subset of the redis-py client API the repository uses, for tests
and for running without a Redis server. Single process only.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from redis.exceptions import ResponseError


class InMemoryCounterStore:
    """Dict-based store with hashes, lists and key expiry.

    Values are returned as strings, as a redis-py client created with
    ``decode_responses=True`` would return them.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._data: Dict[str, Any] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._clock = clock or time.time

    # -- reads ---------------------------------------------------------------

    def hgetall(self, key: str) -> Dict[str, str]:
        with self._lock:
            value = self._get(key, dict)
            return dict(value) if value is not None else {}

    def lrange(self, key: str, start: int, stop: int) -> List[str]:
        with self._lock:
            value = self._get(key, list)
            if value is None:
                return []
            return list(value[_slice(len(value), start, stop)])

    def ttl(self, key: str) -> int:
        """Seconds until key expires, -1 without expiry, -2 if missing."""
        with self._lock:
            if not self._exists(key):
                return -2
            if key not in self._expires:
                return -1
            return int(self._expires[key] - self._clock())

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._exists(key)

    def ping(self) -> bool:
        return True

    # -- writes --------------------------------------------------------------

    def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        with self._lock:
            bucket = self._get_or_create(key, dict)
            try:
                current = int(bucket.get(field, "0"))
            except ValueError:
                raise ResponseError("ERR hash value is not an integer")
            bucket[field] = str(current + int(amount))
            return current + int(amount)

    def hincrbyfloat(self, key: str, field: str, amount: float = 1.0) -> float:
        with self._lock:
            bucket = self._get_or_create(key, dict)
            try:
                current = float(bucket.get(field, "0"))
            except ValueError:
                raise ResponseError("ERR hash value is not a float")
            result = current + float(amount)
            bucket[field] = repr(result)
            return result

    def lpush(self, key: str, *values: str) -> int:
        with self._lock:
            items = self._get_or_create(key, list)
            for value in values:
                items.insert(0, value)
            return len(items)

    def ltrim(self, key: str, start: int, stop: int) -> bool:
        with self._lock:
            items = self._get(key, list)
            if items is not None:
                kept = items[_slice(len(items), start, stop)]
                if kept:
                    self._data[key] = kept
                else:
                    self._remove(key)
            return True

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            if not self._exists(key):
                return False
            self._expires[key] = self._clock() + seconds
            return True

    def delete(self, *keys: str) -> int:
        with self._lock:
            count = 0
            for key in keys:
                if self._exists(key):
                    count += 1
                self._remove(key)
            return count

    def pipeline(self, transaction: bool = True) -> "InMemoryPipeline":
        return InMemoryPipeline(self)

    # -- internals -----------------------------------------------------------

    def _exists(self, key: str) -> bool:
        expires = self._expires.get(key)
        if expires is not None and self._clock() >= expires:
            self._remove(key)
        return key in self._data

    def _get(self, key: str, kind: type) -> Any:
        if not self._exists(key):
            return None
        value = self._data[key]
        if not isinstance(value, kind):
            raise ResponseError(f"WRONGTYPE Operation against key {key} holding the wrong kind of value")
        return value

    def _get_or_create(self, key: str, kind: type) -> Any:
        value = self._get(key, kind)
        if value is None:
            value = kind()
            self._data[key] = value
        return value

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)
        self._expires.pop(key, None)


class InMemoryPipeline:
    """Queued commands applied together under the store lock on execute()."""

    def __init__(self, store: InMemoryCounterStore):
        self._store = store
        self._commands: List[Tuple[str, tuple]] = []

    def __enter__(self) -> "InMemoryPipeline":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.reset()

    def _queue(self, name: str, *args: Any) -> "InMemoryPipeline":
        self._commands.append((name, args))
        return self

    def hincrby(self, key: str, field: str, amount: int = 1) -> "InMemoryPipeline":
        return self._queue("hincrby", key, field, amount)

    def hincrbyfloat(self, key: str, field: str, amount: float = 1.0) -> "InMemoryPipeline":
        return self._queue("hincrbyfloat", key, field, amount)

    def lpush(self, key: str, *values: str) -> "InMemoryPipeline":
        return self._queue("lpush", key, *values)

    def ltrim(self, key: str, start: int, stop: int) -> "InMemoryPipeline":
        return self._queue("ltrim", key, start, stop)

    def expire(self, key: str, seconds: int) -> "InMemoryPipeline":
        return self._queue("expire", key, seconds)

    def delete(self, *keys: str) -> "InMemoryPipeline":
        return self._queue("delete", *keys)

    def execute(self) -> List[Any]:
        """Apply all queued commands; on failure the store is left unchanged."""
        store = self._store
        with store._lock:
            snapshot = (
                {k: (dict(v) if isinstance(v, dict) else list(v)) for k, v in store._data.items()},
                dict(store._expires),
            )
            try:
                results = [getattr(store, name)(*args) for name, args in self._commands]
            except Exception:
                store._data, store._expires = snapshot
                raise
            finally:
                self.reset()
        return results

    def reset(self) -> None:
        self._commands = []


def _slice(length: int, start: int, stop: int) -> slice:
    """Translate Redis inclusive list indexes into a Python slice."""
    if start < 0:
        start = max(0, length + start)
    if stop < 0:
        stop = length + stop
        if stop < 0:
            return slice(0, 0)
    return slice(start, stop + 1)
