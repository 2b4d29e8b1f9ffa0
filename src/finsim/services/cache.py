"""In-memory result cache keyed by input fingerprint."""

import hashlib
import json
import logging
from typing import Any, Callable

from cachetools import TTLCache

logger = logging.getLogger(__name__)


def fingerprint(*parts: Any) -> str:
    """SHA-256 over the JSON form of the given parts."""
    payload = json.dumps(parts, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResultCache:
    """TTL cache for simulation results.

    Keys are "<kind>:<fingerprint>" where the fingerprint covers the full
    normalized input, so two different configs never share an entry.
    Cached results are immutable models and are returned as-is.
    """

    def __init__(self, ttl: int = 300, maxsize: int = 256):
        self._ttl = ttl
        self._memory = TTLCache(maxsize=maxsize, ttl=ttl)
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(kind: str, digest: str) -> str:
        return f"{kind}:{digest}"

    def get(self, key: str) -> Any | None:
        """Get cached value by key."""
        value = self._memory.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def set(self, key: str, value: Any) -> None:
        self._memory[key] = value

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        value = self.get(key)
        if value is not None:
            logger.debug(f"Cache hit: {key}")
            return value
        value = compute()
        self.set(key, value)
        return value

    def invalidate(self, key: str) -> None:
        """Delete a cached key."""
        self._memory.pop(key, None)

    def clear_prefix(self, prefix: str) -> None:
        """Delete all keys matching a prefix."""
        keys_to_delete = [k for k in self._memory if k.startswith(prefix)]
        for k in keys_to_delete:
            self._memory.pop(k, None)

    def clear(self) -> None:
        self._memory.clear()

    def __len__(self) -> int:
        return len(self._memory)
