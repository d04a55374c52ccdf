import json
import hashlib
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from chapter_portal.observability.metrics import CACHE_LOOKUPS

DEFAULT_TTL_SECONDS = 60

# Sentinel so that falsy values (empty tables, False flags) are still cache hits
_MISSING = object()


class Cache:
    """In-process key/value store with per-entry TTL.

    ``ttl_seconds == 0`` stores an entry without expiry; it stays until
    ``delete``/``delete_prefix``/``delete_all``. Expired entries are dropped
    lazily on read. Nothing here awaits, so callers never yield while holding
    a cache reference.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self.hits = 0
        self.misses = 0
        self._clock = clock
        # key -> (value, expires_at or None)
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}

    @staticmethod
    def build_key(prefix: str, payload: dict) -> str:
        raw = json.dumps(payload, sort_keys=True, default=str)
        digest = hashlib.sha256(raw.encode()).hexdigest()
        return f"{prefix}:{digest}"

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key, _MISSING)
        if entry is _MISSING:
            return self._miss(default)
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return self._miss(default)
        self.hits += 1
        CACHE_LOOKUPS.labels(result="hit").inc()
        return value

    def _miss(self, default: Any) -> Any:
        self.misses += 1
        CACHE_LOOKUPS.labels(result="miss").inc()
        return default

    def contains(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.ttl if ttl_seconds is None else ttl_seconds
        if ttl < 0:
            raise ValueError("ttl_seconds must be >= 0")
        expires_at = None if ttl == 0 else self._clock() + ttl
        self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, _MISSING) is not _MISSING

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def delete_all(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Drop expired entries eagerly. Reads never depend on this."""
        now = self._clock()
        expired = [k for k, (_, exp) in self._entries.items() if exp is not None and now >= exp]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def keys(self) -> List[str]:
        self.sweep()
        return list(self._entries)

    def stats(self) -> Tuple[int, int]:
        return self.hits, self.misses
