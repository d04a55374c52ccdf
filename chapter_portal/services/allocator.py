# chapter_portal/services/allocator.py
# Per-resource integer id sequence

import logging
from typing import Awaitable, Callable

from chapter_portal.utils.cache import Cache
from chapter_portal.utils.locks import MutexRegistry

logger = logging.getLogger(__name__)


def max_numeric(values) -> int:
    """Largest integer among ``values``; non-numeric cells are ignored."""
    best = 0
    for v in values:
        try:
            n = int(float(str(v).strip()))
        except (TypeError, ValueError):
            continue
        if n > best:
            best = n
    return best


class IdAllocator:
    """
    Hands out increasing integer ids per resource.

    The last issued value lives in the cache without expiry under
    ``lastId:<resource>``. When it is missing (process start, cache flush)
    it is recomputed from the table by ``load_current_max`` before the next
    value is issued, so an id already present in the table is never reissued.
    Allocation runs under its own lock ``ids:<resource>`` and may be called
    from inside another critical section on the same resource.
    """

    def __init__(self, cache: Cache, locks: MutexRegistry):
        self.cache = cache
        self.locks = locks

    @staticmethod
    def counter_key(resource: str) -> str:
        return f"lastId:{resource}"

    async def next_id(self, resource: str, load_current_max: Callable[[], Awaitable[int]]) -> int:
        async with self.locks.hold(f"ids:{resource}"):
            key = self.counter_key(resource)
            last = self.cache.get(key)
            if last is None:
                last = int(await load_current_max())
                logger.info(f"Id counter for {resource} recomputed from table: {last}")
            issued = last + 1
            self.cache.set(key, issued, ttl_seconds=0)
            return issued

    def forget(self, resource: str) -> None:
        self.cache.delete(self.counter_key(resource))
