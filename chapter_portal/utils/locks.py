# chapter_portal/utils/locks.py
# Named mutual-exclusion sections for read-modify-write sequences
# against the spreadsheet service, which has no locking of its own.

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from chapter_portal.middleware.error_handler import BusyError
from chapter_portal.observability.metrics import LOCK_WAIT

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0  # holders + waiters


class MutexRegistry:
    """
    One asyncio.Lock per resource name, created on demand.

    - Same name: critical sections run one at a time; asyncio.Lock wakes
      waiters in arrival order, so no caller starves.
    - Different names: independent locks, never block each other.
    - Entries are dropped once nobody holds or waits on them.
    """

    def __init__(self, acquire_timeout: Optional[float] = None):
        self.acquire_timeout = acquire_timeout
        self._entries: Dict[str, _Entry] = {}

    def is_locked(self, name: str) -> bool:
        entry = self._entries.get(name)
        return bool(entry and entry.lock.locked())

    def active_names(self) -> list[str]:
        return sorted(self._entries)

    async def _acquire(self, lock: asyncio.Lock) -> bool:
        """True once ``lock`` is held; False when the bound passed, leaving it unheld."""
        if self.acquire_timeout is None:
            await lock.acquire()
            return True
        attempt = asyncio.ensure_future(lock.acquire())
        try:
            done, _ = await asyncio.wait({attempt}, timeout=self.acquire_timeout)
        except asyncio.CancelledError:
            abandon(lock, attempt)
            raise
        if done:
            return attempt.result()
        abandon(lock, attempt)
        return False

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        """Hold the named lock for the body of an ``async with`` block."""
        entry = self._entries.get(name)
        if entry is None:
            entry = self._entries[name] = _Entry()
        entry.users += 1
        started = time.monotonic()
        try:
            if not await self._acquire(entry.lock):
                waited = time.monotonic() - started
                logger.warning(f"Lock '{name}' not acquired after {waited:.2f}s")
                raise BusyError(name, waited)
            LOCK_WAIT.observe(time.monotonic() - started)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(name) is entry:
                del self._entries[name]

    async def with_lock(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` inside the named critical section and return its result.

        The section runs in its own task. If the caller is cancelled (client
        disconnected), the section still runs to completion and releases
        the lock: the spreadsheet has no rollback, so a half-applied
        sequence must not be abandoned midway.
        """
        async def _run() -> Any:
            async with self.hold(name):
                return await fn()

        task = asyncio.ensure_future(_run())
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.info(f"Caller cancelled; critical section '{name}' continues")
                task.add_done_callback(_log_orphan_result)
            raise


def _log_orphan_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Detached critical section failed: {type(exc).__name__}: {exc}")


def abandon(lock: asyncio.Lock, attempt: asyncio.Future) -> None:
    """
    Give up on a pending ``lock.acquire()``. The attempt can still complete
    before the cancellation lands; the lock is then released straight away.
    """
    attempt.cancel()

    def _release_if_acquired(done: asyncio.Future) -> None:
        if not done.cancelled() and done.exception() is None:
            lock.release()

    attempt.add_done_callback(_release_if_acquired)
