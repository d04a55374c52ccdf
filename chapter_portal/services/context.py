# chapter_portal/services/context.py
# Process-wide collaborators, built once at startup and injected into routes

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from chapter_portal.backends.blobs import BlobStore, GcsBlobStore
from chapter_portal.backends.tables import GoogleSheetsBackend, TableBackend
from chapter_portal.config import Settings
from chapter_portal.repositories.table_adapter import TableAdapter
from chapter_portal.services.allocator import IdAllocator
from chapter_portal.services.notifications import NotificationHub
from chapter_portal.services.reconciler import RosterReconciler
from chapter_portal.utils.cache import Cache
from chapter_portal.utils.locks import MutexRegistry

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    cache: Cache
    locks: MutexRegistry
    hub: NotificationHub
    allocator: IdAllocator
    records: TableAdapter
    rush_records: TableAdapter
    blobs: BlobStore
    reconciler: RosterReconciler
    started_at: float = field(default_factory=time.monotonic)

    @property
    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self.started_at)

    async def aclose(self) -> None:
        await self.hub.close_all()
        close = getattr(self.blobs, "aclose", None)
        if close is not None:
            await close()


def build_context(
    settings: Settings,
    records_backend: Optional[TableBackend] = None,
    rush_backend: Optional[TableBackend] = None,
    blobs: Optional[BlobStore] = None,
) -> AppContext:
    """Wire the collaborators. Backends default to Google Sheets / Cloud Storage."""
    cache = Cache(ttl_seconds=settings.SHEET_TTL)
    locks = MutexRegistry(acquire_timeout=settings.LOCK_ACQUIRE_TIMEOUT)
    hub = NotificationHub(
        ping_interval=settings.SSE_PING_INTERVAL,
        stale_after=settings.SSE_STALE_AFTER,
        queue_size=settings.SSE_QUEUE_SIZE,
    )
    records = TableAdapter(
        records_backend or GoogleSheetsBackend(settings.SPREADSHEET_ID, settings),
        cache,
        name="records",
        ttl_seconds=settings.SHEET_TTL,
    )
    rush_records = TableAdapter(
        rush_backend or GoogleSheetsBackend(settings.RUSH_SPREADSHEET_ID, settings),
        cache,
        name="rush",
        ttl_seconds=settings.SHEET_TTL,
    )
    ctx = AppContext(
        settings=settings,
        cache=cache,
        locks=locks,
        hub=hub,
        allocator=IdAllocator(cache, locks),
        records=records,
        rush_records=rush_records,
        blobs=blobs or GcsBlobStore(settings),
        reconciler=RosterReconciler(records, cache, locks, hub),
    )
    logger.info("Application context ready")
    return ctx
