# chapter_portal/services/reconciler.py
# Full-snapshot merge of the membership roster

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from chapter_portal.constants import (
    EVENT_ROSTER_UPDATE,
    NO_POSITION,
    ROSTER_EMAIL,
    ROSTER_NAME,
    ROSTER_POSITION,
    ROSTER_TABLE,
    UNKNOWN_NAME,
)
from chapter_portal.middleware.error_handler import NotFoundError
from chapter_portal.repositories.table_adapter import TableAdapter, remove_indices
from chapter_portal.services.notifications import NotificationHub
from chapter_portal.utils.cache import Cache
from chapter_portal.utils.locks import MutexRegistry

logger = logging.getLogger(__name__)

ROSTER_LOCK = "roster"


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def valid_email_key(email: str) -> str:
    return f"validEmail:{normalize_email(email)}"


@dataclass
class ReconcileResult:
    update_count: int = 0
    remove_count: int = 0
    add_count: int = 0

    @property
    def total(self) -> int:
        return self.update_count + self.remove_count + self.add_count

    @property
    def message(self) -> str:
        parts = []
        if self.update_count:
            parts.append(f"{self.update_count} updated")
        if self.remove_count:
            parts.append(f"{self.remove_count} removed")
        if self.add_count:
            parts.append(f"{self.add_count} added")
        return ", ".join(parts) if parts else "No changes"


class RosterReconciler:
    """
    Applies a desired roster plus explicit removals to the roster table.

    Removal wins over presence in the desired list, including for an
    email the table does not hold yet: it is not appended. Rows whose
    email is in neither input are left exactly as they are; nothing is
    deleted by omission. Only the Email, Name and Position cells of matched
    rows are rewritten, and a row counts as updated only if one of them changed.
    """

    def __init__(
        self,
        tables: TableAdapter,
        cache: Cache,
        locks: MutexRegistry,
        hub: NotificationHub,
        title: str = ROSTER_TABLE,
    ):
        self.tables = tables
        self.cache = cache
        self.locks = locks
        self.hub = hub
        self.title = title

    @staticmethod
    def build_update_map(desired: Iterable[Mapping[str, Any]]) -> Dict[str, Dict[str, str]]:
        update_map: Dict[str, Dict[str, str]] = {}
        for entity in desired:
            key = normalize_email(entity.get("email"))
            if not key:
                continue
            update_map[key] = {
                ROSTER_EMAIL: (entity.get("email") or "").strip(),
                ROSTER_NAME: (entity.get("name") or "").strip() or UNKNOWN_NAME,
                ROSTER_POSITION: (entity.get("position") or "").strip() or NO_POSITION,
            }
        return update_map

    async def reconcile(
        self,
        desired: Iterable[Mapping[str, Any]],
        removals: Iterable[Mapping[str, Any]] = (),
    ) -> ReconcileResult:
        remove_set = {normalize_email(e.get("email")) for e in removals} - {""}
        update_map = self.build_update_map(desired)
        result = await self.locks.with_lock(
            ROSTER_LOCK, lambda: self._apply(update_map, remove_set)
        )
        # Published after the lock is released; never raises
        if result.total:
            self.hub.notify(EVENT_ROSTER_UPDATE, {
                "updated": result.update_count,
                "removed": result.remove_count,
                "added": result.add_count,
            })
        return result

    async def _apply(self, update_map: Dict[str, Dict[str, str]], remove_set: set) -> ReconcileResult:
        table = await self.tables.read_table(self.title, fresh=True)
        if table.is_empty:
            raise NotFoundError("Roster table is empty or could not be read")
        table.require_columns(ROSTER_EMAIL, ROSTER_NAME, ROSTER_POSITION)

        result = ReconcileResult()
        rows: List[List[Any]] = []
        seen: set = set()
        doomed: List[int] = []
        touched: set = set()

        for row in table.rows:
            cells = row.cells
            rows.append(cells)
            key = normalize_email(row[ROSTER_EMAIL])
            if not key:
                continue
            seen.add(key)
            if key in remove_set:
                doomed.append(row.index)
                continue
            desired = update_map.get(key)
            if desired is None:
                continue
            if any(row[col] != value for col, value in desired.items()):
                rows[row.index] = row.with_updates(desired)
                result.update_count += 1
                touched.add(key)

        remove_indices(rows, doomed)
        result.remove_count = len(doomed)

        for key, desired in update_map.items():
            if key not in seen and key not in remove_set:
                rows.append(table.new_row(desired))
                result.add_count += 1

        if result.total:
            await self.tables.replace_table(self.title, [list(table.header)] + rows)
        else:
            self.tables.invalidate(self.title)

        for key in remove_set | touched:
            self.cache.delete(valid_email_key(key))

        logger.info(f"Roster reconciled: {result.message}")
        return result
