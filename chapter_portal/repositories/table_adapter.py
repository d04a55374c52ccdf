# chapter_portal/repositories/table_adapter.py
# Cached, header-aware access to the tables of one spreadsheet.
# Row positions never leave this module; callers work with Row mappings
# and data-row indices taken from a read they made under the same lock.

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from chapter_portal.backends.tables import SheetProperties, TableBackend
from chapter_portal.middleware.error_handler import NotFoundError
from chapter_portal.utils.addressing import a1_range, cell_range, structural_index
from chapter_portal.utils.cache import Cache

logger = logging.getLogger(__name__)


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def remove_indices(rows: List[Any], indices: Iterable[int]) -> List[Any]:
    """Remove positions from a list, highest first, so earlier positions stay valid."""
    for i in sorted(set(indices), reverse=True):
        del rows[i]
    return rows


class Row(Mapping[str, str]):
    """One data row, keyed by header name. Ragged rows read as trailing empty cells."""

    __slots__ = ("index", "_columns", "_cells")

    def __init__(self, index: int, columns: Dict[str, int], cells: Sequence[Any], width: int):
        self.index = index
        self._columns = columns
        padded = [_cell(c) for c in cells]
        if len(padded) < width:
            padded.extend([""] * (width - len(padded)))
        self._cells = tuple(padded)

    def __getitem__(self, column: str) -> str:
        return self._cells[self._columns[column]]

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    @property
    def cells(self) -> List[str]:
        """Raw cells in sheet order, for rows whose layout predates the header."""
        return list(self._cells)

    def position(self, column: str) -> int:
        try:
            return self._columns[column]
        except KeyError:
            raise NotFoundError(f"No column '{column}'")

    def with_updates(self, updates: Mapping[str, Any]) -> List[Any]:
        cells: List[Any] = list(self._cells)
        for column, value in updates.items():
            cells[self._columns[column]] = value
        return cells

    def __repr__(self) -> str:
        return f"Row({self.index}, {dict(self)!r})"


class Table:
    """Immutable snapshot of a table read. ``rows[i].index == i``."""

    def __init__(self, title: str, values: Sequence[Sequence[Any]]):
        self.title = title
        self.header: List[str] = [_cell(h) for h in values[0]] if values else []
        self._columns: Dict[str, int] = {}
        for i, name in enumerate(self.header):
            if name and name not in self._columns:
                self._columns[name] = i
        width = max([len(self.header)] + [len(r) for r in values[1:]]) if values else 0
        self.rows: List[Row] = [
            Row(i, self._columns, cells, width) for i, cells in enumerate(values[1:])
        ]

    @property
    def is_empty(self) -> bool:
        return not self.header

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def has_column(self, column: str) -> bool:
        return column in self._columns

    def column_index(self, column: str) -> int:
        try:
            return self._columns[column]
        except KeyError:
            raise NotFoundError(f"Table '{self.title}' has no column '{column}'")

    def require_columns(self, *columns: str) -> None:
        for c in columns:
            self.column_index(c)

    def find(self, column: str, value: str, key=None) -> Optional[Row]:
        """First row whose ``column`` equals ``value`` (after ``key`` when given)."""
        if not self.has_column(column):
            return None
        norm = key or (lambda v: v)
        target = norm(value)
        for row in self.rows:
            if norm(row[column]) == target:
                return row
        return None

    def new_row(self, fields: Mapping[str, Any]) -> List[Any]:
        """Cells for an appended row, laid out by this table's header."""
        cells: List[Any] = [""] * len(self.header)
        for column, value in fields.items():
            if column in self._columns:
                cells[self._columns[column]] = value
        return cells

    def to_values(self) -> List[List[Any]]:
        return [list(self.header)] + [row.cells for row in self.rows]


class TableAdapter:
    """
    Tables of one spreadsheet, cache-through on read.

    Cache keys: ``table:<name>:<title>`` for table snapshots and
    ``sheets:<name>`` for the title/id listing. Every write invalidates
    the affected snapshot as its last step, whether or not it succeeded.

    Each key carries a generation that invalidation bumps. A read stores
    its result only if the generation it started under is still current,
    so a read that overlapped a write can never re-cache the pre-write
    snapshot.
    """

    def __init__(self, backend: TableBackend, cache: Cache, name: str, ttl_seconds: int = 60):
        self.backend = backend
        self.cache = cache
        self.name = name
        self.ttl = ttl_seconds
        self._epoch = 0
        self._generations: Dict[str, int] = {}

    def table_key(self, title: str) -> str:
        return f"table:{self.name}:{title}"

    @property
    def sheets_key(self) -> str:
        return f"sheets:{self.name}"

    def generation(self, key: str) -> Tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def _drop(self, key: str) -> bool:
        self._generations[key] = self._generations.get(key, 0) + 1
        return self.cache.delete(key)

    def _store(self, key: str, value: Any, started: Tuple[int, int]) -> None:
        if self.generation(key) == started:
            self.cache.set(key, value, self.ttl)
        else:
            logger.debug(f"Not caching {key}: invalidated while reading")

    def invalidate(self, title: str) -> None:
        self._drop(self.table_key(title))

    def invalidate_all(self) -> int:
        self._epoch += 1
        return self.cache.delete_prefix(f"table:{self.name}:") + int(self.cache.delete(self.sheets_key))

    # --- reads ---

    async def read_table(self, title: str, fresh: bool = False) -> Table:
        key = self.table_key(title)
        if fresh:
            self.cache.delete(key)
        else:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        started = self.generation(key)
        values = await self.backend.get_values(title)
        table = Table(title, values)
        self._store(key, table, started)
        return table

    async def list_tables(self, fresh: bool = False) -> List[SheetProperties]:
        if not fresh:
            cached = self.cache.get(self.sheets_key)
            if cached is not None:
                return cached
        started = self.generation(self.sheets_key)
        sheets = await self.backend.list_sheets()
        self._store(self.sheets_key, sheets, started)
        return sheets

    async def resolve_title(self, sheet_id: Any) -> Optional[str]:
        """Title of the table with this numeric id, or None."""
        try:
            wanted = int(sheet_id)
        except (TypeError, ValueError):
            return None
        for fresh in (False, True):
            for sheet in await self.list_tables(fresh=fresh):
                if sheet.sheet_id == wanted:
                    return sheet.title
        return None

    async def require_title(self, sheet_id: Any, what: str = "Table") -> str:
        title = await self.resolve_title(sheet_id)
        if title is None:
            raise NotFoundError(f"{what} not found")
        return title

    async def sheet_id(self, title: str) -> int:
        for fresh in (False, True):
            for sheet in await self.list_tables(fresh=fresh):
                if sheet.title == title:
                    return sheet.sheet_id
        raise NotFoundError(f"Table '{title}' not found")

    # --- writes ---

    async def write_range(self, title: str, row_index: int, column_index: int, values: List[List[Any]]) -> None:
        """Overwrite the rectangle whose top-left cell is (row_index, column_index)."""
        if not values:
            self.invalidate(title)
            return
        width = max(len(r) for r in values)
        rng = cell_range(title, row_index, column_index, width=width, height=len(values))
        try:
            await self.backend.update_values(rng, values)
        finally:
            self.invalidate(title)

    async def update_row(self, title: str, index: int, cells: List[Any]) -> None:
        await self.write_range(title, index, 0, [cells])

    async def update_cells(self, title: str, row: Row, updates: Mapping[str, Any]) -> None:
        """
        Overwrite named cells of ``row``, which must come from a read made
        under the lock the caller still holds. Cells between the first and
        last updated column are written back with the row's own values.
        """
        if not updates:
            self.invalidate(title)
            return
        try:
            positions = sorted((row.position(c), v) for c, v in updates.items())
        except NotFoundError:
            self.invalidate(title)
            raise
        first, last = positions[0][0], positions[-1][0]
        span = row.cells[first:last + 1]
        for pos, value in positions:
            span[pos - first] = value
        await self.write_range(title, row.index, first, [span])

    async def append_rows(self, title: str, rows: List[List[Any]]) -> None:
        if not rows:
            self.invalidate(title)
            return
        try:
            await self.backend.append_values(title, rows)
        finally:
            self.invalidate(title)

    async def delete_rows(self, title: str, indices: Iterable[int]) -> int:
        """Delete data rows by index in one structural batch, highest index first."""
        ordered = sorted(set(indices), reverse=True)
        try:
            if not ordered:
                return 0
            sid = await self.sheet_id(title)
            await self.backend.delete_rows(sid, [structural_index(i) for i in ordered])
            return len(ordered)
        finally:
            self.invalidate(title)

    async def replace_table(self, title: str, values: List[List[Any]]) -> None:
        """Clear the table and write ``values`` (header included) from A1."""
        try:
            await self.backend.clear_values(title)
            if values:
                await self.backend.update_values(a1_range(title, "A1"), values)
        finally:
            self.invalidate(title)

    async def ensure_table(self, title: str, header: List[str]) -> bool:
        """Create ``title`` with ``header`` unless it exists. Returns True when created."""
        for sheet in await self.list_tables(fresh=True):
            if sheet.title == title:
                return False
        await self.add_tables([(title, header)])
        logger.info(f"Created table '{title}' in {self.name}")
        return True

    async def add_tables(self, specs: Sequence[Tuple[str, List[str]]]) -> List[int]:
        """Create tables with header rows; returns their numeric ids in order."""
        try:
            added = await self.backend.add_sheets([title for title, _ in specs])
            for (title, header), sheet in zip(specs, added):
                await self.backend.update_values(a1_range(title, "A1"), [list(header)])
            return [s.sheet_id for s in added]
        finally:
            self._drop(self.sheets_key)
            for title, _ in specs:
                self.invalidate(title)

    async def delete_tables(self, sheet_ids: Sequence[int]) -> None:
        titles = [await self.resolve_title(s) for s in sheet_ids]
        try:
            await self.backend.delete_sheets([int(s) for s in sheet_ids])
        finally:
            self._drop(self.sheets_key)
            for title in titles:
                if title:
                    self.invalidate(title)
