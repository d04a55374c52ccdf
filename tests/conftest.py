# tests/conftest.py
# In-memory stand-ins for the spreadsheet and blob services, plus a wired
# application context. Values are stored the way the spreadsheet returns
# them: every cell is a string, booleans read back as TRUE/FALSE.

import asyncio
import re
from typing import Dict, List, Optional

import pytest

from chapter_portal.backends.tables import SheetProperties
from chapter_portal.config import Settings
from chapter_portal.middleware.error_handler import BackingServiceError
from chapter_portal.utils.addressing import column_index

ROSTER_HEADER = ["Email", "Name", "Position", "Year"]
ROSTER_ROWS = [
    ["alice@example.org", "Alice", "Chi", "2025"],
    ["bob@example.org", "Bob", "Rho", "2026"],
    ["carol@example.org", "Carol", "Beta", "2025"],
    ["dave@example.org", "Dave", "Alumni", "2020"],
    ["pat@example.org", "Pat", "Pledge", "2028"],
]

_RANGE_RE = re.compile(r"^'((?:[^']|'')*)'(?:!([A-Z]+)(\d+)(?::([A-Z]+)(\d+))?)?$")


def as_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


class Gate:
    """Holds one backend call after it has read its result."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.released = asyncio.Event()

    async def pass_through(self) -> None:
        self.entered.set()
        await self.released.wait()


class InMemoryTableBackend:
    """TableBackend over a dict of title -> rows, recording every call."""

    def __init__(self, tables: Optional[Dict[str, List[List[str]]]] = None):
        self._next_id = 100
        self.sheets: Dict[str, List[List[str]]] = {}
        self.ids: Dict[str, int] = {}
        self.calls: List[tuple] = []
        self.fail_on: set = set()
        self.gates: Dict[str, Gate] = {}
        for title, rows in (tables or {}).items():
            self._create(title)
            self.sheets[title] = [[as_cell(c) for c in r] for r in rows]

    def _create(self, title: str) -> SheetProperties:
        if title in self.ids:
            raise BackingServiceError(f"A sheet with the name '{title}' already exists")
        self.ids[title] = self._next_id
        self.sheets[title] = []
        self._next_id += 1
        return SheetProperties(self.ids[title], title)

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise BackingServiceError(f"{operation} failed")

    def _sheet(self, title: str) -> List[List[str]]:
        if title not in self.sheets:
            raise BackingServiceError(f"Unable to parse range: {title}")
        return self.sheets[title]

    @staticmethod
    def parse_range(range_a1: str):
        m = _RANGE_RE.match(range_a1)
        if m is None:
            raise ValueError(f"bad range {range_a1!r}")
        title = m.group(1).replace("''", "'")
        if m.group(2) is None:
            return title, 0, 0
        return title, int(m.group(3)) - 1, column_index(m.group(2))

    def title_of(self, sheet_id: int) -> str:
        for title, sid in self.ids.items():
            if sid == sheet_id:
                return title
        raise BackingServiceError(f"No grid with id: {sheet_id}")

    # --- TableBackend ---

    async def get_values(self, title: str):
        self.calls.append(("get_values", title))
        self._check("get_values")
        values = [list(r) for r in self._sheet(title)]
        gate = self.gates.pop("get_values", None)
        if gate is not None:
            await gate.pass_through()
        return values

    async def update_values(self, range_a1: str, values):
        self.calls.append(("update_values", range_a1, values))
        self._check("update_values")
        title, top, left = self.parse_range(range_a1)
        rows = self._sheet(title)
        for r, row_values in enumerate(values):
            while len(rows) <= top + r:
                rows.append([])
            row = rows[top + r]
            for c, value in enumerate(row_values):
                while len(row) <= left + c:
                    row.append("")
                row[left + c] = as_cell(value)

    async def append_values(self, title: str, values):
        self.calls.append(("append_values", title, values))
        self._check("append_values")
        rows = self._sheet(title)
        rows.extend([[as_cell(c) for c in r] for r in values])

    async def clear_values(self, title: str):
        self.calls.append(("clear_values", title))
        self._check("clear_values")
        self._sheet(title).clear()

    async def delete_rows(self, sheet_id: int, start_indices_desc):
        self.calls.append(("delete_rows", sheet_id, list(start_indices_desc)))
        self._check("delete_rows")
        rows = self.sheets[self.title_of(sheet_id)]
        for index in start_indices_desc:
            del rows[index]

    async def add_sheets(self, titles):
        self.calls.append(("add_sheets", list(titles)))
        self._check("add_sheets")
        return [self._create(t) for t in titles]

    async def delete_sheets(self, sheet_ids):
        self.calls.append(("delete_sheets", list(sheet_ids)))
        self._check("delete_sheets")
        for sid in sheet_ids:
            title = self.title_of(sid)
            del self.sheets[title]
            del self.ids[title]

    async def list_sheets(self):
        self.calls.append(("list_sheets",))
        self._check("list_sheets")
        return [SheetProperties(sid, title) for title, sid in self.ids.items()]

    def count(self, operation: str) -> int:
        return sum(1 for c in self.calls if c[0] == operation)

    def hold(self, operation: str) -> Gate:
        """The next ``operation`` call captures its result, then waits for the gate."""
        gate = Gate()
        self.gates[operation] = gate
        return gate


class FakeBlobStore:
    """BlobStore keeping objects in a dict keyed by (bucket, name)."""

    def __init__(self):
        self.objects: Dict[tuple, str] = {}
        self.deleted: List[tuple] = []

    async def upload_html(self, bucket: str, name: str, html: str):
        self.objects[(bucket, name)] = html
        return f"https://storage.googleapis.com/{bucket}/{name}?v=1"

    async def upload_data_url(self, bucket: str, base_name: str, data_url: str):
        name = f"{base_name}.jpg"
        self.objects[(bucket, name)] = data_url
        return f"https://storage.googleapis.com/{bucket}/{name}"

    async def delete(self, bucket: str, name: str) -> bool:
        self.deleted.append((bucket, name))
        return self.objects.pop((bucket, name), None) is not None

    async def fetch(self, url: str):
        path = url.split("?", 1)[0].replace("https://storage.googleapis.com/", "", 1)
        bucket, _, name = path.partition("/")
        return self.objects.get((bucket, name))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        SPREADSHEET_ID="records-test",
        RUSH_SPREADSHEET_ID="rush-test",
        SHEET_TTL=60,
        LOCK_ACQUIRE_TIMEOUT=None,
        DEV_MODE=False,
    )


@pytest.fixture
def records_backend():
    return InMemoryTableBackend({"Sigma": [ROSTER_HEADER] + ROSTER_ROWS})


@pytest.fixture
def rush_backend():
    return InMemoryTableBackend()


@pytest.fixture
def blobs():
    return FakeBlobStore()


@pytest.fixture
def ctx(settings, records_backend, rush_backend, blobs):
    from chapter_portal.services.context import build_context

    return build_context(settings, records_backend=records_backend, rush_backend=rush_backend, blobs=blobs)


@pytest.fixture
def member():
    from chapter_portal.services.roster_service import Member

    def _make(name: str = "Alice", position: str = "Chi", email: Optional[str] = None):
        return Member(email=email or f"{name.lower()}@example.org", name=name, position=position)

    return _make
