# chapter_portal/backends/tables.py
# Spreadsheet service backend.
# Every call is bulk, slow and rate limited; this module only translates
# the operations the table adapter needs into Sheets v4 requests.

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, Set

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from opentelemetry import trace

from chapter_portal.backends.credentials import SHEETS_SCOPES, load_service_account
from chapter_portal.config import Settings
from chapter_portal.middleware.circuit_breaker import (
    CircuitBreakerError,
    get_circuit_breaker,
    with_timeout,
)
from chapter_portal.middleware.error_handler import BackingServiceError
from chapter_portal.observability.metrics import BACKEND_CALLS, BACKEND_LATENCY
from chapter_portal.utils.addressing import a1_range

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Values = List[List[Any]]


@dataclass(frozen=True)
class SheetProperties:
    sheet_id: int
    title: str


class TableBackend(Protocol):
    """Operations the table adapter needs from the backing service."""

    async def get_values(self, title: str) -> Values: ...

    async def update_values(self, range_a1: str, values: Values) -> None: ...

    async def append_values(self, title: str, values: Values) -> None: ...

    async def clear_values(self, title: str) -> None: ...

    async def delete_rows(self, sheet_id: int, start_indices_desc: Sequence[int]) -> None: ...

    async def add_sheets(self, titles: Sequence[str]) -> List[SheetProperties]: ...

    async def delete_sheets(self, sheet_ids: Sequence[int]) -> None: ...

    async def list_sheets(self) -> List[SheetProperties]: ...


class RejectedRequest(Exception):
    """The service answered with a client error. It is reachable, so the breaker ignores this."""

    def __init__(self, error: HttpError, status: int):
        super().__init__(str(error))
        self.error = error
        self.status = status


def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class GoogleSheetsBackend:
    """
    One spreadsheet, reached through google-api-python-client.

    The client is synchronous, so each request executes in a worker thread
    via ``asyncio.to_thread``, bounded by ``BACKEND_TIMEOUT`` and guarded by a
    circuit breaker shared by every call against this spreadsheet.
    No call is retried here.

    A timed-out request keeps running in its thread and may still reach the
    spreadsheet. Such requests are tracked, and the next call against this
    spreadsheet first waits for them to settle (within its own timeout), so
    a late write never lands after a request made once the caller moved on.
    """

    def __init__(self, spreadsheet_id: str, settings: Settings, service: Any = None):
        self.spreadsheet_id = spreadsheet_id
        self._settings = settings
        self._service = service
        self._breaker = get_circuit_breaker(f"sheets:{spreadsheet_id}", ignore=(RejectedRequest,))
        self._run = with_timeout(settings.BACKEND_TIMEOUT)(self._run_in_thread)
        self._stragglers: Set[asyncio.Future] = set()

    def _client(self):
        if self._service is None:
            credentials = load_service_account(self._settings, SHEETS_SCOPES)
            self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._service

    async def _run_in_thread(self, make_request: Callable[[], Any]) -> Any:
        if self._stragglers:
            await asyncio.wait(set(self._stragglers))
        request = asyncio.ensure_future(asyncio.to_thread(lambda: make_request().execute()))
        try:
            return await asyncio.shield(request)
        except HttpError as e:
            status = _http_status(e)
            if status is not None and 400 <= status < 500 and status != 429:
                raise RejectedRequest(e, status) from e
            raise
        except asyncio.CancelledError:
            if not request.done():
                self._stragglers.add(request)
                request.add_done_callback(self._settled)
            raise

    def _settled(self, request: asyncio.Future) -> None:
        self._stragglers.discard(request)
        if not request.cancelled() and request.exception() is not None:
            logger.warning(f"Abandoned spreadsheet request failed late: {request.exception()}")
        else:
            logger.warning(f"Abandoned spreadsheet request completed late on {self.spreadsheet_id}")

    async def _execute(self, operation: str, make_request: Callable[[], Any]) -> Any:
        started = time.monotonic()
        with tracer.start_as_current_span(f"sheets.{operation}") as span:
            span.set_attribute("sheets.spreadsheet_id", self.spreadsheet_id)
            try:
                result = await self._breaker.call(self._run, make_request)
            except CircuitBreakerError as e:
                BACKEND_CALLS.labels(operation=operation, outcome="rejected").inc()
                raise BackingServiceError(
                    "Spreadsheet service is temporarily unavailable",
                    details={"retry_after_seconds": round(e.recovery_time, 1)},
                ) from e
            except asyncio.TimeoutError as e:
                BACKEND_CALLS.labels(operation=operation, outcome="timeout").inc()
                raise BackingServiceError("Spreadsheet service timed out") from e
            except (HttpError, RejectedRequest) as e:
                BACKEND_CALLS.labels(operation=operation, outcome="error").inc()
                status = e.status if isinstance(e, RejectedRequest) else _http_status(e)
                span.set_attribute("http.status_code", status or 0)
                logger.error(f"Sheets {operation} failed with status {status}: {e}")
                raise BackingServiceError(
                    "Spreadsheet service rejected the request",
                    details={"status": status},
                ) from e
            finally:
                BACKEND_LATENCY.labels(operation=operation).observe(time.monotonic() - started)
        BACKEND_CALLS.labels(operation=operation, outcome="ok").inc()
        return result

    # --- values ---

    async def get_values(self, title: str) -> Values:
        values = self._client().spreadsheets().values()
        result = await self._execute(
            "values.get",
            lambda: values.get(spreadsheetId=self.spreadsheet_id, range=a1_range(title)),
        )
        return result.get("values", [])

    async def update_values(self, range_a1: str, values: Values) -> None:
        api = self._client().spreadsheets().values()
        await self._execute(
            "values.update",
            lambda: api.update(
                spreadsheetId=self.spreadsheet_id,
                range=range_a1,
                valueInputOption="USER_ENTERED",
                body={"values": values},
            ),
        )

    async def append_values(self, title: str, values: Values) -> None:
        api = self._client().spreadsheets().values()
        await self._execute(
            "values.append",
            lambda: api.append(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(title),
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": values},
            ),
        )

    async def clear_values(self, title: str) -> None:
        api = self._client().spreadsheets().values()
        await self._execute(
            "values.clear",
            lambda: api.clear(spreadsheetId=self.spreadsheet_id, range=a1_range(title), body={}),
        )

    # --- structure ---

    async def _batch_update(self, operation: str, requests: list) -> dict:
        api = self._client().spreadsheets()
        return await self._execute(
            operation,
            lambda: api.batchUpdate(spreadsheetId=self.spreadsheet_id, body={"requests": requests}),
        )

    async def delete_rows(self, sheet_id: int, start_indices_desc: Sequence[int]) -> None:
        if not start_indices_desc:
            return
        requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": start,
                        "endIndex": start + 1,
                    }
                }
            }
            for start in start_indices_desc
        ]
        await self._batch_update("rows.delete", requests)

    async def add_sheets(self, titles: Sequence[str]) -> List[SheetProperties]:
        requests = [{"addSheet": {"properties": {"title": t}}} for t in titles]
        result = await self._batch_update("sheets.add", requests)
        added = []
        for reply in result.get("replies", []):
            props = reply.get("addSheet", {}).get("properties", {})
            added.append(SheetProperties(sheet_id=int(props["sheetId"]), title=props["title"]))
        return added

    async def delete_sheets(self, sheet_ids: Sequence[int]) -> None:
        if not sheet_ids:
            return
        await self._batch_update("sheets.delete", [{"deleteSheet": {"sheetId": int(s)}} for s in sheet_ids])

    async def list_sheets(self) -> List[SheetProperties]:
        api = self._client().spreadsheets()
        result = await self._execute(
            "sheets.list",
            lambda: api.get(
                spreadsheetId=self.spreadsheet_id,
                fields="sheets(properties(sheetId,title))",
            ),
        )
        return [
            SheetProperties(sheet_id=int(s["properties"]["sheetId"]), title=s["properties"]["title"])
            for s in result.get("sheets", [])
        ]
