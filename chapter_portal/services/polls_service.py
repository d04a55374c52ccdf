# chapter_portal/services/polls_service.py
# Ranked-choice polls stored one per row

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from chapter_portal.constants import EVENT_REFRESH, POLL_HEADERS, POLL_TABLE
from chapter_portal.middleware.error_handler import ConflictError, ForbiddenError, NotFoundError
from chapter_portal.services.context import AppContext
from chapter_portal.services.roster_service import Member
from chapter_portal.utils.logger import log_audit

logger = logging.getLogger(__name__)

POLLS_LOCK = "polls"

STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"

COL_ID, COL_QUESTION, COL_OPTIONS, COL_VOTES, COL_CREATOR, COL_CREATED, COL_STATUS, COL_THRESHOLD, COL_ANONYMOUS = POLL_HEADERS


def _json(value: str, default):
    try:
        parsed = json.loads(value) if value else default
    except ValueError:
        return default
    return parsed if isinstance(parsed, type(default)) else default


def _as_bool(value: str, default: bool = True) -> bool:
    if value == "":
        return default
    return value.strip().upper() in ("TRUE", "1", "YES")


def _as_float(value: str, default: float = 0.5) -> float:
    try:
        return float(value) if value != "" else default
    except ValueError:
        return default


def parse_poll(row) -> Dict[str, Any]:
    """Tables created before the Threshold/Anonymous columns existed read as the defaults."""
    return {
        "id": row.get(COL_ID, ""),
        "question": row.get(COL_QUESTION, ""),
        "options": _json(row.get(COL_OPTIONS, ""), []),
        "votes": _json(row.get(COL_VOTES, ""), {}),
        "creator": row.get(COL_CREATOR, ""),
        "created_at": row.get(COL_CREATED, ""),
        "status": row.get(COL_STATUS, ""),
        "threshold": _as_float(row.get(COL_THRESHOLD, "")),
        "anonymous": _as_bool(row.get(COL_ANONYMOUS, "")),
    }


class PollsService:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.tables = ctx.records

    @property
    def dev_mode(self) -> bool:
        return self.ctx.settings.DEV_MODE

    async def _ensure_table(self) -> None:
        if await self.tables.ensure_table(POLL_TABLE, POLL_HEADERS):
            logger.info("Poll table created")

    async def _locked_row(self, poll_id: str):
        table = await self.tables.read_table(POLL_TABLE, fresh=True)
        row = table.find(COL_ID, poll_id)
        if row is None or not poll_id:
            raise NotFoundError("Poll not found")
        return row

    async def create(
        self,
        question: str,
        options: List[str],
        creator: Member,
        threshold: Optional[float] = None,
        anonymous: Optional[bool] = None,
    ) -> str:
        poll_id = str(uuid.uuid4())
        values = {
            COL_ID: poll_id,
            COL_QUESTION: question,
            COL_OPTIONS: json.dumps(options),
            COL_VOTES: json.dumps({}),
            COL_CREATOR: creator.name or "Admin",
            COL_CREATED: datetime.now(timezone.utc).isoformat(),
            COL_STATUS: STATUS_ACTIVE,
            COL_THRESHOLD: threshold if threshold else 0.5,
            COL_ANONYMOUS: True if anonymous is None else anonymous,
        }

        async def _create() -> None:
            await self._ensure_table()
            table = await self.tables.read_table(POLL_TABLE, fresh=True)
            await self.tables.append_rows(POLL_TABLE, [table.new_row(values)])

        await self.ctx.locks.with_lock(POLLS_LOCK, _create)
        self.ctx.hub.notify(EVENT_REFRESH, {"table": "polls"})
        return poll_id

    async def list_polls(self) -> List[Dict[str, Any]]:
        """Active polls first, then newest first."""
        await self._ensure_table_cached()
        table = await self.tables.read_table(POLL_TABLE)
        polls = [parse_poll(row) for row in table if row.get(COL_ID)]
        polls.sort(key=lambda p: p["created_at"], reverse=True)
        polls.sort(key=lambda p: p["status"] != STATUS_ACTIVE)
        return polls

    async def _ensure_table_cached(self) -> None:
        for sheet in await self.tables.list_tables():
            if sheet.title == POLL_TABLE:
                return
        await self.ctx.locks.with_lock(POLLS_LOCK, self._ensure_table)

    async def vote(self, poll_id: str, voter: Member, ranking: List[str]) -> None:
        voter_name = voter.name or voter.email

        async def _vote() -> None:
            row = await self._locked_row(poll_id)
            if row[COL_STATUS] != STATUS_ACTIVE:
                raise ConflictError("Poll is closed")
            votes = _json(row[COL_VOTES], {})
            votes[voter_name] = ranking
            await self.tables.update_cells(POLL_TABLE, row, {COL_VOTES: json.dumps(votes)})

        await self.ctx.locks.with_lock(POLLS_LOCK, _vote)
        self.ctx.hub.notify(EVENT_REFRESH, {"table": "polls"})

    async def close(self, poll_id: str) -> None:
        async def _close() -> None:
            row = await self._locked_row(poll_id)
            await self.tables.update_cells(POLL_TABLE, row, {COL_STATUS: STATUS_CLOSED})

        await self.ctx.locks.with_lock(POLLS_LOCK, _close)
        self.ctx.hub.notify(EVENT_REFRESH, {"table": "polls"})

    def _require_creator(self, row, user: Member, action: str) -> None:
        if self.dev_mode:
            return
        if row[COL_CREATOR] != (user.name or user.email):
            raise ForbiddenError(f"Only the poll creator can {action}")

    async def delete(self, poll_id: str, user: Member) -> None:
        async def _delete() -> None:
            row = await self._locked_row(poll_id)
            if row[COL_STATUS] != STATUS_CLOSED:
                raise ConflictError("Only closed polls can be deleted")
            self._require_creator(row, user, "delete this poll")
            await self.tables.delete_rows(POLL_TABLE, [row.index])

        await self.ctx.locks.with_lock(POLLS_LOCK, _delete)
        log_audit(user.email, "polls.delete", poll_id)
        self.ctx.hub.notify(EVENT_REFRESH, {"table": "polls"})

    async def reset(self, poll_id: str, user: Member) -> None:
        async def _reset() -> None:
            row = await self._locked_row(poll_id)
            if row[COL_STATUS] != STATUS_ACTIVE:
                raise ConflictError("Only active polls can be reset")
            self._require_creator(row, user, "reset votes")
            await self.tables.update_cells(POLL_TABLE, row, {COL_VOTES: json.dumps({})})

        await self.ctx.locks.with_lock(POLLS_LOCK, _reset)
        log_audit(user.email, "polls.reset", poll_id)
        self.ctx.hub.notify(EVENT_REFRESH, {"table": "polls"})
