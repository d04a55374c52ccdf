# chapter_portal/services/roster_service.py

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from chapter_portal.constants import (
    EVENT_ROSTER_UPDATE,
    NO_POSITION,
    ROSTER_EMAIL,
    ROSTER_MANAGERS,
    ROSTER_NAME,
    ROSTER_POSITION,
    ROSTER_TABLE,
    UNKNOWN_NAME,
)
from chapter_portal.middleware.error_handler import ConflictError, NotFoundError, ValidationError
from chapter_portal.services.context import AppContext
from chapter_portal.services.reconciler import (
    ROSTER_LOCK,
    ReconcileResult,
    normalize_email,
    valid_email_key,
)
from chapter_portal.utils.logger import log_info

logger = logging.getLogger(__name__)


def split_positions(position: Optional[str]) -> List[str]:
    return [p.strip() for p in (position or "").split(",") if p.strip()]


def can_manage_roster(position: Optional[str]) -> bool:
    return any(p in ROSTER_MANAGERS for p in split_positions(position))


@dataclass(frozen=True)
class Member:
    email: str
    name: str
    position: str

    @property
    def positions(self) -> List[str]:
        return split_positions(self.position)

    def holds(self, position: str) -> bool:
        return position in self.positions

    @property
    def is_pledge(self) -> bool:
        return any("pledge" in p.lower() for p in self.positions)

    def as_dict(self) -> Dict[str, str]:
        return {"email": self.email, "name": self.name, "position": self.position}


class RosterService:
    """Roster reads plus single-member edits; bulk edits go through the reconciler."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.tables = ctx.records

    async def _members(self, fresh: bool = False) -> List[Member]:
        table = await self.tables.read_table(ROSTER_TABLE, fresh=fresh)
        members = []
        for row in table:
            email = row.get(ROSTER_EMAIL, "").strip()
            if not email:
                continue
            members.append(Member(
                email=email,
                name=row.get(ROSTER_NAME, "").strip(),
                position=row.get(ROSTER_POSITION, "").strip(),
            ))
        return members

    async def list_roster(self) -> List[Dict[str, str]]:
        return [
            {
                "email": m.email,
                "name": m.name or UNKNOWN_NAME,
                "position": m.position or NO_POSITION,
            }
            for m in await self._members()
        ]

    async def list_members(self) -> List[Dict[str, str]]:
        """Members with both an email and a name, sorted by name."""
        members = [m for m in await self._members() if m.name]
        members.sort(key=lambda m: m.name.lower())
        return [{"email": m.email, "name": m.name} for m in members]

    async def find_member(self, email: str) -> Optional[Member]:
        key = normalize_email(email)
        if not key:
            return None
        for m in await self._members():
            if normalize_email(m.email) == key:
                return m
        return None

    async def is_valid_email(self, email: str) -> bool:
        key = valid_email_key(email)
        cached = self.ctx.cache.get(key)
        if cached is not None:
            return cached
        valid = await self.find_member(email) is not None
        self.ctx.cache.set(key, valid, self.ctx.settings.EMAIL_VALIDATION_TTL)
        return valid

    async def save_changes(
        self,
        desired: Iterable[Mapping[str, Any]],
        removals: Iterable[Mapping[str, Any]] = (),
    ) -> ReconcileResult:
        result = await self.ctx.reconciler.reconcile(desired, removals)
        log_info(f"Roster saved: {result.message}")
        return result

    async def add_member(self, email: str, name: str, position: str = "") -> Member:
        email, name, position = (email or "").strip(), (name or "").strip(), (position or "").strip()
        if not email or not name:
            raise ValidationError("Email and name are required")

        async def _add() -> Member:
            table = await self.tables.read_table(ROSTER_TABLE, fresh=True)
            if table.is_empty:
                raise NotFoundError("Roster table is empty or could not be read")
            table.require_columns(ROSTER_EMAIL, ROSTER_NAME, ROSTER_POSITION)
            if table.find(ROSTER_EMAIL, email, key=normalize_email) is not None:
                raise ConflictError("A member with this email already exists")
            await self.tables.append_rows(ROSTER_TABLE, [table.new_row({
                ROSTER_EMAIL: email,
                ROSTER_NAME: name,
                ROSTER_POSITION: position,
            })])
            return Member(email, name, position)

        member = await self.ctx.locks.with_lock(ROSTER_LOCK, _add)
        self.ctx.cache.delete(valid_email_key(email))
        self.ctx.hub.notify(EVENT_ROSTER_UPDATE, {"added": 1})
        return member

    async def delete_member(self, email: str) -> None:
        if not normalize_email(email):
            raise ValidationError("Email is required")

        async def _delete() -> None:
            table = await self.tables.read_table(ROSTER_TABLE, fresh=True)
            row = table.find(ROSTER_EMAIL, email, key=normalize_email)
            if row is None:
                raise NotFoundError("Member not found")
            await self.tables.delete_rows(ROSTER_TABLE, [row.index])

        await self.ctx.locks.with_lock(ROSTER_LOCK, _delete)
        self.ctx.cache.delete(valid_email_key(email))
        self.ctx.hub.notify(EVENT_ROSTER_UPDATE, {"removed": 1})

    async def deactivate_alumni(self) -> int:
        """Remove every member whose position mentions alumni, in one batch."""

        async def _deactivate() -> List[str]:
            table = await self.tables.read_table(ROSTER_TABLE, fresh=True)
            if not table.has_column(ROSTER_POSITION):
                return []
            alumni = [row for row in table if "alumni" in row[ROSTER_POSITION].lower()]
            await self.tables.delete_rows(ROSTER_TABLE, [row.index for row in alumni])
            return [row.get(ROSTER_EMAIL, "") for row in alumni]

        removed = await self.ctx.locks.with_lock(ROSTER_LOCK, _deactivate)
        for email in removed:
            self.ctx.cache.delete(valid_email_key(email))
        if removed:
            self.ctx.hub.notify(EVENT_ROSTER_UPDATE, {"removed": len(removed)})
        logger.info(f"Deactivated {len(removed)} alumni")
        return len(removed)

    async def export_csv(self) -> str:
        members = sorted(await self._members(), key=lambda m: m.name.lower())
        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(["Email", "Name", "Position"])
        for m in members:
            if m.name:
                writer.writerow([m.email, m.name, m.position])
        return buf.getvalue()
