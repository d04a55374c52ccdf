# chapter_portal/services/buttons_service.py
# Custom dashboard buttons.
# Rows come in two layouts: the current 12-column one matching the header
# and an older 8-column one without description/icon/color/excludePledges.

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from chapter_portal.backends.blobs import is_blob_url, object_name_from_url
from chapter_portal.constants import (
    BUTTON_HEADERS,
    BUTTON_TABLE,
    DEFAULT_BUTTON_COLOR,
    EVENT_REFRESH,
    OFFICER_POSITIONS,
)
from chapter_portal.middleware.error_handler import ForbiddenError, NotFoundError
from chapter_portal.services.context import AppContext
from chapter_portal.services.roster_service import Member
from chapter_portal.utils.logger import log_audit

logger = logging.getLogger(__name__)

BUTTONS_LOCK = "buttons"
BUTTONS_CACHE_KEY = "customButtons"

ACCESS_ALL = "All"
ACCESS_BROS = "Specific Bros"
ACCESS_OFFICERS = "Specific Officers"


def _is_access_type(value: str) -> bool:
    return value == ACCESS_ALL or "Specific" in value


def is_legacy_row(cells: List[str]) -> bool:
    padded = cells + [""] * (12 - len(cells))
    return not _is_access_type(padded[5]) and _is_access_type(padded[2])


def _access_list(raw: str) -> List[str]:
    try:
        parsed = json.loads(raw) if raw else []
    except ValueError:
        return []
    return [str(x) for x in parsed] if isinstance(parsed, list) else []


def _truthy(raw: str) -> bool:
    return raw.strip().upper() in ("TRUE", "1", "YES")


def _object_name(content: str) -> Optional[str]:
    return object_name_from_url(content) if is_blob_url(content) else None


def parse_button(cells: List[str]) -> Dict[str, Any]:
    c = cells + [""] * (12 - len(cells))
    if is_legacy_row(cells):
        return {
            "button_id": c[0],
            "button_name": c[1],
            "description": "",
            "icon": "",
            "color": DEFAULT_BUTTON_COLOR,
            "access_type": c[2],
            "access_list": _access_list(c[3]),
            "content": c[4],
            "created_by": c[5],
            "owner_position": c[6],
            "exclude_pledges": False,
            "last_modified": c[7],
        }
    return {
        "button_id": c[0],
        "button_name": c[1],
        "description": c[2],
        "icon": c[3],
        "color": c[4] or DEFAULT_BUTTON_COLOR,
        "access_type": c[5],
        "access_list": _access_list(c[6]),
        "content": c[7],
        "created_by": c[8],
        "owner_position": c[9],
        "exclude_pledges": _truthy(c[10]),
        "last_modified": c[11],
    }


def new_button_id() -> str:
    return "btn_" + uuid.uuid4().hex[:8]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ButtonsService:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.tables = ctx.records
        self.bucket = ctx.settings.BUTTON_HTML_BUCKET

    @property
    def dev_mode(self) -> bool:
        return self.ctx.settings.DEV_MODE

    # --- reads ---

    async def list_buttons(self) -> List[Dict[str, Any]]:
        cached = self.ctx.cache.get(BUTTONS_CACHE_KEY)
        if cached is not None:
            return cached
        # Parsed buttons are only cached while the table they came from is current
        started = self.tables.generation(self.tables.table_key(BUTTON_TABLE))
        table = await self.tables.read_table(BUTTON_TABLE)
        buttons = [parse_button(row.cells) for row in table if row.cells and row.cells[0]]
        if self.tables.generation(self.tables.table_key(BUTTON_TABLE)) == started:
            self.ctx.cache.set(BUTTONS_CACHE_KEY, buttons, self.cache_ttl)
        return buttons

    @property
    def cache_ttl(self) -> int:
        settings = self.ctx.settings
        if settings.SHEET_TTL and settings.BUTTON_CACHE_TTL:
            return min(settings.BUTTON_CACHE_TTL, settings.SHEET_TTL)
        return settings.SHEET_TTL or settings.BUTTON_CACHE_TTL

    def _visible_to(self, button: Dict[str, Any], user: Member) -> bool:
        if self.dev_mode:
            return True
        if button["exclude_pledges"] and user.is_pledge:
            return False
        access = button["access_type"]
        if access == ACCESS_ALL:
            return True
        if access == ACCESS_BROS:
            return any(n.lower() == user.name.lower() for n in button["access_list"])
        if access == ACCESS_OFFICERS:
            return any(p in user.positions for p in button["access_list"])
        return False

    async def for_display(self, user: Member) -> List[Dict[str, Any]]:
        shown = []
        for button in await self.list_buttons():
            if not self._visible_to(button, user):
                continue
            content = button["content"]
            if is_blob_url(content):
                content = await self.ctx.blobs.fetch(content)
            shown.append({
                "id": button["button_id"],
                "name": button["button_name"],
                "description": button["description"],
                "icon": button["icon"],
                "color": button["color"] or DEFAULT_BUTTON_COLOR,
                "content": content,
                "is_html": bool(content) and "<" in content,
            })
        return self._apply_order(user.email, shown)

    def _manages(self, button: Dict[str, Any], user: Member) -> bool:
        if self.dev_mode:
            return True
        if button["created_by"] and button["created_by"].lower() == user.email.lower():
            return True
        return bool(button["owner_position"]) and button["owner_position"] in user.positions

    async def for_manager(self, user: Member) -> List[Dict[str, Any]]:
        return [b for b in await self.list_buttons() if self._manages(b, user)]

    @staticmethod
    def officer_positions() -> List[str]:
        return list(OFFICER_POSITIONS)

    # --- order preferences ---

    @staticmethod
    def order_key(email: str) -> str:
        return f"button_order:{email.strip().lower()}"

    def get_order(self, email: str) -> List[str]:
        return self.ctx.cache.get(self.order_key(email)) or []

    def set_order(self, email: str, button_ids: List[str]) -> None:
        self.ctx.cache.set(self.order_key(email), list(button_ids), ttl_seconds=0)

    def _apply_order(self, email: str, buttons: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        order = self.get_order(email)
        if not order:
            return buttons
        rank = {bid: i for i, bid in enumerate(order)}
        return sorted(buttons, key=lambda b: rank.get(b["id"], len(rank)))

    # --- content offload ---

    def _needs_blob(self, content: str) -> bool:
        return "<" in content and len(content) > self.ctx.settings.BUTTON_INLINE_LIMIT

    async def _store_content(self, button_id: str, content: str) -> str:
        if not self._needs_blob(content):
            return content
        url = await self.ctx.blobs.upload_html(self.bucket, f"button_{button_id}.html", content)
        return url or content

    async def _drop_blob(self, content: str) -> None:
        if is_blob_url(content):
            name = object_name_from_url(content)
            if name:
                await self.ctx.blobs.delete(self.bucket, name)

    # --- writes ---

    def _row(self, button_id: str, data: Dict[str, Any], content: str, created_by: str,
             owner_position: str, exclude_pledges: bool) -> List[Any]:
        return [
            button_id,
            data["button_name"],
            data.get("description") or "",
            data.get("icon") or "",
            data.get("color") or DEFAULT_BUTTON_COLOR,
            data.get("access_type") or ACCESS_ALL,
            json.dumps(data.get("access_list") or []),
            content,
            created_by,
            owner_position,
            exclude_pledges,
            _now(),
        ]

    async def _after_write(self) -> None:
        self.ctx.cache.delete(BUTTONS_CACHE_KEY)
        self.ctx.hub.notify(EVENT_REFRESH, {"table": "buttons"})

    async def save(self, data: Dict[str, Any], user: Member) -> str:
        button_id = new_button_id()
        content = await self._store_content(button_id, data.get("content") or "")
        row = self._row(
            button_id, data, content, user.email,
            data.get("owner_position") or "", bool(data.get("exclude_pledges")),
        )

        async def _append() -> None:
            await self.tables.ensure_table(BUTTON_TABLE, BUTTON_HEADERS)
            await self.tables.append_rows(BUTTON_TABLE, [row])

        try:
            await self.ctx.locks.with_lock(BUTTONS_LOCK, _append)
        finally:
            self.ctx.cache.delete(BUTTONS_CACHE_KEY)
        log_audit(user.email, "buttons.create", button_id)
        await self._after_write()
        return button_id

    async def save_bulk(self, data: Dict[str, Any], user: Member) -> int:
        """One personalised button per name; ``{{name}}`` in the name template is replaced."""
        rows = []
        for item in data.get("items") or []:
            button_id = new_button_id()
            content = await self._store_content(button_id, item.get("content") or "")
            per_item = dict(data)
            per_item["button_name"] = data["button_name_template"].replace("{{name}}", item["name"])
            per_item["access_list"] = [item["name"]]
            rows.append(self._row(
                button_id, per_item, content, user.email,
                data.get("owner_position") or "", False,
            ))

        async def _append() -> None:
            await self.tables.ensure_table(BUTTON_TABLE, BUTTON_HEADERS)
            await self.tables.append_rows(BUTTON_TABLE, rows)

        if rows:
            await self.ctx.locks.with_lock(BUTTONS_LOCK, _append)
            log_audit(user.email, "buttons.bulk_create", count=len(rows))
            await self._after_write()
        return len(rows)

    async def update(self, data: Dict[str, Any], user: Member) -> None:
        button_id = data["button_id"]

        async def _update() -> None:
            table = await self.tables.read_table(BUTTON_TABLE, fresh=True)
            row = next((r for r in table if r.cells and r.cells[0] == button_id), None)
            if row is None:
                raise NotFoundError("Button not found")
            current = parse_button(row.cells)
            if not self._manages(current, user):
                raise ForbiddenError("You cannot edit this button")

            old_content = current["content"]
            content = await self._store_content(button_id, data.get("content") or "")

            exclude = data.get("exclude_pledges")
            new_row = self._row(
                button_id, data, content,
                current["created_by"] or user.email,
                data.get("owner_position") or current["owner_position"],
                current["exclude_pledges"] if exclude is None else bool(exclude),
            )
            await self.tables.update_row(BUTTON_TABLE, row.index, new_row)
            # The row no longer points at the old object; a re-upload reuses its name
            if is_blob_url(old_content) and _object_name(old_content) != _object_name(content):
                await self._drop_blob(old_content)

        try:
            await self.ctx.locks.with_lock(BUTTONS_LOCK, _update)
        finally:
            self.ctx.cache.delete(BUTTONS_CACHE_KEY)
        log_audit(user.email, "buttons.update", button_id)
        await self._after_write()

    async def delete(self, button_id: str, user: Member) -> None:
        async def _delete() -> None:
            table = await self.tables.read_table(BUTTON_TABLE, fresh=True)
            row = next((r for r in table if r.cells and r.cells[0] == button_id), None)
            if row is None:
                raise NotFoundError("Button not found")
            current = parse_button(row.cells)
            if not self._manages(current, user):
                raise ForbiddenError("You cannot delete this button")
            await self.tables.delete_rows(BUTTON_TABLE, [row.index])
            await self._drop_blob(current["content"])

        try:
            await self.ctx.locks.with_lock(BUTTONS_LOCK, _delete)
        finally:
            self.ctx.cache.delete(BUTTONS_CACHE_KEY)
        log_audit(user.email, "buttons.delete", button_id)
        await self._after_write()

    async def find(self, button_id: str) -> Optional[Dict[str, Any]]:
        for b in await self.list_buttons():
            if b["button_id"] == button_id:
                return b
        return None
