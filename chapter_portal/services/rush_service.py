# chapter_portal/services/rush_service.py
# Recruiting events, their recruit and comment tables, and engagement scoring.
#
# The index table lists one event per row. Each event owns two tables in the
# same spreadsheet, referred to by numeric table id from the index so that
# renaming an event never breaks the link.

from __future__ import annotations

import json
import logging
import math
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from chapter_portal.backends.blobs import object_name_from_url
from chapter_portal.constants import (
    COMMENT_HEADERS,
    EVENT_REFRESH,
    RECRUIT_HEADERS,
    RUSH_CHAIR,
    RUSH_INDEX_HEADERS,
    RUSH_INDEX_TABLE,
)
from chapter_portal.middleware.error_handler import ForbiddenError, NotFoundError, ValidationError
from chapter_portal.repositories.table_adapter import Table
from chapter_portal.services.allocator import max_numeric
from chapter_portal.services.context import AppContext
from chapter_portal.services.roster_service import Member
from chapter_portal.utils.logger import log_audit

logger = logging.getLogger(__name__)

INDEX_LOCK = "rush-index"
ADMIN_SETTINGS_KEY = "rushAdminSettings"

BID_TIER = "4"
FLUSHED_TIER = "flushed"

GLOBAL_SETTINGS = ("disable_add_recruits", "disable_commenting")


def recruits_lock(tab_id) -> str:
    return f"recruits:{tab_id}"


def comments_lock(tab_id) -> str:
    return f"comments:{tab_id}"


def _is_true(raw: str) -> bool:
    return raw.strip().upper() in ("TRUE", "1")


def _names(raw: str) -> List[str]:
    try:
        parsed = json.loads(raw) if raw else []
    except ValueError:
        return []
    return [str(n) for n in parsed] if isinstance(parsed, list) else []


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def coerce_epoch_ms(raw: str) -> Optional[int]:
    """Epoch milliseconds from a cell holding either digits or a date string."""
    raw = (raw or "").strip()
    if not raw:
        return None
    if raw.isdigit():
        return int(raw)
    for fmt in ("%m/%d/%Y", "%Y-%m-%d"):
        try:
            return int(datetime.strptime(raw, fmt).timestamp() * 1000)
        except ValueError:
            continue
    try:
        return int(datetime.fromisoformat(raw).timestamp() * 1000)
    except ValueError:
        return None


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


def parse_recruit(row) -> Dict[str, Any]:
    return {
        "id": row.get("ID", ""),
        "name": row.get("Name", ""),
        "email": row.get("Email", ""),
        "phone": row.get("Phone", ""),
        "instagram": row.get("Instagram", ""),
        "tier": row.get("Tier", ""),
        "photo_url": row.get("PhotoURL", ""),
        "primary_contacts": [c.strip() for c in row.get("PrimaryContacts", "").split(",") if c.strip()],
        "likes": _names(row.get("Likes", "")),
        "dislikes": _names(row.get("Dislikes", "")),
        "met": _names(row.get("Met", "")),
    }


def parse_comment(row) -> Dict[str, Any]:
    return {
        "comment_id": row.get("CommentID", ""),
        "recruit_id": row.get("RecruitID", ""),
        "author": row.get("Author", ""),
        "text": row.get("Text", ""),
        "timestamp": coerce_epoch_ms(row.get("TimestampMs", "") or row.get("Timestamp", "")),
    }


def recruit_statistics(recruits: List[Dict[str, Any]]) -> Dict[str, Any]:
    total = len(recruits)
    bids = sum(1 for r in recruits if str(r["tier"]).strip() == BID_TIER)
    flushes = sum(1 for r in recruits if str(r["tier"]).strip() == FLUSHED_TIER)
    return {
        "total_recruits": total,
        "bids": bids,
        "flushes": flushes,
        "yield_rate": round(bids / total * 100, 1) if total else 0,
    }


def brother_stats(name: str, recruits: List[Dict[str, Any]], comments: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Engagement points for one member across an event.

    Meeting a recruit is worth 6 (+10 when first to meet). A like is worth 5
    when the recruit was also met and commented on, 2 when only met, plus 8
    for the first like. A dislike is worth 8 with a comment, 5 without. Being
    a primary contact is worth 50, and another 50 if the recruit got a bid.
    Each comment is worth 5, plus 10 at 100 characters or 5 at 50. A comment
    rate (comments per vote) of 0.75 multiplies the total by 1.5, 0.5 by 1.2.
    """
    own_comments = [c for c in comments if c["author"] == name]
    commented_on = {c["recruit_id"] for c in own_comments}

    met_count = liked_count = disliked_count = 0
    bid_bonus = 0
    points = 0

    for r in recruits:
        met = name in r["met"]
        if met:
            met_count += 1
            points += 6
            if r["met"][0] == name:
                points += 10
        if name in r["likes"]:
            liked_count += 1
            if met:
                points += 5 if r["id"] in commented_on else 2
            if r["likes"][0] == name:
                points += 8
        if name in r["dislikes"]:
            disliked_count += 1
            points += 8 if r["id"] in commented_on else 5
        if name in r["primary_contacts"]:
            points += 50
            if str(r["tier"]).strip() == BID_TIER:
                bid_bonus += 50
                points += 50

    for c in own_comments:
        length = len(c["text"] or "")
        points += 5
        if length >= 100:
            points += 10
        elif length >= 50:
            points += 5

    votes = liked_count + disliked_count
    if votes:
        rate = len(own_comments) / votes
        if rate >= 0.75:
            points = _round_half_up(points * 1.5)
        elif rate >= 0.5:
            points = _round_half_up(points * 1.2)

    return {
        "name": name,
        "recruits_met_count": met_count,
        "recruits_liked_count": liked_count,
        "recruits_disliked_count": disliked_count,
        "comments_count": len(own_comments),
        "bid_success_bonus": bid_bonus,
        "points": points,
    }


def badges_for(stats: Dict[str, Any], total_recruits: int) -> List[Dict[str, str]]:
    badges = []
    if total_recruits > 0 and stats["recruits_met_count"] >= total_recruits * 0.75:
        badges.append({"name": "Social Butterfly", "emoji": "\U0001F98B", "description": "Met 75%+ of recruits"})
    if stats["comments_count"] >= 10:
        badges.append({"name": "Commentator", "emoji": "\U0001F4AC", "description": "Left 10+ comments"})
    if stats["recruits_liked_count"] >= 5:
        badges.append({"name": "Hype Man", "emoji": "\U0001F525", "description": "Liked 5+ recruits"})
    if stats["points"] >= 50:
        badges.append({"name": "Rush MVP", "emoji": "\U0001F3C6", "description": "Scored 50+ points"})
    return badges


def participants(recruits: List[Dict[str, Any]], comments: List[Dict[str, Any]]) -> List[str]:
    seen: Dict[str, None] = {}
    for r in recruits:
        for name in r["met"] + r["likes"] + r["dislikes"]:
            seen.setdefault(name, None)
    for c in comments:
        if c["author"]:
            seen.setdefault(c["author"], None)
    return list(seen)


class RushService:
    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.tables = ctx.rush_records
        self.bucket = ctx.settings.RUSH_IMAGES_BUCKET

    def _refresh(self, table: str) -> None:
        self.ctx.hub.notify(EVENT_REFRESH, {"table": table})

    # --- admin settings ---

    def admin_settings(self) -> Dict[str, Any]:
        current = self.ctx.cache.get(ADMIN_SETTINGS_KEY) or {}
        return {
            "disable_add_recruits": bool(current.get("disable_add_recruits", False)),
            "disable_commenting": bool(current.get("disable_commenting", False)),
            "brother_settings": dict(current.get("brother_settings") or {}),
        }

    def set_global_setting(self, key: str, value: bool) -> Dict[str, Any]:
        if key not in GLOBAL_SETTINGS:
            raise ValidationError(f"Unknown setting '{key}'")
        settings = self.admin_settings()
        settings[key] = bool(value)
        self.ctx.cache.set(ADMIN_SETTINGS_KEY, settings, ttl_seconds=0)
        return settings

    def set_brother_settings(self, email: str, values: Dict[str, Any]) -> Dict[str, Any]:
        if not (email or "").strip():
            raise ValidationError("Email is required")
        settings = self.admin_settings()
        settings["brother_settings"][email.strip().lower()] = dict(values)
        self.ctx.cache.set(ADMIN_SETTINGS_KEY, settings, ttl_seconds=0)
        return settings

    def _disabled(self, setting: str, user: Optional[Member]) -> bool:
        settings = self.admin_settings()
        if settings[setting]:
            return True
        if user is None:
            return False
        own = settings["brother_settings"].get(user.email.strip().lower()) or {}
        return bool(own.get(setting))

    # --- events ---

    async def _index(self, fresh: bool = False) -> Table:
        return await self.tables.read_table(RUSH_INDEX_TABLE, fresh=fresh)

    async def _recruits_by_tab(self, tab_id) -> List[Dict[str, Any]]:
        title = await self.tables.resolve_title(tab_id)
        if title is None:
            return []
        return [parse_recruit(r) for r in await self.tables.read_table(title) if r.get("ID")]

    async def _comments_by_tab(self, tab_id) -> List[Dict[str, Any]]:
        title = await self.tables.resolve_title(tab_id)
        if title is None:
            return []
        return [parse_comment(r) for r in await self.tables.read_table(title) if r.get("CommentID")]

    async def _event_from_row(self, row) -> Dict[str, Any]:
        c = row.cells + [""] * (8 - len(row.cells))
        ts = coerce_epoch_ms(c[4])
        event = {
            "id": c[0],
            "name": c[1],
            "date": c[2],
            "description": c[3],
            "timestamp_ms": ts,
            "recruits_tab_id": c[5],
            "comments_tab_id": c[6],
            "is_locked": _is_true(c[7]),
        }
        event.update(recruit_statistics(await self._recruits_by_tab(c[5])))
        return event

    def _find_event_row(self, index: Table, event_id: str):
        for row in index:
            if row.cells and row.cells[0] == str(event_id):
                return row
        return None

    async def list_events(self) -> List[Dict[str, Any]]:
        return [await self._event_from_row(row) for row in await self._index() if row.cells and row.cells[0]]

    async def get_event(self, event_id: str) -> Dict[str, Any]:
        row = self._find_event_row(await self._index(), event_id)
        if row is None:
            raise NotFoundError("Rush event not found")
        return await self._event_from_row(row)

    async def page_details(self, event_id: str) -> Dict[str, Any]:
        row = self._find_event_row(await self._index(), event_id)
        if row is None:
            raise NotFoundError("Rush event not found")
        c = row.cells + [""] * (8 - len(row.cells))
        return {"name": c[1], "recruits_tab_id": c[5], "comments_tab_id": c[6]}

    async def save_event(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create an event with its two tables, or rename/re-describe an existing one."""
        event_id = str(data.get("id") or uuid.uuid4())
        name = (data.get("name") or "").strip()
        description = data.get("description") or ""
        if not name:
            raise ValidationError("Event name is required")

        async def _save() -> Dict[str, Any]:
            await self.tables.ensure_table(RUSH_INDEX_TABLE, RUSH_INDEX_HEADERS)
            index = await self._index(fresh=True)
            row = self._find_event_row(index, event_id)
            if row is not None:
                await self.tables.write_range(RUSH_INDEX_TABLE, row.index, 1, [[name]])
                await self.tables.write_range(RUSH_INDEX_TABLE, row.index, 3, [[description]])
                return {"id": event_id, "name": name, "description": description, "created": False}

            recruits_tab, comments_tab = await self.tables.add_tables([
                (f"Recruits - {name}", RECRUIT_HEADERS),
                (f"Comments - {name}", COMMENT_HEADERS),
            ])
            created_ms = now_ms()
            date = datetime.fromtimestamp(created_ms / 1000).strftime("%m/%d/%Y")
            await self.tables.append_rows(RUSH_INDEX_TABLE, [[
                event_id, name, date, description, created_ms, recruits_tab, comments_tab, False,
            ]])
            return {
                "id": event_id,
                "name": name,
                "date": date,
                "description": description,
                "timestamp_ms": created_ms,
                "recruits_tab_id": str(recruits_tab),
                "comments_tab_id": str(comments_tab),
                "is_locked": False,
                "created": True,
            }

        result = await self.ctx.locks.with_lock(INDEX_LOCK, _save)
        self._refresh("rush")
        return result

    async def delete_event(self, event_id: str) -> None:
        details = await self.page_details(event_id)

        for recruit in await self._recruits_by_tab(details["recruits_tab_id"]):
            if recruit["photo_url"]:
                await self._delete_photo(recruit["photo_url"])

        async def _delete() -> None:
            tab_ids = []
            for tab in (details["recruits_tab_id"], details["comments_tab_id"]):
                if tab and await self.tables.resolve_title(tab) is not None:
                    tab_ids.append(int(tab))
            if tab_ids:
                await self.tables.delete_tables(tab_ids)
            index = await self._index(fresh=True)
            row = self._find_event_row(index, event_id)
            if row is not None:
                await self.tables.delete_rows(RUSH_INDEX_TABLE, [row.index])

        await self.ctx.locks.with_lock(INDEX_LOCK, _delete)
        self.ctx.allocator.forget(recruits_lock(details["recruits_tab_id"]))
        self._refresh("rush")

    async def toggle_lock(self, event_id: str, user: Member) -> bool:
        if RUSH_CHAIR not in user.positions:
            raise ForbiddenError("Only the Rho (Rush Chair) can lock or unlock rush events")

        async def _toggle() -> bool:
            row = self._find_event_row(await self._index(fresh=True), event_id)
            if row is None:
                raise NotFoundError("Rush event not found")
            c = row.cells + [""] * (8 - len(row.cells))
            locked = not _is_true(c[7])
            await self.tables.write_range(RUSH_INDEX_TABLE, row.index, 7, [[locked]])
            return locked

        locked = await self.ctx.locks.with_lock(INDEX_LOCK, _toggle)
        log_audit(user.email, "rush.lock", str(event_id), locked=locked)
        self._refresh("rush")
        return locked

    async def engagement(self, event_id: str) -> Dict[str, Any]:
        details = await self.page_details(event_id)
        recruits = await self._recruits_by_tab(details["recruits_tab_id"])
        comments = await self._comments_by_tab(details["comments_tab_id"])

        ranked = []
        for name in participants(recruits, comments):
            stats = brother_stats(name, recruits, comments)
            stats["badges"] = badges_for(stats, len(recruits))
            ranked.append(stats)
        ranked.sort(key=lambda s: s["points"], reverse=True)

        avg = round(sum(s["points"] for s in ranked) / len(ranked), 1) if ranked else 0
        return {
            "top_rushers": ranked,
            "all_rushers": ranked,
            "avg_points": avg,
            "total_participants": len(ranked),
            "rush_name": details["name"],
        }

    # --- recruits ---

    async def list_recruits(self, event_id: str) -> List[Dict[str, Any]]:
        details = await self.page_details(event_id)
        return await self._recruits_by_tab(details["recruits_tab_id"])

    async def list_comments(self, event_id: str) -> List[Dict[str, Any]]:
        details = await self.page_details(event_id)
        return await self._comments_by_tab(details["comments_tab_id"])

    async def _delete_photo(self, url: str) -> None:
        name = object_name_from_url(url)
        if name:
            await self.ctx.blobs.delete(self.bucket, name)

    async def save_recruit(self, tab_id, data: Dict[str, Any], added_by: Member) -> Optional[int]:
        """Update the recruit with ``data['id']``, or add one. Returns the new id when added."""
        if self._disabled("disable_add_recruits", added_by):
            raise ForbiddenError("Adding recruits is currently disabled by an administrator")
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Recruit name is required")

        title = await self.tables.require_title(tab_id, "Recruits table")
        photo_url = None
        if data.get("photo"):
            photo_url = await self.ctx.blobs.upload_data_url(
                self.bucket, f"user-upload_{now_ms()}_{name}", data["photo"]
            )

        fields: Dict[str, Any] = {
            "Name": name,
            "Email": data.get("email") or "",
            "Phone": data.get("phone") or "",
            "Instagram": data.get("instagram") or "",
            "PrimaryContacts": ",".join(data.get("primary_contacts") or []),
        }
        if photo_url:
            fields["PhotoURL"] = photo_url
        resource = recruits_lock(tab_id)

        async def _max_id() -> int:
            table = await self.tables.read_table(title, fresh=True)
            return max_numeric(row.get("ID", "") for row in table)

        async def _save() -> Optional[int]:
            table = await self.tables.read_table(title, fresh=True)
            recruit_id = data.get("id")
            if recruit_id:
                row = table.find("ID", str(recruit_id))
                if row is None:
                    raise NotFoundError("Recruit not found")
                await self.tables.update_cells(title, row, fields)
                return None

            new_id = await self.ctx.allocator.next_id(resource, _max_id)
            fields.update({
                "ID": new_id,
                "Tier": 0,
                "Likes": "[]",
                "Dislikes": "[]",
                "Met": json.dumps([added_by.name or added_by.email]),
            })
            await self.tables.append_rows(title, [table.new_row(fields)])
            return new_id

        result = await self.ctx.locks.with_lock(resource, _save)
        self._refresh("recruits")
        return result

    async def delete_recruit(self, tab_id, recruit_id: str) -> None:
        title = await self.tables.require_title(tab_id, "Recruits table")

        async def _delete() -> str:
            table = await self.tables.read_table(title, fresh=True)
            row = table.find("ID", str(recruit_id))
            if row is None:
                raise NotFoundError("Recruit not found")
            await self.tables.delete_rows(title, [row.index])
            return row.get("PhotoURL", "")

        photo = await self.ctx.locks.with_lock(recruits_lock(tab_id), _delete)
        if photo:
            await self._delete_photo(photo)
        self._refresh("recruits")

    async def _update_recruit(self, tab_id, recruit_id: str, change) -> None:
        title = await self.tables.require_title(tab_id, "Recruits table")

        async def _update() -> None:
            table = await self.tables.read_table(title, fresh=True)
            row = table.find("ID", str(recruit_id))
            if row is None:
                raise NotFoundError("Recruit not found")
            await self.tables.update_cells(title, row, change(row))

        await self.ctx.locks.with_lock(recruits_lock(tab_id), _update)
        self._refresh("recruits")

    async def set_tier(self, tab_id, recruit_id: str, tier) -> None:
        await self._update_recruit(tab_id, recruit_id, lambda row: {"Tier": tier})

    async def toggle_vote(self, tab_id, recruit_id: str, column: str, user_name: str) -> None:
        """Toggle ``user_name`` in Likes or Dislikes; a vote removes the opposite one."""
        if column not in ("Likes", "Dislikes"):
            raise ValidationError(f"Unknown vote column '{column}'")
        opposite = "Dislikes" if column == "Likes" else "Likes"

        def change(row) -> Dict[str, str]:
            names = _names(row.get(column, ""))
            if user_name in names:
                names.remove(user_name)
            else:
                names.append(user_name)
            others = [n for n in _names(row.get(opposite, "")) if n != user_name]
            return {column: json.dumps(names), opposite: json.dumps(others)}

        await self._update_recruit(tab_id, recruit_id, change)

    async def toggle_met(self, tab_id, recruit_id: str, user_name: str) -> None:
        def change(row) -> Dict[str, str]:
            names = _names(row.get("Met", ""))
            if user_name in names:
                names.remove(user_name)
            else:
                names.append(user_name)
            return {"Met": json.dumps(names)}

        await self._update_recruit(tab_id, recruit_id, change)

    # --- comments ---

    async def save_comment(self, tab_id, recruit_id: str, text: str, author: Member) -> None:
        """One comment per author per recruit; saving again replaces the text."""
        if self._disabled("disable_commenting", author):
            raise ForbiddenError("Commenting is currently disabled by an administrator")
        title = await self.tables.require_title(tab_id, "Comments table")
        author_name = author.name or author.email

        async def _save() -> None:
            table = await self.tables.read_table(title, fresh=True)
            existing = next(
                (r for r in table if r.get("RecruitID") == str(recruit_id) and r.get("Author") == author_name),
                None,
            )
            if existing is None:
                await self.tables.append_rows(title, [table.new_row({
                    "CommentID": str(uuid.uuid4()),
                    "RecruitID": str(recruit_id),
                    "Author": author_name,
                    "Text": text,
                    "TimestampMs": now_ms(),
                })])
            else:
                await self.tables.update_cells(title, existing, {"Text": text, "TimestampMs": now_ms()})

        await self.ctx.locks.with_lock(comments_lock(tab_id), _save)
        self._refresh("comments")

    async def delete_comment(self, tab_id, recruit_id: str, author_name: str, user: Member) -> None:
        if (user.name or user.email) != author_name and RUSH_CHAIR not in user.positions:
            raise ForbiddenError("You can only delete your own comments unless you are Rho")
        title = await self.tables.require_title(tab_id, "Comments table")

        async def _delete() -> None:
            table = await self.tables.read_table(title, fresh=True)
            row = next(
                (r for r in table if r.get("RecruitID") == str(recruit_id) and r.get("Author") == author_name),
                None,
            )
            if row is None:
                raise NotFoundError("Comment not found")
            await self.tables.delete_rows(title, [row.index])

        await self.ctx.locks.with_lock(comments_lock(tab_id), _delete)
        log_audit(user.email, "rush.comment_delete", str(recruit_id), author=author_name)
        self._refresh("comments")
