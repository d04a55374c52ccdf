# chapter_portal/routers/events.py
# Server-sent live updates

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from chapter_portal.constants import EVENT_REFRESH
from chapter_portal.routers.deps import get_context, require_refresh_caller
from chapter_portal.services.context import AppContext
from chapter_portal.utils.logger import log_audit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Live updates"])


@router.get("/events")
async def subscribe(
    name: str = Query("", description="Display name shown to other viewers"),
    ctx: AppContext = Depends(get_context),
):
    """
    Open a live-update stream.

    The first events are ``presence`` updates; afterwards ``refresh``,
    ``roster-update``, ``announcement`` and periodic ``ping`` events arrive
    as JSON payloads.
    """
    conn = ctx.hub.subscribe(name)

    async def stream():
        try:
            async for event in conn.stream():
                yield event
        finally:
            ctx.hub.unsubscribe(conn, "disconnected")

    return EventSourceResponse(stream())


@router.post("/events/refresh")
async def broadcast_refresh(
    caller: str = Depends(require_refresh_caller),
    ctx: AppContext = Depends(get_context),
):
    """
    External trigger, e.g. an edit made directly in the spreadsheet.
    Drops every cached table read, so it is rate limited like any API call.
    """
    ctx.records.invalidate_all()
    ctx.rush_records.invalidate_all()
    delivered = ctx.hub.publish(EVENT_REFRESH, {"source": "external"})
    log_audit(caller, "cache.refresh", delivered=delivered)
    return {"success": True, "delivered": delivered}
