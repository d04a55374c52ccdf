# chapter_portal/routers/admin.py
# Tech chair dashboard

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status

from chapter_portal.constants import EVENT_ANNOUNCEMENT
from chapter_portal.routers.deps import get_context, get_roster_service, require_admin
from chapter_portal.schemas.admin import AnnouncementIn, AuditEntry, SystemStats
from chapter_portal.schemas.common import CountResponse, StatusResponse
from chapter_portal.schemas.roster import MemberCreate, MemberOut
from chapter_portal.services.context import AppContext
from chapter_portal.services.roster_service import Member, RosterService
from chapter_portal.utils.logger import audit_trail, log_audit, log_info


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/stats", response_model=SystemStats)
async def system_stats(
    ctx: AppContext = Depends(get_context),
    roster: RosterService = Depends(get_roster_service),
) -> SystemStats:
    return SystemStats(
        total_brothers=len(await roster.list_members()),
        active_sessions=ctx.hub.connection_count,
        online=ctx.hub.current_subscriber_names(),
        cache_entries=len(ctx.cache.keys()),
        uptime_seconds=ctx.uptime_seconds,
    )


@router.post("/announcement", response_model=CountResponse)
async def announcement(
    payload: AnnouncementIn,
    user: Member = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> CountResponse:
    delivered = ctx.hub.publish(EVENT_ANNOUNCEMENT, {"message": payload.message, "from": user.name})
    log_info(f"Announcement from {user.email} delivered to {delivered}")
    return CountResponse(count=delivered, message="Announcement sent")


@router.post("/cache/clear", response_model=StatusResponse)
async def clear_cache(
    user: Member = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> StatusResponse:
    ctx.cache.delete_all()
    log_audit(user.email, "cache.clear")
    return StatusResponse(success=True, message="Cache cleared")


@router.get("/members", response_model=List[MemberOut])
async def all_members(roster: RosterService = Depends(get_roster_service)):
    return await roster.list_roster()


@router.post("/members", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
async def add_member(
    payload: MemberCreate,
    user: Member = Depends(require_admin),
    roster: RosterService = Depends(get_roster_service),
):
    member = await roster.add_member(payload.email, payload.name, payload.position)
    log_audit(user.email, "roster.add", member.email)
    return member.as_dict()


@router.delete("/members/{email}", response_model=StatusResponse)
async def delete_member(
    email: str,
    user: Member = Depends(require_admin),
    roster: RosterService = Depends(get_roster_service),
) -> StatusResponse:
    await roster.delete_member(email)
    log_audit(user.email, "roster.delete", email)
    return StatusResponse(success=True, message="Member removed")


@router.post("/deactivate-alumni", response_model=CountResponse)
async def deactivate_alumni(
    user: Member = Depends(require_admin),
    roster: RosterService = Depends(get_roster_service),
) -> CountResponse:
    count = await roster.deactivate_alumni()
    log_audit(user.email, "roster.deactivate_alumni", removed=count)
    return CountResponse(count=count, message=f"{count} alumni removed")


@router.get("/export-members")
async def export_members(roster: RosterService = Depends(get_roster_service)) -> Response:
    return Response(
        content=await roster.export_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="members.csv"'},
    )


@router.get("/audit-log", response_model=List[AuditEntry])
async def audit_log():
    """Recent record changes, oldest first."""
    return audit_trail.entries()


@router.get("/export-audit-log")
async def export_audit_log() -> Response:
    return Response(
        content=audit_trail.to_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-log.csv"'},
    )
