# chapter_portal/routers/roster.py
# Roster reads and bulk edits

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from chapter_portal.constants import ADMIN_POSITION
from chapter_portal.routers.deps import get_current_user, get_roster_service, require_roster_manager
from chapter_portal.schemas.roster import (
    CurrentUser,
    EmailCheckResponse,
    MemberBrief,
    MemberOut,
    RosterSaveRequest,
    RosterSaveResponse,
)
from chapter_portal.services.roster_service import Member, RosterService, can_manage_roster
from chapter_portal.utils.logger import log_audit


router = APIRouter(tags=["Roster"])


@router.get("/me", response_model=CurrentUser)
async def whoami(user: Member = Depends(get_current_user)) -> CurrentUser:
    return CurrentUser(
        email=user.email,
        name=user.name,
        position=user.position,
        positions=user.positions,
        can_manage_roster=can_manage_roster(user.position),
        is_admin=user.holds(ADMIN_POSITION),
    )


@router.get("/roster", response_model=List[MemberOut])
async def get_roster(
    _: Member = Depends(get_current_user),
    service: RosterService = Depends(get_roster_service),
):
    return await service.list_roster()


@router.get("/roster/members", response_model=List[MemberBrief])
async def get_members(
    _: Member = Depends(get_current_user),
    service: RosterService = Depends(get_roster_service),
):
    return await service.list_members()


@router.get("/roster/check", response_model=EmailCheckResponse)
async def check_email(
    email: str = Query(..., min_length=1),
    _: Member = Depends(get_current_user),
    service: RosterService = Depends(get_roster_service),
) -> EmailCheckResponse:
    return EmailCheckResponse(email=email, valid=await service.is_valid_email(email))


@router.post("/roster", response_model=RosterSaveResponse)
async def save_roster(
    payload: RosterSaveRequest,
    user: Member = Depends(require_roster_manager),
    service: RosterService = Depends(get_roster_service),
) -> RosterSaveResponse:
    """Merge the submitted roster into the table; see RosterReconciler."""
    result = await service.save_changes(
        [m.model_dump() for m in payload.members],
        [m.model_dump() for m in payload.removals],
    )
    log_audit(
        user.email, "roster.save",
        updated=result.update_count, removed=result.remove_count, added=result.add_count,
    )
    return RosterSaveResponse(
        message=result.message,
        updated=result.update_count,
        removed=result.remove_count,
        added=result.add_count,
    )
