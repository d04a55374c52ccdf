# chapter_portal/routers/rush.py
# Recruiting events, recruits, comments and the rush admin settings

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status

from chapter_portal.routers.deps import (
    get_current_user,
    get_roster_service,
    get_rush_service,
    require_rush_chair,
)
from chapter_portal.schemas.common import StatusResponse
from chapter_portal.schemas.roster import MemberBrief
from chapter_portal.schemas.rush import (
    AdminSettings,
    BrotherSettingIn,
    CommentIn,
    CommentOut,
    EventIn,
    EventOut,
    GlobalSettingIn,
    LockResponse,
    PageDetails,
    RecruitIn,
    RecruitOut,
    RecruitSaved,
    TierIn,
)
from chapter_portal.services.roster_service import Member, RosterService
from chapter_portal.services.rush_service import RushService


router = APIRouter(prefix="/rush", tags=["Rush"])


def _display_name(user: Member) -> str:
    return user.name or user.email


# --- events ---

@router.get("/events", response_model=List[EventOut])
async def list_events(
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return await service.list_events()


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def save_event(
    payload: EventIn,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return await service.save_event(payload.model_dump())


@router.get("/events/{event_id}", response_model=EventOut)
async def get_event(
    event_id: str,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return await service.get_event(event_id)


@router.delete("/events/{event_id}", response_model=StatusResponse)
async def delete_event(
    event_id: str,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.delete_event(event_id)
    return StatusResponse(success=True, message="Rush event deleted")


@router.post("/events/{event_id}/lock", response_model=LockResponse)
async def toggle_lock(
    event_id: str,
    user: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> LockResponse:
    locked = await service.toggle_lock(event_id, user)
    return LockResponse(
        is_locked=locked,
        message="Rush event locked successfully" if locked else "Rush event unlocked successfully",
    )


@router.get("/events/{event_id}/engagement")
async def engagement(
    event_id: str,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return await service.engagement(event_id)


# --- rush page ---

@router.get("/page/{event_id}/details", response_model=PageDetails)
async def page_details(
    event_id: str,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return await service.page_details(event_id)


@router.get("/page/{event_id}/recruits", response_model=List[RecruitOut])
async def page_recruits(
    event_id: str,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return await service.list_recruits(event_id)


@router.get("/page/{event_id}/comments", response_model=List[CommentOut])
async def page_comments(
    event_id: str,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return await service.list_comments(event_id)


# --- recruits ---

@router.post("/recruits/{tab_id}", response_model=RecruitSaved)
async def save_recruit(
    tab_id: int,
    payload: RecruitIn,
    user: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> RecruitSaved:
    new_id = await service.save_recruit(tab_id, payload.model_dump(), user)
    return RecruitSaved(id=new_id)


@router.delete("/recruits/{tab_id}/{recruit_id}", response_model=StatusResponse)
async def delete_recruit(
    tab_id: int,
    recruit_id: str,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.delete_recruit(tab_id, recruit_id)
    return StatusResponse(success=True, message="Recruit deleted")


@router.post("/recruits/{tab_id}/{recruit_id}/tier", response_model=StatusResponse)
async def set_tier(
    tab_id: int,
    recruit_id: str,
    payload: TierIn,
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.set_tier(tab_id, recruit_id, payload.tier)
    return StatusResponse(success=True)


@router.post("/recruits/{tab_id}/{recruit_id}/like", response_model=StatusResponse)
async def like(
    tab_id: int,
    recruit_id: str,
    user: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.toggle_vote(tab_id, recruit_id, "Likes", _display_name(user))
    return StatusResponse(success=True)


@router.post("/recruits/{tab_id}/{recruit_id}/dislike", response_model=StatusResponse)
async def dislike(
    tab_id: int,
    recruit_id: str,
    user: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.toggle_vote(tab_id, recruit_id, "Dislikes", _display_name(user))
    return StatusResponse(success=True)


@router.post("/recruits/{tab_id}/{recruit_id}/met", response_model=StatusResponse)
async def met(
    tab_id: int,
    recruit_id: str,
    user: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.toggle_met(tab_id, recruit_id, _display_name(user))
    return StatusResponse(success=True)


# --- comments ---

@router.post("/comments/{tab_id}/{recruit_id}", response_model=StatusResponse)
async def save_comment(
    tab_id: int,
    recruit_id: str,
    payload: CommentIn,
    user: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.save_comment(tab_id, recruit_id, payload.text, user)
    return StatusResponse(success=True, message="Comment saved")


@router.delete("/comments/{tab_id}/{recruit_id}", response_model=StatusResponse)
async def delete_comment(
    tab_id: int,
    recruit_id: str,
    author: str = Query(..., min_length=1),
    user: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
) -> StatusResponse:
    await service.delete_comment(tab_id, recruit_id, author, user)
    return StatusResponse(success=True, message="Comment deleted")


# --- admin settings ---

@router.get("/admin-settings", response_model=AdminSettings)
async def get_admin_settings(
    _: Member = Depends(get_current_user),
    service: RushService = Depends(get_rush_service),
):
    return service.admin_settings()


@router.post("/admin-settings/global", response_model=AdminSettings)
async def set_global_setting(
    payload: GlobalSettingIn,
    _: Member = Depends(require_rush_chair),
    service: RushService = Depends(get_rush_service),
):
    return service.set_global_setting(payload.key, payload.value)


@router.post("/admin-settings/brother", response_model=AdminSettings)
async def set_brother_settings(
    payload: BrotherSettingIn,
    _: Member = Depends(require_rush_chair),
    service: RushService = Depends(get_rush_service),
):
    return service.set_brother_settings(payload.email, payload.settings)


@router.get("/brothers", response_model=List[MemberBrief])
async def brothers(
    _: Member = Depends(get_current_user),
    roster: RosterService = Depends(get_roster_service),
):
    return await roster.list_members()
