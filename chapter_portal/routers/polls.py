# chapter_portal/routers/polls.py

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from chapter_portal.routers.deps import get_current_user, get_polls_service
from chapter_portal.schemas.common import IdResponse, StatusResponse
from chapter_portal.schemas.polls import PollCreate, PollOut, PollVote
from chapter_portal.services.polls_service import PollsService
from chapter_portal.services.roster_service import Member


router = APIRouter(prefix="/polls", tags=["Polls"])


@router.get("", response_model=List[PollOut])
async def list_polls(
    _: Member = Depends(get_current_user),
    service: PollsService = Depends(get_polls_service),
):
    return await service.list_polls()


@router.post("", response_model=IdResponse, status_code=status.HTTP_201_CREATED)
async def create_poll(
    payload: PollCreate,
    user: Member = Depends(get_current_user),
    service: PollsService = Depends(get_polls_service),
) -> IdResponse:
    poll_id = await service.create(
        payload.question, payload.options, user, payload.threshold, payload.anonymous
    )
    return IdResponse(id=poll_id)


@router.post("/{poll_id}/vote", response_model=StatusResponse)
async def vote(
    poll_id: str,
    payload: PollVote,
    user: Member = Depends(get_current_user),
    service: PollsService = Depends(get_polls_service),
) -> StatusResponse:
    await service.vote(poll_id, user, payload.ranking)
    return StatusResponse(success=True, message="Vote recorded")


@router.post("/{poll_id}/close", response_model=StatusResponse)
async def close_poll(
    poll_id: str,
    _: Member = Depends(get_current_user),
    service: PollsService = Depends(get_polls_service),
) -> StatusResponse:
    await service.close(poll_id)
    return StatusResponse(success=True, message="Poll closed")


@router.post("/{poll_id}/reset", response_model=StatusResponse)
async def reset_poll(
    poll_id: str,
    user: Member = Depends(get_current_user),
    service: PollsService = Depends(get_polls_service),
) -> StatusResponse:
    await service.reset(poll_id, user)
    return StatusResponse(success=True, message="Votes reset")


@router.delete("/{poll_id}", response_model=StatusResponse)
async def delete_poll(
    poll_id: str,
    user: Member = Depends(get_current_user),
    service: PollsService = Depends(get_polls_service),
) -> StatusResponse:
    await service.delete(poll_id, user)
    return StatusResponse(success=True, message="Poll deleted")
