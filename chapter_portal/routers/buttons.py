# chapter_portal/routers/buttons.py

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from chapter_portal.routers.deps import get_buttons_service, get_current_user
from chapter_portal.schemas.buttons import (
    ButtonBulkIn,
    ButtonDisplay,
    ButtonIn,
    ButtonOrder,
    ButtonOut,
)
from chapter_portal.schemas.common import CountResponse, IdResponse, StatusResponse
from chapter_portal.services.buttons_service import ButtonsService
from chapter_portal.services.roster_service import Member


router = APIRouter(prefix="/buttons", tags=["Buttons"])


@router.get("", response_model=List[ButtonDisplay])
async def buttons_for_display(
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
):
    return await service.for_display(user)


@router.get("/manage", response_model=List[ButtonOut])
async def buttons_for_manager(
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
):
    return await service.for_manager(user)


@router.get("/positions", response_model=List[str])
async def officer_positions(_: Member = Depends(get_current_user)):
    return ButtonsService.officer_positions()


@router.get("/order", response_model=ButtonOrder)
async def get_order(
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
) -> ButtonOrder:
    return ButtonOrder(button_ids=service.get_order(user.email))


@router.put("/order", response_model=StatusResponse)
async def set_order(
    payload: ButtonOrder,
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
) -> StatusResponse:
    service.set_order(user.email, payload.button_ids)
    return StatusResponse(success=True, message="Order saved")


@router.post("", response_model=IdResponse, status_code=status.HTTP_201_CREATED)
async def create_button(
    payload: ButtonIn,
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
) -> IdResponse:
    return IdResponse(id=await service.save(payload.model_dump(), user))


@router.post("/bulk", response_model=CountResponse, status_code=status.HTTP_201_CREATED)
async def create_buttons_bulk(
    payload: ButtonBulkIn,
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
) -> CountResponse:
    count = await service.save_bulk(payload.model_dump(), user)
    return CountResponse(count=count, message=f"{count} buttons created")


@router.put("/{button_id}", response_model=StatusResponse)
async def update_button(
    button_id: str,
    payload: ButtonIn,
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
) -> StatusResponse:
    data = payload.model_dump()
    data["button_id"] = button_id
    await service.update(data, user)
    return StatusResponse(success=True, message="Button updated")


@router.delete("/{button_id}", response_model=StatusResponse)
async def delete_button(
    button_id: str,
    user: Member = Depends(get_current_user),
    service: ButtonsService = Depends(get_buttons_service),
) -> StatusResponse:
    await service.delete(button_id, user)
    return StatusResponse(success=True, message="Button deleted")
