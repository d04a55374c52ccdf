from __future__ import annotations

from pydantic import BaseModel


class StatusResponse(BaseModel):
    success: bool
    message: str = ""


class IdResponse(BaseModel):
    success: bool = True
    id: str


class CountResponse(BaseModel):
    success: bool = True
    count: int
    message: str = ""
