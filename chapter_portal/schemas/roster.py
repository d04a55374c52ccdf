from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class MemberOut(BaseModel):
    email: str
    name: str
    position: str = ""


class MemberBrief(BaseModel):
    email: str
    name: str


class RosterEntry(BaseModel):
    email: str
    name: Optional[str] = None
    position: Optional[str] = None


class RosterSaveRequest(BaseModel):
    """Desired roster rows plus explicit removals; rows in neither are kept."""
    members: List[RosterEntry] = Field(default_factory=list)
    removals: List[RosterEntry] = Field(default_factory=list)


class RosterSaveResponse(BaseModel):
    success: bool = True
    message: str
    updated: int
    removed: int
    added: int


class MemberCreate(BaseModel):
    email: str = Field(..., min_length=3)
    name: str = Field(..., min_length=1)
    position: str = ""


class EmailCheckResponse(BaseModel):
    email: str
    valid: bool


class CurrentUser(BaseModel):
    email: str
    name: str
    position: str
    positions: List[str]
    can_manage_roster: bool
    is_admin: bool
