from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class EventIn(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: str = ""


class EventOut(BaseModel):
    id: str
    name: str
    date: str
    description: str
    timestamp_ms: Optional[int] = None
    recruits_tab_id: str
    comments_tab_id: str
    is_locked: bool
    total_recruits: int = 0
    bids: int = 0
    flushes: int = 0
    yield_rate: float = 0


class PageDetails(BaseModel):
    name: str
    recruits_tab_id: str
    comments_tab_id: str


class LockResponse(BaseModel):
    success: bool = True
    is_locked: bool
    message: str


class RecruitIn(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    email: str = ""
    phone: str = ""
    instagram: str = ""
    primary_contacts: List[str] = Field(default_factory=list)
    photo: Optional[str] = Field(None, description="data: URL of an uploaded photo")


class RecruitOut(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    instagram: str
    tier: str
    photo_url: str
    primary_contacts: List[str]
    likes: List[str]
    dislikes: List[str]
    met: List[str]


class RecruitSaved(BaseModel):
    success: bool = True
    id: Optional[int] = None


class TierIn(BaseModel):
    tier: Union[int, str]


class CommentIn(BaseModel):
    text: str = Field(..., min_length=1)


class CommentOut(BaseModel):
    comment_id: str
    recruit_id: str
    author: str
    text: str
    timestamp: Optional[int] = None


class GlobalSettingIn(BaseModel):
    key: str
    value: bool


class BrotherSettingIn(BaseModel):
    email: str
    settings: Dict[str, Any] = Field(default_factory=dict)


class AdminSettings(BaseModel):
    disable_add_recruits: bool
    disable_commenting: bool
    brother_settings: Dict[str, Dict[str, Any]]
