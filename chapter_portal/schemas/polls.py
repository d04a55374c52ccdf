from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PollCreate(BaseModel):
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    threshold: Optional[float] = Field(None, gt=0, le=1)
    anonymous: Optional[bool] = None


class PollVote(BaseModel):
    ranking: List[str] = Field(..., min_length=1)


class PollOut(BaseModel):
    id: str
    question: str
    options: List[str]
    votes: Dict[str, Any]
    creator: str
    created_at: str
    status: str
    threshold: float
    anonymous: bool
