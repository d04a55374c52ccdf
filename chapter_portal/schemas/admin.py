from __future__ import annotations

from pydantic import BaseModel, Field


class AnnouncementIn(BaseModel):
    message: str = Field(..., min_length=1)


class SystemStats(BaseModel):
    total_brothers: int
    active_sessions: int
    online: list[str]
    cache_entries: int
    uptime_seconds: int


class AuditEntry(BaseModel):
    timestamp: str
    action: str
    email: str
    details: str = ""
