from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ButtonIn(BaseModel):
    button_name: str = Field(..., min_length=1)
    description: str = ""
    icon: str = ""
    color: Optional[str] = None
    access_type: str = "All"
    access_list: List[str] = Field(default_factory=list)
    content: str = ""
    owner_position: str = ""
    exclude_pledges: Optional[bool] = None


class BulkItem(BaseModel):
    name: str = Field(..., min_length=1)
    content: str = ""


class ButtonBulkIn(BaseModel):
    button_name_template: str = Field(..., min_length=1)
    description: str = ""
    icon: str = ""
    color: Optional[str] = None
    access_type: str = "Specific Bros"
    owner_position: str = ""
    items: List[BulkItem] = Field(default_factory=list)


class ButtonOut(BaseModel):
    button_id: str
    button_name: str
    description: str
    icon: str
    color: str
    access_type: str
    access_list: List[str]
    content: str
    created_by: str
    owner_position: str
    exclude_pledges: bool
    last_modified: str


class ButtonDisplay(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    color: str
    content: Optional[str] = None
    is_html: bool


class ButtonOrder(BaseModel):
    button_ids: List[str] = Field(default_factory=list)
