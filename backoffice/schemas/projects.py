from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from .common import ApiModel


ProjectStatus = Literal["active", "on_hold", "completed", "archived"]


class ProjectCreate(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    status: ProjectStatus = "active"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    owner: str
    members: List[str] = []
    organization_id: Optional[str] = None


class ProjectUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    owner: Optional[str] = None
    members: Optional[List[str]] = None
