from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from .common import ApiModel, TaggedModel


DocumentCategory = Literal["policy", "contract", "certificate", "id", "training", "performance", "other"]
DOCUMENT_CATEGORIES = ("policy", "contract", "certificate", "id", "training", "performance", "other")


class DocumentUpdate(TaggedModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[DocumentCategory] = None
    employee_id: Optional[str] = None
    is_confidential: Optional[bool] = None
    expiry_date: Optional[datetime] = None
    status: Optional[Literal["active", "archived"]] = None


class DocumentPermissions(ApiModel):
    # Shape is checked by the route so a non-list reads as a plain 400
    permissions: Any = None
