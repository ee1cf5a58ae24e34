from typing import List, Literal, Optional

from pydantic import Field

from .common import ApiModel, TaggedModel


FeedbackCategory = Literal["general", "product", "usability", "support", "feature", "bug", "other"]
FeedbackStatus = Literal["new", "under-review", "responded", "resolved", "closed"]
FeedbackPriority = Literal["low", "medium", "high", "urgent"]
ResponseType = Literal["acknowledgment", "update", "resolution", "question"]


class FeedbackCreate(TaggedModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    category: FeedbackCategory = "general"
    priority: FeedbackPriority = "medium"
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    # Client metadata; filled from the request when omitted
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    browser: Optional[str] = None
    device: Optional[str] = None


class FeedbackUpdate(TaggedModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    category: Optional[FeedbackCategory] = None
    status: Optional[FeedbackStatus] = None
    priority: Optional[FeedbackPriority] = None


class FeedbackRespond(ApiModel):
    response: str = Field(min_length=1)
    response_type: ResponseType = "acknowledgment"
    is_internal: bool = False


class FeedbackBulkStatus(ApiModel):
    feedback_ids: List[str] = Field(min_length=1)
    status: FeedbackStatus
