from typing import Literal, Optional

from pydantic import Field

from .common import ApiModel, TaggedModel


SuggestionCategory = Literal["UI/UX", "Feature", "Integration", "Analytics", "Performance", "Security", "Other"]
SuggestionStatus = Literal["new", "under-review", "planned", "implemented", "considering", "declined"]
SuggestionPriority = Literal["low", "medium", "high", "urgent"]
Effort = Literal["small", "medium", "large", "epic"]


class SuggestionCreate(TaggedModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category: SuggestionCategory = "Feature"
    priority: SuggestionPriority = "medium"
    estimated_effort: Optional[Effort] = None
    estimated_timeline: Optional[str] = None
    organization_id: Optional[str] = None


class SuggestionUpdate(TaggedModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    category: Optional[SuggestionCategory] = None
    status: Optional[SuggestionStatus] = None
    priority: Optional[SuggestionPriority] = None
    estimated_effort: Optional[Effort] = None
    estimated_timeline: Optional[str] = None
    assigned_to: Optional[str] = None


class VoteRequest(ApiModel):
    vote: Literal["upvote", "downvote"]


class CommentRequest(ApiModel):
    content: str
