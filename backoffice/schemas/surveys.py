from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import Field, model_validator

from .common import ApiModel, TaggedModel


SurveyStatus = Literal["draft", "active", "paused", "completed", "archived"]
QuestionType = Literal["text", "rating", "multiple-choice", "single-choice", "boolean"]


class QuestionOption(ApiModel):
    value: str
    label: str


class SurveyQuestion(ApiModel):
    id: Optional[str] = None
    type: QuestionType
    question: str = Field(min_length=1)
    description: Optional[str] = None
    required: bool = False
    options: List[QuestionOption] = []
    min_rating: int = 1
    max_rating: int = 5
    order: Optional[int] = None

    @model_validator(mode="after")
    def check_rating_bounds(self):
        if self.min_rating > self.max_rating:
            raise ValueError("minRating must not exceed maxRating")
        return self


class SurveyCreate(TaggedModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    questions: List[SurveyQuestion] = Field(min_length=1)
    is_public: bool = False
    estimated_time: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    target_users: List[str] = []
    target_roles: List[str] = []
    allow_anonymous: bool = False
    allow_multiple_responses: bool = False
    show_progress: bool = True
    show_results: bool = False
    category: Optional[str] = None
    organization_id: Optional[str] = None


class SurveyUpdate(TaggedModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    questions: Optional[List[SurveyQuestion]] = Field(default=None, min_length=1)
    status: Optional[SurveyStatus] = None
    is_public: Optional[bool] = None
    estimated_time: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    target_users: Optional[List[str]] = None
    target_roles: Optional[List[str]] = None
    allow_anonymous: Optional[bool] = None
    allow_multiple_responses: Optional[bool] = None
    show_progress: Optional[bool] = None
    show_results: Optional[bool] = None
    category: Optional[str] = None


class SurveyAnswer(ApiModel):
    question_id: str
    response: Any = None


class SurveySubmission(ApiModel):
    responses: List[SurveyAnswer]
    time_spent: Optional[int] = Field(default=None, ge=0)
    is_anonymous: bool = False
