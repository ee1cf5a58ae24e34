from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from .common import ApiModel, TaggedModel


EmploymentType = Literal["full_time", "part_time", "contract", "internship", "temporary"]
ExperienceLevel = Literal["entry", "mid", "senior", "executive"]
PostingStatus = Literal["draft", "published", "closed", "cancelled"]
ApplicationStatus = Literal["applied", "reviewed", "shortlisted", "interviewed", "rejected", "hired"]


class SalaryRange(ApiModel):
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)
    currency: str = Field(default="NGN", min_length=3, max_length=3)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("Minimum salary cannot exceed maximum salary")
        return self


class JobPostingCreate(TaggedModel):
    title: str = Field(min_length=1, max_length=255)
    department: str = Field(min_length=1)
    location: str = Field(min_length=1)
    employment_type: EmploymentType
    experience_level: ExperienceLevel
    description: str = Field(min_length=1)
    requirements: List[str] = []
    responsibilities: List[str] = []
    benefits: List[str] = []
    skills: List[str] = []
    salary_range: Optional[SalaryRange] = None
    status: PostingStatus = "draft"
    application_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    is_remote: bool = False
    is_urgent: bool = False
    organization_id: Optional[str] = None


class JobPostingUpdate(TaggedModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    department: Optional[str] = None
    location: Optional[str] = None
    employment_type: Optional[EmploymentType] = None
    experience_level: Optional[ExperienceLevel] = None
    description: Optional[str] = None
    requirements: Optional[List[str]] = None
    responsibilities: Optional[List[str]] = None
    benefits: Optional[List[str]] = None
    skills: Optional[List[str]] = None
    salary_range: Optional[SalaryRange] = None
    status: Optional[PostingStatus] = None
    application_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    is_remote: Optional[bool] = None
    is_urgent: Optional[bool] = None


class JobApplicationCreate(ApiModel):
    resume: Optional[str] = None
    cover_letter: Optional[str] = None


class JobApplicationUpdate(ApiModel):
    status: ApplicationStatus
    notes: Optional[str] = None
