from datetime import datetime
from typing import Literal, Optional

from pydantic import EmailStr, Field

from .common import ApiModel


EmployeeStatus = Literal["active", "suspended", "terminated"]


class EmployeeCreate(ApiModel):
    full_name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    role_title: Optional[str] = None
    job_title: Optional[str] = None
    employment_type: Optional[str] = None
    salary: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    emergency_contact: Optional[dict] = None
    reporting_manager: Optional[str] = None
    status: EmployeeStatus = "active"
    organization_id: Optional[str] = None


class EmployeeUpdate(ApiModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    role_title: Optional[str] = None
    job_title: Optional[str] = None
    employment_type: Optional[str] = None
    salary: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    emergency_contact: Optional[dict] = None
    reporting_manager: Optional[str] = None


class EmployeeStatusUpdate(ApiModel):
    status: EmployeeStatus
