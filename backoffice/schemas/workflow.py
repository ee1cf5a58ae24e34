from typing import List, Optional

from pydantic import Field

from .common import ApiModel


class Escalation(ApiModel):
    enabled: bool = False
    time_limit: Optional[float] = Field(default=None, ge=0)
    escalate_to: Optional[str] = None

    def to_json(self) -> dict:
        return {"enabled": self.enabled, "timeLimit": self.time_limit, "escalateTo": self.escalate_to}


class WorkflowRuleCreate(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    module: str = Field(min_length=1)
    event: str = Field(min_length=1)
    conditions: dict
    actions: List[dict] = Field(min_length=1)
    escalation: Optional[Escalation] = None
    is_active: bool = True
    organization_id: Optional[str] = None


class WorkflowTrigger(ApiModel):
    event: str = Field(min_length=1)
    data: dict
    context: dict = {}
    organization_id: Optional[str] = None


class WorkflowDecision(ApiModel):
    instance_id: str
    action_id: str
    notes: Optional[str] = None


class WorkflowEscalate(ApiModel):
    instance_id: str
    reason: Optional[str] = None
