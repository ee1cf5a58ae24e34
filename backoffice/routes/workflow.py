from datetime import datetime, timedelta
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles, resolve_org_id
from ..db import get_db
from ..models.models import User, WorkflowInstance, WorkflowRule
from ..schemas.workflow import WorkflowDecision, WorkflowEscalate, WorkflowRuleCreate, WorkflowTrigger
from ..services import workflow_engine
from ..services.audit import create_audit_log
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_uuid, sid


router = APIRouter(prefix="/workflow", tags=["workflow"])
logger = structlog.get_logger(__name__)

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}


def _serialize_rule(r: WorkflowRule) -> dict:
    return {
        "id": str(r.id),
        "name": r.name,
        "module": r.module,
        "event": r.event,
        "conditions": r.conditions or {},
        "actions": r.actions or [],
        "escalation": r.escalation,
        "isActive": r.is_active,
        "organizationId": sid(r.organization_id),
        "createdBy": sid(r.created_by),
        "createdAt": iso(r.created_at),
    }


def _serialize_instance(i: WorkflowInstance) -> dict:
    return {
        "id": str(i.id),
        "ruleId": str(i.rule_id),
        "ruleName": i.rule.name if i.rule else None,
        "module": i.rule.module if i.rule else None,
        "event": i.event,
        "data": i.data or {},
        "context": i.context or {},
        "status": i.status,
        "actions": i.actions or [],
        "escalation": i.escalation,
        "triggeredBy": sid(i.triggered_by),
        "organizationId": sid(i.organization_id),
        "completedAt": iso(i.completed_at),
        "createdAt": iso(i.created_at),
    }


def _visible_rules(db: Session, org_id):
    return db.query(WorkflowRule).filter(or_(WorkflowRule.organization_id.is_(None), WorkflowRule.organization_id == org_id))


def _get_instance(db: Session, instance_id: str, org_id) -> WorkflowInstance:
    iid = parse_uuid(instance_id, not_found="Workflow instance")
    i = db.query(WorkflowInstance).filter(
        WorkflowInstance.id == iid,
        or_(WorkflowInstance.organization_id.is_(None), WorkflowInstance.organization_id == org_id),
    ).first()
    if not i:
        raise HTTPException(status_code=404, detail="Workflow instance not found")
    return i


@router.get("/rules")
def list_rules(module: Optional[str] = None, isActive: Optional[bool] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    q = _visible_rules(db, resolve_org_id(user))
    if module:
        q = q.filter(WorkflowRule.module == module)
    if isActive is not None:
        q = q.filter(WorkflowRule.is_active.is_(isActive))
    rules = q.order_by(WorkflowRule.created_at.asc()).all()
    return {"success": True, "data": [_serialize_rule(r) for r in rules]}


@router.post("/rules", status_code=201)
def create_rule(payload: WorkflowRuleCreate, db: Session = Depends(get_db), user: User = Depends(require_roles("admin", "hr-manager"))):
    org_id = resolve_org_id(user, payload.organization_id)
    for action in payload.actions:
        if not action.get("type"):
            raise HTTPException(status_code=400, detail="Every action requires a type")
    try:
        workflow_engine.validate_conditions(payload.conditions)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    r = WorkflowRule(
        organization_id=org_id,
        name=payload.name.strip(),
        module=payload.module,
        event=payload.event,
        conditions=payload.conditions,
        actions=payload.actions,
        escalation=payload.escalation.to_json() if payload.escalation else None,
        is_active=payload.is_active,
        created_by=user.id,
    )
    db.add(r)
    db.commit()
    db.refresh(r)
    create_audit_log(db, "workflow_rule", r.id, "WORKFLOW_RULE_CREATED", actor=user, organization_id=org_id, changes_json={"after": {"name": r.name, "event": r.event}})
    return {"success": True, "data": _serialize_rule(r), "message": "Workflow rule created successfully"}


@router.post("/trigger")
def trigger_workflow(payload: WorkflowTrigger, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    instances = workflow_engine.trigger(db, payload.event, payload.data, payload.context, user=user, organization_id=org_id)
    return {
        "success": True,
        "data": {
            "triggeredRules": len(instances),
            "instances": [_serialize_instance(i) for i in instances],
        },
        "message": f"Triggered {len(instances)} workflow rule(s)",
    }


@router.get("/instances")
def list_instances(
    status: Optional[str] = None,
    module: Optional[str] = None,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user)
    q = db.query(WorkflowInstance).filter(WorkflowInstance.organization_id == org_id)
    if status:
        q = q.filter(WorkflowInstance.status == status)
    if module:
        q = q.join(WorkflowRule, WorkflowInstance.rule_id == WorkflowRule.id).filter(WorkflowRule.module == module)
    rows, meta = paginate(q.order_by(WorkflowInstance.created_at.desc()), paging)
    return {"success": True, "data": [_serialize_instance(i) for i in rows], "pagination": meta}


def _decide(decision: str, payload: WorkflowDecision, db: Session, user: User) -> dict:
    org_id = resolve_org_id(user)
    instance = _get_instance(db, payload.instance_id, org_id)
    action = workflow_engine.resolve_action(db, instance, payload.action_id, decision, user, payload.notes)
    if action is None:
        raise HTTPException(status_code=404, detail="Action not found")
    create_audit_log(
        db, "workflow_instance", instance.id, f"WORKFLOW_ACTION_{decision.upper()}",
        actor=user, organization_id=org_id, context={"actionId": payload.action_id, "notes": payload.notes},
    )
    return {"instance": _serialize_instance(instance), "action": action}


@router.post("/approve")
def approve_action(payload: WorkflowDecision, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = _decide("approved", payload, db, user)
    return {"success": True, "data": data, "message": "Action approved successfully"}


@router.post("/reject")
def reject_action(payload: WorkflowDecision, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = _decide("rejected", payload, db, user)
    return {"success": True, "data": data, "message": "Action rejected"}


@router.post("/escalate")
def escalate_instance(payload: WorkflowEscalate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    instance = _get_instance(db, payload.instance_id, org_id)
    if not workflow_engine.escalate(db, instance, user, payload.reason):
        raise HTTPException(status_code=400, detail="No escalation configured for this workflow")
    create_audit_log(db, "workflow_instance", instance.id, "WORKFLOW_ESCALATED", actor=user, organization_id=org_id, severity="medium", context={"reason": payload.reason})
    return {"success": True, "data": _serialize_instance(instance), "message": "Workflow escalated successfully"}


@router.get("/analytics")
def workflow_analytics(period: Literal["7d", "30d", "90d"] = "30d", db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    since = datetime.utcnow() - timedelta(days=PERIOD_DAYS[period])
    data = workflow_engine.analytics(db, since, organization_id=org_id)
    data["period"] = period
    return {"success": True, "data": data}
