"""
Workflow automation engine.

Rules are matched against incoming events, their actions executed in order and
the outcome persisted as a WorkflowInstance.
"""
import copy
import uuid
from datetime import datetime, timedelta
from numbers import Number
from typing import Any, Dict, List, Optional

import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.models import User, WorkflowInstance, WorkflowRule


logger = structlog.get_logger(__name__)

ANY = "any"
INSTANCE_STATUSES = {"active", "completed", "escalated", "failed"}
RESOLVED_ACTION_STATUSES = {"completed", "approved", "rejected", "failed"}

DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "name": "Leave Request Approval",
        "module": "hr",
        "event": "leave_request_submitted",
        "conditions": {"leaveDays": {"min": 1, "max": 3}, "department": ANY, "employeeLevel": ANY},
        "actions": [
            {"type": "auto_approve", "message": "Leave request automatically approved for short duration"},
        ],
        "escalation": {"enabled": True, "timeLimit": 24, "escalateTo": "hr-manager"},
    },
    {
        "name": "Long Leave Request",
        "module": "hr",
        "event": "leave_request_submitted",
        "conditions": {"leaveDays": {"min": 4}, "department": ANY, "employeeLevel": ANY},
        "actions": [
            {
                "type": "require_approval",
                "approver": "hr-manager",
                "message": "Long leave request requires HR manager approval",
            },
        ],
        "escalation": {"enabled": True, "timeLimit": 48, "escalateTo": "super-admin"},
    },
    {
        "name": "Performance Review Reminder",
        "module": "hr",
        "event": "performance_review_due",
        "conditions": {"reviewType": "annual", "daysUntilDue": 30},
        "actions": [
            {
                "type": "send_reminder",
                "channels": ["email", "in_app"],
                "message": "Annual performance review is due in 30 days",
            },
        ],
        "escalation": {"enabled": True, "timeLimit": 7, "escalateTo": "hr-manager"},
    },
    {
        "name": "Training Completion Notification",
        "module": "hr",
        "event": "training_completed",
        "conditions": {"trainingType": "mandatory", "department": ANY},
        "actions": [
            {"type": "notify_hr", "message": "Employee completed mandatory training"},
            {"type": "update_compliance", "field": "training_status", "value": "completed"},
        ],
        "escalation": {"enabled": False},
    },
]


def seed_default_rules(db: Session) -> int:
    """Insert the shared default rules when no rule exists yet. Returns the number inserted."""
    if db.query(WorkflowRule).count() > 0:
        return 0
    for rule in DEFAULT_RULES:
        db.add(WorkflowRule(**copy.deepcopy(rule), is_active=True))
    db.commit()
    logger.info("workflow_rules_seeded", count=len(DEFAULT_RULES))
    return len(DEFAULT_RULES)


def _is_range(value: Any) -> bool:
    return isinstance(value, dict) and ("min" in value or "max" in value)


def _is_bound(value: Any) -> bool:
    return value is None or (isinstance(value, Number) and not isinstance(value, bool))


def validate_conditions(conditions: Optional[Dict]) -> None:
    """Reject range conditions whose bounds are not numbers."""
    for key, expected in (conditions or {}).items():
        if _is_range(expected) and not (_is_bound(expected.get("min")) and _is_bound(expected.get("max"))):
            raise ValueError(f"Range bounds for {key} must be numeric")


def _lookup(key: str, data: Dict, context: Dict) -> Any:
    if data.get(key) is not None:
        return data.get(key)
    return context.get(key)


def evaluate_conditions(conditions: Optional[Dict], data: Dict, context: Optional[Dict] = None) -> bool:
    """
    Every condition must hold:
      - ``"any"`` always matches
      - ``{"min": a, "max": b}`` (either bound optional) is a numeric range
      - anything else must equal the value in data or context
    """
    context = context or {}
    for key, expected in (conditions or {}).items():
        if expected == ANY:
            continue
        if _is_range(expected):
            actual = _lookup(key, data, context)
            if isinstance(actual, bool) or not isinstance(actual, Number):
                try:
                    actual = float(actual)
                except (TypeError, ValueError):
                    return False
            low, high = expected.get("min"), expected.get("max")
            if not (_is_bound(low) and _is_bound(high)):
                return False
            if low is not None and actual < low:
                return False
            if high is not None and actual > high:
                return False
            continue
        if data.get(key) != expected and context.get(key) != expected:
            return False
    return True


def execute_action(action: Dict, data: Dict, context: Dict) -> Dict[str, Any]:
    """Run one action and report ``{success, message, data}``."""
    now = datetime.utcnow().isoformat()
    action_type = action.get("type")
    if action_type == "auto_approve":
        return {"success": True, "message": action.get("message"), "data": {"approved": True, "timestamp": now}}
    if action_type == "require_approval":
        return {
            "success": True,
            "message": action.get("message"),
            "data": {"requiresApproval": True, "approver": action.get("approver"), "timestamp": now},
        }
    if action_type == "send_reminder":
        return {
            "success": True,
            "message": action.get("message"),
            "data": {"channels": action.get("channels") or [], "sent": True, "timestamp": now},
        }
    if action_type == "notify_hr":
        return {"success": True, "message": action.get("message"), "data": {"notificationSent": True, "timestamp": now}}
    if action_type == "update_compliance":
        field, value = action.get("field"), action.get("value")
        return {
            "success": True,
            "message": f"Updated {field} to {value}",
            "data": {"field": field, "value": value, "timestamp": now},
        }
    return {"success": False, "message": f"Unknown action type: {action_type}", "data": None}


def _action_status(action: Dict, result: Dict) -> str:
    if not result.get("success"):
        return "failed"
    if action.get("type") == "require_approval":
        return "pending"
    return "completed"


def applicable_rules(db: Session, event: str, organization_id: Optional[uuid.UUID]) -> List[WorkflowRule]:
    query = db.query(WorkflowRule).filter(WorkflowRule.is_active.is_(True), WorkflowRule.event == event)
    if organization_id:
        query = query.filter(or_(WorkflowRule.organization_id.is_(None), WorkflowRule.organization_id == organization_id))
    else:
        query = query.filter(WorkflowRule.organization_id.is_(None))
    return query.order_by(WorkflowRule.created_at.asc()).all()


def trigger(
    db: Session,
    event: str,
    data: Dict,
    context: Optional[Dict] = None,
    user: Optional[User] = None,
    organization_id: Optional[uuid.UUID] = None,
) -> List[WorkflowInstance]:
    """
    Match the event against active rules and run every matching rule.

    Returns:
        One persisted WorkflowInstance per matching rule
    """
    context = context or {}
    instances: List[WorkflowInstance] = []
    for rule in applicable_rules(db, event, organization_id):
        if not evaluate_conditions(rule.conditions, data, context):
            continue
        executed = []
        for action in rule.actions or []:
            result = execute_action(action, data, context)
            executed.append({
                "id": str(uuid.uuid4()),
                "action": action,
                "result": result,
                "status": _action_status(action, result),
                "executedAt": datetime.utcnow().isoformat(),
            })
        escalation = None
        if rule.escalation and rule.escalation.get("enabled"):
            hours = float(rule.escalation.get("timeLimit") or 0)
            escalation = {
                "scheduledFor": (datetime.utcnow() + timedelta(hours=hours)).isoformat(),
                "escalateTo": rule.escalation.get("escalateTo"),
                "status": "pending",
            }
        status = "failed" if executed and all(a["status"] == "failed" for a in executed) else "active"
        instance = WorkflowInstance(
            organization_id=organization_id,
            rule_id=rule.id,
            event=event,
            data=jsonable_encoder(data),
            context=jsonable_encoder(context),
            status=status,
            actions=executed,
            escalation=escalation,
            triggered_by=user.id if user else None,
        )
        db.add(instance)
        instances.append(instance)
    db.commit()
    for instance in instances:
        db.refresh(instance)
    logger.info("workflow_triggered", workflow_event=event, matched=len(instances))
    return instances


def _find_action(instance: WorkflowInstance, action_id: str) -> Optional[Dict]:
    for entry in instance.actions or []:
        if entry.get("id") == action_id:
            return entry
    return None


def resolve_action(
    db: Session,
    instance: WorkflowInstance,
    action_id: str,
    decision: str,
    user: User,
    notes: Optional[str] = None,
) -> Optional[Dict]:
    """
    Mark an executed action approved or rejected. The instance completes once
    no action is left pending. Returns the updated action entry or None.
    """
    actions = copy.deepcopy(instance.actions or [])
    target = None
    for entry in actions:
        if entry.get("id") == action_id:
            target = entry
            break
    if target is None:
        return None
    target["status"] = decision
    target["resolvedAt"] = datetime.utcnow().isoformat()
    target["resolvedBy"] = str(user.id)
    target["notes"] = notes or ""
    # JSON columns are only flushed on reassignment
    instance.actions = actions
    if all(a.get("status") in RESOLVED_ACTION_STATUSES for a in actions) and instance.status == "active":
        instance.status = "completed"
        instance.completed_at = datetime.utcnow()
    db.commit()
    db.refresh(instance)
    return _find_action(instance, action_id)


def escalate(db: Session, instance: WorkflowInstance, user: User, reason: Optional[str] = None) -> bool:
    """Escalate by hand. False when the instance has no escalation configured."""
    if not instance.escalation:
        return False
    escalation = dict(instance.escalation)
    escalation.update({
        "status": "escalated",
        "escalatedAt": datetime.utcnow().isoformat(),
        "escalatedBy": str(user.id),
        "reason": reason or "Manual escalation",
    })
    instance.escalation = escalation
    instance.status = "escalated"
    db.commit()
    db.refresh(instance)
    logger.info("workflow_escalated", instance_id=str(instance.id), escalate_to=escalation.get("escalateTo"))
    return True


def analytics(db: Session, since: datetime, organization_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
    query = db.query(WorkflowInstance).filter(WorkflowInstance.created_at >= since)
    if organization_id:
        query = query.filter(WorkflowInstance.organization_id == organization_id)
    instances = query.all()

    summary = {
        "totalInstances": len(instances),
        "activeInstances": sum(1 for i in instances if i.status == "active"),
        "completedInstances": sum(1 for i in instances if i.status == "completed"),
        "escalatedInstances": sum(1 for i in instances if i.status == "escalated"),
        "failedInstances": sum(1 for i in instances if i.status == "failed"),
    }
    by_module: Dict[str, int] = {}
    by_rule: Dict[str, int] = {}
    durations = []
    for instance in instances:
        if instance.rule:
            by_module[instance.rule.module] = by_module.get(instance.rule.module, 0) + 1
            by_rule[instance.rule.name] = by_rule.get(instance.rule.name, 0) + 1
        if instance.completed_at and instance.created_at:
            durations.append((instance.completed_at - instance.created_at).total_seconds())

    escalation_rate = (summary["escalatedInstances"] / len(instances) * 100) if instances else 0
    return {
        "summary": summary,
        "byModule": by_module,
        "byRule": by_rule,
        "averageProcessingTime": round(sum(durations) / len(durations), 2) if durations else 0,
        "escalationRate": round(escalation_rate, 2),
    }
