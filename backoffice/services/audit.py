"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List

import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from ..models.models import AuditLog, User
from ..config import settings


logger = structlog.get_logger(__name__)

SEVERITIES = {"low", "medium", "high", "critical"}


def _integrity_hash(canonical_data: Dict[str, Any], secret: str) -> str:
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: Any,
    action: str,
    actor: Optional[User] = None,
    organization_id: Optional[uuid.UUID] = None,
    severity: str = "low",
    source: str = "api",
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    commit: bool = True,
) -> AuditLog:
    """
    Create an append-only audit log entry.

    Args:
        db: Database session
        entity_type: Resource type (feedback|survey|payout|invoice_template|...)
        entity_id: Resource ID
        action: Action performed (FEEDBACK_CREATED|PAYOUT_FAILED|...)
        actor: User who performed the action, None for system actions
        organization_id: Tenant the resource belongs to (defaults to the actor's)
        severity: low|medium|high|critical
        source: api|system
        changes_json: Before/after diff
        context: Free-form details
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Created AuditLog object
    """
    if severity not in SEVERITIES:
        severity = "low"
    changes_json = jsonable_encoder(changes_json) if changes_json else None
    context = jsonable_encoder(context) if context else None
    if organization_id is None and actor is not None:
        organization_id = actor.organization_id
    actor_role = None
    if actor is not None and actor.roles:
        actor_role = actor.roles[0].name

    timestamp_utc = datetime.utcnow()
    integrity_hash = _integrity_hash(
        {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor.id) if actor else None,
            "organization_id": str(organization_id) if organization_id else None,
            "severity": severity,
            "timestamp_utc": timestamp_utc.isoformat(),
            "changes": changes_json,
            "context": context,
        },
        settings.jwt_secret,
    )

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor.id if actor else None,
        actor_role=actor_role,
        organization_id=organization_id,
        severity=severity,
        source=source,
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )
    db.add(audit_log)
    if commit:
        db.commit()
        db.refresh(audit_log)
    logger.info("audit_logged", action=action, entity_type=entity_type, entity_id=str(entity_id))
    return audit_log


def verify_audit_log(entry: AuditLog) -> bool:
    """Recompute the integrity hash of a stored entry."""
    expected = _integrity_hash(
        {
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "action": entry.action,
            "actor_id": str(entry.actor_id) if entry.actor_id else None,
            "organization_id": str(entry.organization_id) if entry.organization_id else None,
            "severity": entry.severity,
            "timestamp_utc": entry.timestamp_utc.replace(tzinfo=None).isoformat(),
            "changes": entry.changes_json,
            "context": entry.context,
        },
        settings.jwt_secret,
    )
    return expected == entry.integrity_hash


def get_audit_logs(
    db: Session,
    organization_id: Optional[uuid.UUID] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditLog]:
    """
    Get audit logs with optional filtering, newest first.
    """
    query = db.query(AuditLog)
    if organization_id:
        query = query.filter(AuditLog.organization_id == organization_id)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.timestamp_utc.desc()).limit(limit).offset(offset).all()


def count_audit_logs(
    db: Session,
    organization_id: Optional[uuid.UUID] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
) -> int:
    query = db.query(AuditLog)
    if organization_id:
        query = query.filter(AuditLog.organization_id == organization_id)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    if action:
        query = query.filter(AuditLog.action == action)
    return query.count()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff
