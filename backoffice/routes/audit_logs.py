from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_roles, resolve_org_id
from ..db import get_db
from ..models.models import AuditLog, User
from ..services.audit import count_audit_logs, get_audit_logs, verify_audit_log
from ..services.pagination import PageParams
from ..utils import iso, sid


router = APIRouter(prefix="/audit-logs", tags=["audit"])


def _serialize_entry(entry: AuditLog) -> dict:
    return {
        "id": str(entry.id),
        "entityType": entry.entity_type,
        "entityId": entry.entity_id,
        "action": entry.action,
        "actorId": sid(entry.actor_id),
        "actorRole": entry.actor_role,
        "organizationId": sid(entry.organization_id),
        "severity": entry.severity,
        "source": entry.source,
        "changes": entry.changes_json,
        "context": entry.context,
        "timestamp": iso(entry.timestamp_utc),
        "verified": verify_audit_log(entry),
    }


@router.get("")
def list_audit_logs(
    entityType: Optional[str] = None,
    entityId: Optional[str] = None,
    action: Optional[str] = None,
    organizationId: Optional[str] = None,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    org_id = resolve_org_id(user, organizationId)
    entries = get_audit_logs(
        db,
        organization_id=org_id,
        entity_type=entityType,
        entity_id=entityId,
        action=action,
        limit=paging.limit,
        offset=paging.offset,
    )
    total = count_audit_logs(db, organization_id=org_id, entity_type=entityType, entity_id=entityId, action=action)
    return {"success": True, "data": [_serialize_entry(e) for e in entries], "pagination": paging.meta(total)}
