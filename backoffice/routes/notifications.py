from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Notification, User
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_uuid, sid


router = APIRouter(prefix="/notifications", tags=["notifications"])


def _serialize_notification(n: Notification) -> dict:
    return {
        "id": str(n.id),
        "channel": n.channel,
        "templateKey": n.template_key,
        "title": n.title or "Notification",
        "message": n.message or "You have a new notification",
        "payload": n.payload_json or {},
        "status": n.status,
        "read": n.read_at is not None,
        "organizationId": sid(n.organization_id),
        "sentAt": iso(n.sent_at),
        "readAt": iso(n.read_at),
        "createdAt": iso(n.created_at),
    }


@router.get("")
def list_notifications(
    unreadOnly: Optional[bool] = False,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List the caller's notifications, newest first."""
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unreadOnly:
        q = q.filter(Notification.read_at.is_(None))
    rows, meta = paginate(q.order_by(Notification.created_at.desc()), paging)
    unread = db.query(Notification).filter(Notification.user_id == user.id, Notification.read_at.is_(None)).count()
    return {"success": True, "data": [_serialize_notification(n) for n in rows], "unreadCount": unread, "pagination": meta}


@router.post("/{notification_id}/read")
def mark_read(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    nid = parse_uuid(notification_id, not_found="Notification")
    n = db.query(Notification).filter(Notification.id == nid, Notification.user_id == user.id).first()
    if not n:
        raise HTTPException(status_code=404, detail="Notification not found")
    if n.read_at is None:
        n.read_at = datetime.utcnow()
        n.status = "read"
        db.commit()
        db.refresh(n)
    return {"success": True, "data": _serialize_notification(n)}
