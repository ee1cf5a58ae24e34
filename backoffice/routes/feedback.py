from datetime import datetime
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_org_user, resolve_org_id
from ..db import get_db
from ..models.models import Feedback, FeedbackResponse, User
from ..schemas.feedback import FeedbackBulkStatus, FeedbackCreate, FeedbackRespond, FeedbackUpdate
from ..services.audit import compute_diff, create_audit_log
from ..services.notifications import notify_org_admins
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_datetime, parse_uuid, sid, user_brief


router = APIRouter(prefix="/feedback", tags=["feedback"])
logger = structlog.get_logger(__name__)

SORT_FIELDS = {
    "createdAt": Feedback.created_at,
    "updatedAt": Feedback.updated_at,
    "rating": Feedback.rating,
    "priority": Feedback.priority,
    "status": Feedback.status,
    "title": Feedback.title,
}


def _serialize_response(r: FeedbackResponse) -> dict:
    return {
        "id": str(r.id),
        "feedbackId": str(r.feedback_id),
        "response": r.response,
        "responseType": r.response_type,
        "isInternal": r.is_internal,
        "status": r.status,
        "emailSent": r.email_sent,
        "respondedBy": user_brief(r.responder),
        "createdAt": iso(r.created_at),
        "updatedAt": iso(r.updated_at),
    }


def _serialize_feedback(f: Feedback, with_responses: bool = False) -> dict:
    d = {
        "id": str(f.id),
        "title": f.title,
        "description": f.description,
        "category": f.category,
        "rating": f.rating,
        "status": f.status,
        "priority": f.priority,
        "hasResponse": f.has_response,
        "responseDate": iso(f.response_date),
        "respondedBy": sid(f.responded_by),
        "tags": f.tags or [],
        "metadata": {
            "userAgent": f.user_agent,
            "ipAddress": f.ip_address,
            "browser": f.browser,
            "device": f.device,
        },
        "user": user_brief(f.user),
        "userId": sid(f.user_id),
        "organizationId": sid(f.organization_id),
        "createdBy": sid(f.created_by),
        "updatedBy": sid(f.updated_by),
        "createdAt": iso(f.created_at),
        "updatedAt": iso(f.updated_at),
    }
    if with_responses:
        d["responses"] = [_serialize_response(r) for r in f.responses]
    return d


def _detect_browser(ua: str) -> str:
    if "Edg/" in ua:
        return "Edge"
    if "OPR/" in ua or "Opera" in ua:
        return "Opera"
    if "Firefox/" in ua:
        return "Firefox"
    if "Chrome/" in ua:
        return "Chrome"
    if "Safari/" in ua:
        return "Safari"
    return "Unknown"


def _detect_device(ua: str) -> str:
    if "iPad" in ua or "Tablet" in ua:
        return "Tablet"
    if "Mobi" in ua or "Android" in ua or "iPhone" in ua:
        return "Mobile"
    return "Desktop"


def _client_metadata(request: Request) -> dict:
    ua = request.headers.get("user-agent", "")
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return {"user_agent": ua or None, "ip_address": ip, "browser": _detect_browser(ua), "device": _detect_device(ua)}


def _get_feedback(db: Session, feedback_id: str, org_id) -> Feedback:
    fid = parse_uuid(feedback_id, not_found="Feedback")
    f = db.query(Feedback).filter(Feedback.id == fid, Feedback.organization_id == org_id).first()
    if not f:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return f


@router.post("/create", status_code=201)
def create_feedback(payload: FeedbackCreate, request: Request, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    owner_id = user.id
    if payload.user_id:
        owner_id = get_org_user(db, payload.user_id, org_id).id

    meta = _client_metadata(request)
    f = Feedback(
        organization_id=org_id,
        user_id=owner_id,
        title=payload.title.strip(),
        description=payload.description,
        category=payload.category,
        rating=payload.rating,
        priority=payload.priority,
        status="new",
        has_response=False,
        tags=payload.tags or [],
        user_agent=payload.user_agent or meta["user_agent"],
        ip_address=payload.ip_address or meta["ip_address"],
        browser=payload.browser or meta["browser"],
        device=payload.device or meta["device"],
        created_by=user.id,
        updated_by=user.id,
    )
    db.add(f)
    db.commit()
    db.refresh(f)

    create_audit_log(
        db, "feedback", f.id, "FEEDBACK_CREATED", actor=user, organization_id=org_id,
        changes_json={"after": {"title": f.title, "category": f.category, "rating": f.rating}},
    )
    notify_org_admins(
        db, org_id,
        title="New feedback received",
        message=f"{user.full_name or user.email} submitted feedback: {f.title}",
        template_key="feedback_created",
        payload_json={"feedbackId": str(f.id), "rating": f.rating},
        exclude_user_id=user.id,
    )
    logger.info("feedback_created", feedback_id=str(f.id), rating=f.rating)
    return {"success": True, "feedback": _serialize_feedback(f), "message": "Feedback created successfully"}


@router.get("/list")
def list_feedback(
    organizationId: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    rating: Optional[int] = None,
    hasResponse: Optional[bool] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: Literal["createdAt", "updatedAt", "rating", "priority", "status", "title"] = "createdAt",
    sortOrder: Literal["asc", "desc"] = "desc",
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    q = db.query(Feedback).filter(Feedback.organization_id == org_id)
    if status:
        q = q.filter(Feedback.status == status)
    if category:
        q = q.filter(Feedback.category == category)
    if rating is not None:
        q = q.filter(Feedback.rating == rating)
    if hasResponse is not None:
        q = q.filter(Feedback.has_response.is_(hasResponse))
    start = parse_datetime(startDate, "startDate")
    end = parse_datetime(endDate, "endDate")
    if start:
        q = q.filter(Feedback.created_at >= start)
    if end:
        q = q.filter(Feedback.created_at <= end)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Feedback.title.ilike(like),
            Feedback.description.ilike(like),
            cast(Feedback.tags, String).ilike(like),
        ))
    column = SORT_FIELDS[sortBy]
    q = q.order_by(column.asc() if sortOrder == "asc" else column.desc())
    rows, meta = paginate(q, paging)
    return {"success": True, "feedback": [_serialize_feedback(f) for f in rows], "pagination": meta}


@router.get("/analytics/summary")
def feedback_summary(
    organizationId: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    filters = [Feedback.organization_id == org_id]
    start = parse_datetime(startDate, "startDate")
    end = parse_datetime(endDate, "endDate")
    if start:
        filters.append(Feedback.created_at >= start)
    if end:
        filters.append(Feedback.created_at <= end)

    total = db.query(func.count(Feedback.id)).filter(*filters).scalar() or 0
    avg_rating = db.query(func.avg(Feedback.rating)).filter(*filters).scalar()
    responded = db.query(func.count(Feedback.id)).filter(*filters, Feedback.has_response.is_(True)).scalar() or 0

    def _group(column, by_key: bool = False):
        rows = db.query(column, func.count(Feedback.id)).filter(*filters).group_by(column).all()
        if by_key:
            rows = sorted(rows, key=lambda r: r[0], reverse=True)
        else:
            rows = sorted(rows, key=lambda r: r[1], reverse=True)
        return [{"_id": key, "count": count} for key, count in rows]

    return {
        "success": True,
        "analytics": {
            "totalFeedback": total,
            "averageRating": round(float(avg_rating), 1) if avg_rating is not None else 0,
            "responseRate": round(responded / total * 100, 1) if total else 0,
            "byCategory": _group(Feedback.category),
            "byRating": _group(Feedback.rating, by_key=True),
            "byStatus": _group(Feedback.status),
        },
    }


@router.put("/bulk/status")
def bulk_update_status(payload: FeedbackBulkStatus, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    ids = [parse_uuid(raw, "feedbackIds") for raw in payload.feedback_ids]
    modified = (
        db.query(Feedback)
        .filter(Feedback.id.in_(ids), Feedback.organization_id == org_id, Feedback.status != payload.status)
        .update(
            {Feedback.status: payload.status, Feedback.updated_by: user.id, Feedback.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    create_audit_log(
        db, "feedback", "bulk", "FEEDBACK_BULK_UPDATED", actor=user, organization_id=org_id,
        context={"feedbackIds": [str(i) for i in ids], "status": payload.status, "count": modified},
    )
    return {"success": True, "message": f"Updated {modified} feedback items", "modifiedCount": modified}


@router.get("/{feedback_id}")
def get_feedback(feedback_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    f = _get_feedback(db, feedback_id, resolve_org_id(user))
    return {"success": True, "feedback": _serialize_feedback(f, with_responses=True)}


@router.put("/{feedback_id}")
def update_feedback(feedback_id: str, payload: FeedbackUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    f = _get_feedback(db, feedback_id, org_id)
    data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    before = {k: getattr(f, k) for k in data}
    for key, value in data.items():
        setattr(f, key, value)
    f.updated_by = user.id
    db.commit()
    db.refresh(f)
    create_audit_log(db, "feedback", f.id, "FEEDBACK_UPDATED", actor=user, organization_id=org_id, changes_json=compute_diff(before, {k: getattr(f, k) for k in data}))
    return {"success": True, "feedback": _serialize_feedback(f), "message": "Feedback updated successfully"}


@router.delete("/{feedback_id}")
def delete_feedback(feedback_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    f = _get_feedback(db, feedback_id, org_id)
    fid, title = f.id, f.title
    # Responses go with the feedback through the relationship cascade
    db.delete(f)
    db.commit()
    create_audit_log(db, "feedback", fid, "FEEDBACK_DELETED", actor=user, organization_id=org_id, severity="medium", changes_json={"before": {"title": title}})
    return {"success": True, "message": "Feedback deleted successfully"}


@router.post("/{feedback_id}/respond", status_code=201)
def respond_to_feedback(feedback_id: str, payload: FeedbackRespond, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    f = _get_feedback(db, feedback_id, org_id)
    now = datetime.utcnow()
    r = FeedbackResponse(
        feedback_id=f.id,
        organization_id=org_id,
        response=payload.response,
        response_type=payload.response_type,
        is_internal=payload.is_internal,
        status="sent",
        responded_by=user.id,
    )
    db.add(r)
    f.status = "responded"
    f.has_response = True
    f.response_date = now
    f.responded_by = user.id
    f.updated_by = user.id
    db.commit()
    db.refresh(r)
    create_audit_log(db, "feedback", f.id, "FEEDBACK_RESPONDED", actor=user, organization_id=org_id, context={"responseId": str(r.id), "responseType": r.response_type})
    logger.info("feedback_responded", feedback_id=str(f.id))
    return {"success": True, "response": _serialize_response(r), "message": "Response added successfully"}
