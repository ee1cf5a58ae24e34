from datetime import datetime
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_org_user, resolve_org_id
from ..db import get_db
from ..models.models import Suggestion, SuggestionComment, SuggestionVote, User
from ..schemas.suggestions import CommentRequest, SuggestionCreate, SuggestionUpdate, VoteRequest
from ..services.audit import create_audit_log
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_uuid, sid, user_brief


router = APIRouter(prefix="/suggestions", tags=["suggestions"])
logger = structlog.get_logger(__name__)

VOTE_COLUMNS = {"upvote": "upvotes", "downvote": "downvotes"}


def _serialize_comment(c: SuggestionComment) -> dict:
    return {
        "id": str(c.id),
        "userId": str(c.user_id),
        "user": user_brief(c.user),
        "content": c.content,
        "createdAt": iso(c.created_at),
    }


def _serialize_votes(s: Suggestion) -> dict:
    return {
        "upvotes": s.upvotes or 0,
        "downvotes": s.downvotes or 0,
        "voters": [{"userId": str(v.user_id), "vote": v.vote, "votedAt": iso(v.voted_at)} for v in s.voters],
    }


def _serialize_suggestion(s: Suggestion, with_comments: bool = False) -> dict:
    d = {
        "id": str(s.id),
        "title": s.title,
        "description": s.description,
        "category": s.category,
        "status": s.status,
        "priority": s.priority,
        "votes": _serialize_votes(s),
        "score": (s.upvotes or 0) - (s.downvotes or 0),
        "commentCount": len(s.comments),
        "estimatedEffort": s.estimated_effort,
        "estimatedTimeline": s.estimated_timeline,
        "assignedTo": sid(s.assigned_to),
        "tags": s.tags or [],
        "user": user_brief(s.user),
        "organizationId": sid(s.organization_id),
        "createdBy": sid(s.created_by),
        "updatedBy": sid(s.updated_by),
        "createdAt": iso(s.created_at),
        "updatedAt": iso(s.updated_at),
    }
    if with_comments:
        d["comments"] = [_serialize_comment(c) for c in s.comments]
    return d


def _get_suggestion(db: Session, suggestion_id: str, org_id) -> Suggestion:
    sid_ = parse_uuid(suggestion_id, not_found="Suggestion")
    s = db.query(Suggestion).filter(Suggestion.id == sid_, Suggestion.organization_id == org_id).first()
    if not s:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    return s


@router.post("/create", status_code=201)
def create_suggestion(payload: SuggestionCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    s = Suggestion(
        organization_id=org_id,
        user_id=user.id,
        title=payload.title.strip(),
        description=payload.description,
        category=payload.category,
        priority=payload.priority,
        status="new",
        upvotes=0,
        downvotes=0,
        estimated_effort=payload.estimated_effort,
        estimated_timeline=payload.estimated_timeline,
        tags=payload.tags or [],
        created_by=user.id,
        updated_by=user.id,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    create_audit_log(db, "suggestion", s.id, "SUGGESTION_CREATED", actor=user, organization_id=org_id, changes_json={"after": {"title": s.title, "category": s.category}})
    logger.info("suggestion_created", suggestion_id=str(s.id))
    return {"success": True, "suggestion": _serialize_suggestion(s), "message": "Suggestion created successfully"}


@router.get("/list")
def list_suggestions(
    organizationId: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: Literal["createdAt", "updatedAt", "votes", "priority", "status", "title"] = "createdAt",
    sortOrder: Literal["asc", "desc"] = "desc",
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    q = db.query(Suggestion).filter(Suggestion.organization_id == org_id)
    if status:
        q = q.filter(Suggestion.status == status)
    if category:
        q = q.filter(Suggestion.category == category)
    if priority:
        q = q.filter(Suggestion.priority == priority)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Suggestion.title.ilike(like), Suggestion.description.ilike(like)))
    columns = {
        "createdAt": Suggestion.created_at,
        "updatedAt": Suggestion.updated_at,
        "votes": Suggestion.upvotes - Suggestion.downvotes,
        "priority": Suggestion.priority,
        "status": Suggestion.status,
        "title": Suggestion.title,
    }
    column = columns[sortBy]
    q = q.order_by(column.asc() if sortOrder == "asc" else column.desc())
    rows, meta = paginate(q, paging)
    return {"success": True, "suggestions": [_serialize_suggestion(s) for s in rows], "pagination": meta}


@router.get("/{suggestion_id}")
def get_suggestion(suggestion_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    s = _get_suggestion(db, suggestion_id, resolve_org_id(user))
    return {"success": True, "suggestion": _serialize_suggestion(s, with_comments=True)}


@router.put("/{suggestion_id}")
def update_suggestion(suggestion_id: str, payload: SuggestionUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_suggestion(db, suggestion_id, org_id)
    data = payload.model_dump(exclude_unset=True)
    if "assigned_to" in data:
        raw = data.pop("assigned_to")
        assignee_id = None
        if raw:
            assignee_id = get_org_user(db, raw, org_id, "assignedTo", "Assignee").id
        s.assigned_to = assignee_id
    for key, value in data.items():
        if value is None and key in ("title", "description", "category", "status", "priority"):
            continue
        setattr(s, key, value)
    s.updated_by = user.id
    db.commit()
    db.refresh(s)
    create_audit_log(db, "suggestion", s.id, "SUGGESTION_UPDATED", actor=user, organization_id=org_id, changes_json={"fields": sorted(payload.model_dump(exclude_unset=True).keys())})
    return {"success": True, "suggestion": _serialize_suggestion(s), "message": "Suggestion updated successfully"}


@router.delete("/{suggestion_id}")
def delete_suggestion(suggestion_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_suggestion(db, suggestion_id, org_id)
    s_id = s.id
    db.delete(s)
    db.commit()
    create_audit_log(db, "suggestion", s_id, "SUGGESTION_DELETED", actor=user, organization_id=org_id, severity="medium")
    return {"success": True, "message": "Suggestion deleted successfully"}


def _vote_summary(s: Suggestion, user_vote: Optional[str]) -> dict:
    return {"upvotes": s.upvotes or 0, "downvotes": s.downvotes or 0, "userVote": user_vote}


@router.post("/{suggestion_id}/vote")
def vote_suggestion(suggestion_id: str, payload: VoteRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_suggestion(db, suggestion_id, org_id)
    existing = db.query(SuggestionVote).filter(SuggestionVote.suggestion_id == s.id, SuggestionVote.user_id == user.id).first()

    if existing and existing.vote == payload.vote:
        return {"success": True, "data": _vote_summary(s, existing.vote), "message": "Vote already recorded"}

    column = VOTE_COLUMNS[payload.vote]
    if existing:
        previous = VOTE_COLUMNS[existing.vote]
        setattr(s, previous, max((getattr(s, previous) or 0) - 1, 0))
        existing.vote = payload.vote
        existing.voted_at = datetime.utcnow()
        message = "Vote updated successfully"
    else:
        db.add(SuggestionVote(suggestion_id=s.id, user_id=user.id, vote=payload.vote))
        message = "Vote recorded successfully"
    setattr(s, column, (getattr(s, column) or 0) + 1)
    db.commit()
    db.refresh(s)
    logger.info("suggestion_voted", suggestion_id=str(s.id), vote=payload.vote)
    return {"success": True, "data": _vote_summary(s, payload.vote), "message": message}


@router.delete("/{suggestion_id}/vote")
def retract_vote(suggestion_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_suggestion(db, suggestion_id, org_id)
    existing = db.query(SuggestionVote).filter(SuggestionVote.suggestion_id == s.id, SuggestionVote.user_id == user.id).first()
    if not existing:
        raise HTTPException(status_code=404, detail="Vote not found")
    column = VOTE_COLUMNS[existing.vote]
    setattr(s, column, max((getattr(s, column) or 0) - 1, 0))
    db.delete(existing)
    db.commit()
    db.refresh(s)
    return {"success": True, "data": _vote_summary(s, None), "message": "Vote removed successfully"}


@router.post("/{suggestion_id}/comment", status_code=201)
def add_comment(suggestion_id: str, payload: CommentRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_suggestion(db, suggestion_id, org_id)
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Comment content is required")
    c = SuggestionComment(suggestion_id=s.id, user_id=user.id, content=content)
    db.add(c)
    db.commit()
    db.refresh(c)
    return {"success": True, "comment": _serialize_comment(c), "message": "Comment added successfully"}


@router.get("/{suggestion_id}/comments")
def list_comments(suggestion_id: str, paging: PageParams = Depends(), db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    s = _get_suggestion(db, suggestion_id, resolve_org_id(user))
    q = db.query(SuggestionComment).filter(SuggestionComment.suggestion_id == s.id).order_by(SuggestionComment.created_at.desc())
    rows, meta = paginate(q, paging)
    return {"success": True, "comments": [_serialize_comment(c) for c in rows], "pagination": meta}
