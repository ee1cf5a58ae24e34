import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, resolve_org_id
from ..db import get_db
from ..models.models import Survey, SurveyResponse, User
from ..schemas.surveys import SurveyCreate, SurveyQuestion, SurveySubmission, SurveyUpdate
from ..services.audit import create_audit_log
from ..services.notifications import notify_org_admins
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_datetime, parse_uuid, sid, user_brief


router = APIRouter(prefix="/surveys", tags=["surveys"])
logger = structlog.get_logger(__name__)

DATE_FIELDS = ("start_date", "end_date", "due_date")


def _serialize_survey(s: Survey) -> dict:
    return {
        "id": str(s.id),
        "title": s.title,
        "description": s.description,
        "status": s.status,
        "isPublic": s.is_public,
        "estimatedTime": s.estimated_time,
        "startDate": iso(s.start_date),
        "endDate": iso(s.end_date),
        "dueDate": iso(s.due_date),
        "targetUsers": s.target_users or [],
        "targetRoles": s.target_roles or [],
        "questions": s.questions or [],
        "totalResponses": s.total_responses or 0,
        "completedResponses": s.completed_responses or 0,
        "averageCompletionTime": s.average_completion_time or 0,
        "settings": {
            "allowAnonymous": s.allow_anonymous,
            "allowMultipleResponses": s.allow_multiple_responses,
            "showProgress": s.show_progress,
            "showResults": s.show_results,
        },
        "tags": s.tags or [],
        "category": s.category,
        "organizationId": sid(s.organization_id),
        "createdBy": sid(s.created_by),
        "updatedBy": sid(s.updated_by),
        "createdAt": iso(s.created_at),
        "updatedAt": iso(s.updated_at),
    }


def _serialize_response(r: SurveyResponse) -> dict:
    return {
        "id": str(r.id),
        "surveyId": str(r.survey_id),
        "user": None if r.is_anonymous else user_brief(r.user),
        "status": r.status,
        "progress": r.progress,
        "responses": r.responses or [],
        "timeSpent": r.time_spent,
        "isAnonymous": r.is_anonymous,
        "submittedAt": iso(r.submitted_at),
        "createdAt": iso(r.created_at),
    }


def _questions_json(questions: List[SurveyQuestion]) -> List[dict]:
    out = []
    for index, q in enumerate(questions):
        out.append({
            "id": q.id or uuid.uuid4().hex,
            "type": q.type,
            "question": q.question,
            "description": q.description,
            "required": q.required,
            "options": [o.model_dump() for o in q.options],
            "minRating": q.min_rating,
            "maxRating": q.max_rating,
            "order": q.order if q.order is not None else index,
        })
    return out


def _get_survey(db: Session, survey_id: str, org_id) -> Survey:
    s_id = parse_uuid(survey_id, not_found="Survey")
    s = db.query(Survey).filter(Survey.id == s_id, Survey.organization_id == org_id).first()
    if not s:
        raise HTTPException(status_code=404, detail="Survey not found")
    return s


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and len(value) == 0)


def build_answers(questions: List[dict], submission: SurveySubmission) -> List[dict]:
    """Validate answers against the survey definition and return them in stored form."""
    by_id = {q["id"]: q for q in questions}
    answers = {}
    for a in submission.responses:
        if a.question_id not in by_id:
            raise HTTPException(status_code=400, detail=f"Unknown question: {a.question_id}")
        answers[a.question_id] = a.response

    now = datetime.utcnow().isoformat()
    stored = []
    for q in sorted(questions, key=lambda q: q.get("order") or 0):
        value = answers.get(q["id"])
        if _is_blank(value):
            if q.get("required"):
                raise HTTPException(status_code=400, detail=f"Question '{q['question']}' is required")
            continue
        if q["type"] == "rating":
            low, high = q.get("minRating", 1), q.get("maxRating", 5)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not low <= value <= high:
                raise HTTPException(status_code=400, detail=f"Rating for '{q['question']}' must be between {low} and {high}")
        stored.append({
            "questionId": q["id"],
            "question": q["question"],
            "questionType": q["type"],
            "response": value,
            "answeredAt": now,
        })
    return stored


@router.post("/create", status_code=201)
def create_survey(payload: SurveyCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    s = Survey(
        organization_id=org_id,
        title=payload.title.strip(),
        description=payload.description,
        status="draft",
        is_public=payload.is_public,
        estimated_time=payload.estimated_time,
        start_date=parse_datetime(payload.start_date, "startDate"),
        end_date=parse_datetime(payload.end_date, "endDate"),
        due_date=parse_datetime(payload.due_date, "dueDate"),
        target_users=payload.target_users,
        target_roles=payload.target_roles,
        questions=_questions_json(payload.questions),
        total_responses=0,
        completed_responses=0,
        average_completion_time=0.0,
        allow_anonymous=payload.allow_anonymous,
        allow_multiple_responses=payload.allow_multiple_responses,
        show_progress=payload.show_progress,
        show_results=payload.show_results,
        tags=payload.tags or [],
        category=payload.category,
        created_by=user.id,
        updated_by=user.id,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    create_audit_log(db, "survey", s.id, "SURVEY_CREATED", actor=user, organization_id=org_id, changes_json={"after": {"title": s.title, "questions": len(s.questions)}})
    logger.info("survey_created", survey_id=str(s.id))
    return {"success": True, "survey": _serialize_survey(s), "message": "Survey created successfully"}


@router.get("/list")
def list_surveys(
    organizationId: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    q = db.query(Survey).filter(Survey.organization_id == org_id)
    if status:
        q = q.filter(Survey.status == status)
    if category:
        q = q.filter(Survey.category == category)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Survey.title.ilike(like), Survey.description.ilike(like)))
    rows, meta = paginate(q.order_by(Survey.created_at.desc()), paging)
    return {"success": True, "surveys": [_serialize_survey(s) for s in rows], "pagination": meta}


@router.get("/{survey_id}")
def get_survey(survey_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    s = _get_survey(db, survey_id, resolve_org_id(user))
    return {"success": True, "survey": _serialize_survey(s)}


@router.put("/{survey_id}")
def update_survey(survey_id: str, payload: SurveyUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_survey(db, survey_id, org_id)
    data = payload.model_dump(exclude_unset=True)
    if "questions" in data:
        data.pop("questions")
        if payload.questions:
            s.questions = _questions_json(payload.questions)
    for key in DATE_FIELDS:
        if key in data:
            data[key] = parse_datetime(data[key], key)
    for key, value in data.items():
        if value is None and key in ("title", "description", "status"):
            continue
        setattr(s, key, value)
    s.updated_by = user.id
    db.commit()
    db.refresh(s)
    create_audit_log(db, "survey", s.id, "SURVEY_UPDATED", actor=user, organization_id=org_id, changes_json={"fields": sorted(payload.model_dump(exclude_unset=True).keys())})
    return {"success": True, "survey": _serialize_survey(s), "message": "Survey updated successfully"}


@router.delete("/{survey_id}")
def delete_survey(survey_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_survey(db, survey_id, org_id)
    s_id = s.id
    # Responses are removed with the survey through the relationship cascade
    db.delete(s)
    db.commit()
    create_audit_log(db, "survey", s_id, "SURVEY_DELETED", actor=user, organization_id=org_id, severity="medium")
    return {"success": True, "message": "Survey deleted successfully"}


@router.post("/{survey_id}/publish")
def publish_survey(survey_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_survey(db, survey_id, org_id)
    if not s.questions:
        raise HTTPException(status_code=400, detail="Survey must have at least one question")
    s.status = "active"
    if s.start_date is None:
        s.start_date = datetime.utcnow()
    s.updated_by = user.id
    db.commit()
    db.refresh(s)
    create_audit_log(db, "survey", s.id, "SURVEY_PUBLISHED", actor=user, organization_id=org_id)
    return {"success": True, "survey": _serialize_survey(s), "message": "Survey published successfully"}


@router.post("/{survey_id}/responses/submit", status_code=201)
def submit_response(survey_id: str, payload: SurveySubmission, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    s = _get_survey(db, survey_id, org_id)
    if s.status != "active":
        raise HTTPException(status_code=400, detail="Survey is not active")
    if payload.is_anonymous and not s.allow_anonymous:
        raise HTTPException(status_code=400, detail="Anonymous responses are not allowed for this survey")
    if not s.allow_multiple_responses:
        already = db.query(SurveyResponse).filter(
            SurveyResponse.survey_id == s.id,
            or_(SurveyResponse.user_id == user.id, SurveyResponse.respondent_id == user.id),
        ).first()
        if already:
            raise HTTPException(status_code=400, detail="You have already responded to this survey")

    answers = build_answers(s.questions or [], payload)
    now = datetime.utcnow()
    r = SurveyResponse(
        survey_id=s.id,
        organization_id=org_id,
        user_id=None if payload.is_anonymous else user.id,
        respondent_id=user.id,
        status="completed",
        progress=100,
        responses=answers,
        time_spent=payload.time_spent,
        is_anonymous=payload.is_anonymous,
        submitted_at=now,
    )
    db.add(r)

    completed = (s.completed_responses or 0) + 1
    previous_avg = s.average_completion_time or 0.0
    s.total_responses = (s.total_responses or 0) + 1
    s.completed_responses = completed
    s.average_completion_time = round(previous_avg + ((payload.time_spent or 0) - previous_avg) / completed, 2)
    db.commit()
    db.refresh(r)

    notify_org_admins(
        db, org_id,
        title="New survey response",
        message=f"A response was submitted to '{s.title}'",
        template_key="survey_response",
        payload_json={"surveyId": str(s.id), "responseId": str(r.id)},
        exclude_user_id=user.id,
    )
    logger.info("survey_response_submitted", survey_id=str(s.id), anonymous=payload.is_anonymous)
    return {"success": True, "response": _serialize_response(r), "message": "Response submitted successfully"}


@router.get("/{survey_id}/responses")
def list_responses(survey_id: str, paging: PageParams = Depends(), db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    s = _get_survey(db, survey_id, resolve_org_id(user))
    q = db.query(SurveyResponse).filter(SurveyResponse.survey_id == s.id).order_by(SurveyResponse.submitted_at.desc())
    rows, meta = paginate(q, paging)
    return {"success": True, "responses": [_serialize_response(r) for r in rows], "pagination": meta}
