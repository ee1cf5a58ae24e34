from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, resolve_org_id
from ..db import get_db
from ..models.models import JobApplication, JobPosting, User
from ..schemas.job_postings import JobApplicationCreate, JobApplicationUpdate, JobPostingCreate, JobPostingUpdate
from ..services.audit import create_audit_log
from ..services.notifications import notify_org_admins
from ..services.pagination import PageParams, paginate
from ..utils import iso, naive_utc, parse_datetime, parse_uuid, sid, user_brief


router = APIRouter(prefix="/job-postings", tags=["job-postings"])
logger = structlog.get_logger(__name__)


def _serialize_posting(p: JobPosting) -> dict:
    return {
        "id": str(p.id),
        "title": p.title,
        "department": p.department,
        "location": p.location,
        "employmentType": p.employment_type,
        "experienceLevel": p.experience_level,
        "description": p.description,
        "requirements": p.requirements or [],
        "responsibilities": p.responsibilities or [],
        "benefits": p.benefits or [],
        "skills": p.skills or [],
        "salaryRange": p.salary_range,
        "status": p.status,
        "publishedBy": sid(p.published_by),
        "publishedAt": iso(p.published_at),
        "applicationDeadline": iso(p.application_deadline),
        "startDate": iso(p.start_date),
        "applicationCount": p.application_count or 0,
        "viewCount": p.view_count or 0,
        "isRemote": p.is_remote,
        "isUrgent": p.is_urgent,
        "tags": p.tags or [],
        "organizationId": sid(p.organization_id),
        "createdBy": sid(p.created_by),
        "updatedBy": sid(p.updated_by),
        "createdAt": iso(p.created_at),
        "updatedAt": iso(p.updated_at),
    }


def _serialize_application(a: JobApplication) -> dict:
    return {
        "id": str(a.id),
        "jobPostingId": str(a.posting_id),
        "candidate": user_brief(a.candidate),
        "status": a.status,
        "resume": a.resume,
        "coverLetter": a.cover_letter,
        "notes": a.notes,
        "appliedAt": iso(a.applied_at),
        "updatedAt": iso(a.updated_at),
    }


def _get_posting(db: Session, posting_id: str, org_id) -> JobPosting:
    pid = parse_uuid(posting_id, not_found="Job posting")
    p = db.query(JobPosting).filter(JobPosting.id == pid, JobPosting.organization_id == org_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="Job posting not found")
    return p


def _mark_published(p: JobPosting, user: User) -> None:
    p.status = "published"
    p.published_at = datetime.utcnow()
    p.published_by = user.id


@router.post("", status_code=201)
def create_posting(payload: JobPostingCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    data = payload.model_dump(exclude={"organization_id", "salary_range", "tags", "status"})
    data["application_deadline"] = parse_datetime(data.get("application_deadline"), "applicationDeadline")
    data["start_date"] = parse_datetime(data.get("start_date"), "startDate")
    p = JobPosting(
        organization_id=org_id,
        salary_range=payload.salary_range.model_dump() if payload.salary_range else None,
        tags=payload.tags or [],
        status="draft",
        application_count=0,
        view_count=0,
        created_by=user.id,
        updated_by=user.id,
        **data,
    )
    if payload.status == "published":
        _mark_published(p, user)
    elif payload.status:
        p.status = payload.status
    db.add(p)
    db.commit()
    db.refresh(p)
    create_audit_log(db, "job_posting", p.id, "JOB_POSTING_CREATED", actor=user, organization_id=org_id, changes_json={"after": {"title": p.title, "status": p.status}})
    logger.info("job_posting_created", posting_id=str(p.id))
    return {"success": True, "data": _serialize_posting(p), "message": "Job posting created successfully"}


@router.get("")
def list_postings(
    organizationId: Optional[str] = None,
    status: Optional[str] = None,
    department: Optional[str] = None,
    employmentType: Optional[str] = None,
    experienceLevel: Optional[str] = None,
    isRemote: Optional[bool] = None,
    search: Optional[str] = None,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    q = db.query(JobPosting).filter(JobPosting.organization_id == org_id)
    if status:
        q = q.filter(JobPosting.status == status)
    if department:
        q = q.filter(JobPosting.department == department)
    if employmentType:
        q = q.filter(JobPosting.employment_type == employmentType)
    if experienceLevel:
        q = q.filter(JobPosting.experience_level == experienceLevel)
    if isRemote is not None:
        q = q.filter(JobPosting.is_remote.is_(isRemote))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(JobPosting.title.ilike(like), JobPosting.description.ilike(like), JobPosting.department.ilike(like)))
    q = q.order_by(JobPosting.is_urgent.desc(), JobPosting.published_at.desc().nullslast(), JobPosting.created_at.desc())
    rows, meta = paginate(q, paging)
    return {"success": True, "data": [_serialize_posting(p) for p in rows], "pagination": meta}


@router.get("/{posting_id}")
def get_posting(posting_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    p = _get_posting(db, posting_id, resolve_org_id(user))
    p.view_count = (p.view_count or 0) + 1
    db.commit()
    db.refresh(p)
    return {"success": True, "data": _serialize_posting(p)}


@router.put("/{posting_id}")
def update_posting(posting_id: str, payload: JobPostingUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    p = _get_posting(db, posting_id, org_id)
    data = payload.model_dump(exclude_unset=True)
    new_status = data.pop("status", None)
    if "salary_range" in data:
        data["salary_range"] = payload.salary_range.model_dump() if payload.salary_range else None
    if "application_deadline" in data:
        data["application_deadline"] = parse_datetime(data["application_deadline"], "applicationDeadline")
    if "start_date" in data:
        data["start_date"] = parse_datetime(data["start_date"], "startDate")
    for key, value in data.items():
        if value is None and key in ("title", "department", "location", "employment_type", "experience_level", "description"):
            continue
        setattr(p, key, value)
    if new_status == "published" and p.status != "published":
        _mark_published(p, user)
    elif new_status:
        p.status = new_status
    p.updated_by = user.id
    db.commit()
    db.refresh(p)
    create_audit_log(db, "job_posting", p.id, "JOB_POSTING_UPDATED", actor=user, organization_id=org_id, changes_json={"fields": sorted(payload.model_dump(exclude_unset=True).keys())})
    return {"success": True, "data": _serialize_posting(p), "message": "Job posting updated successfully"}


@router.delete("/{posting_id}")
def delete_posting(posting_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    p = _get_posting(db, posting_id, org_id)
    pid = p.id
    db.delete(p)
    db.commit()
    create_audit_log(db, "job_posting", pid, "JOB_POSTING_DELETED", actor=user, organization_id=org_id, severity="medium")
    return {"success": True, "message": "Job posting deleted successfully"}


@router.post("/{posting_id}/publish")
def publish_posting(posting_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    p = _get_posting(db, posting_id, org_id)
    if p.status == "published":
        raise HTTPException(status_code=400, detail="Job posting is already published")
    _mark_published(p, user)
    p.updated_by = user.id
    db.commit()
    db.refresh(p)
    create_audit_log(db, "job_posting", p.id, "JOB_POSTING_PUBLISHED", actor=user, organization_id=org_id)
    return {"success": True, "data": _serialize_posting(p), "message": "Job posting published successfully"}


@router.post("/{posting_id}/close")
def close_posting(posting_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    p = _get_posting(db, posting_id, org_id)
    p.status = "closed"
    p.updated_by = user.id
    db.commit()
    db.refresh(p)
    create_audit_log(db, "job_posting", p.id, "JOB_POSTING_CLOSED", actor=user, organization_id=org_id)
    return {"success": True, "data": _serialize_posting(p), "message": "Job posting closed successfully"}


@router.post("/{posting_id}/apply", status_code=201)
def apply_to_posting(posting_id: str, payload: JobApplicationCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    p = _get_posting(db, posting_id, org_id)
    if p.status != "published":
        raise HTTPException(status_code=400, detail="Job posting is not accepting applications")
    if p.application_deadline and naive_utc(p.application_deadline) < datetime.utcnow():
        raise HTTPException(status_code=400, detail="Application deadline has passed")
    existing = db.query(JobApplication).filter(JobApplication.posting_id == p.id, JobApplication.candidate_id == user.id).first()
    if existing:
        raise HTTPException(status_code=400, detail="You have already applied for this position")

    a = JobApplication(
        posting_id=p.id,
        candidate_id=user.id,
        status="applied",
        resume=payload.resume,
        cover_letter=payload.cover_letter,
    )
    db.add(a)
    p.application_count = (p.application_count or 0) + 1
    db.commit()
    db.refresh(a)
    notify_org_admins(
        db, org_id,
        title="New job application",
        message=f"{user.full_name or user.email} applied for {p.title}",
        template_key="job_application",
        payload_json={"jobPostingId": str(p.id), "applicationId": str(a.id)},
        exclude_user_id=user.id,
    )
    logger.info("job_application_created", posting_id=str(p.id), application_id=str(a.id))
    return {"success": True, "data": _serialize_application(a), "message": "Application submitted successfully"}


@router.get("/{posting_id}/applications")
def list_applications(posting_id: str, status: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    p = _get_posting(db, posting_id, resolve_org_id(user))
    q = db.query(JobApplication).filter(JobApplication.posting_id == p.id)
    if status:
        q = q.filter(JobApplication.status == status)
    rows = q.order_by(JobApplication.applied_at.desc()).all()
    return {"success": True, "data": [_serialize_application(a) for a in rows]}


@router.patch("/{posting_id}/applications/{application_id}")
def update_application(
    posting_id: str,
    application_id: str,
    payload: JobApplicationUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user)
    p = _get_posting(db, posting_id, org_id)
    aid = parse_uuid(application_id, not_found="Application")
    a = db.query(JobApplication).filter(JobApplication.id == aid, JobApplication.posting_id == p.id).first()
    if not a:
        raise HTTPException(status_code=404, detail="Application not found")
    before = a.status
    a.status = payload.status
    if payload.notes is not None:
        a.notes = payload.notes
    db.commit()
    db.refresh(a)
    create_audit_log(db, "job_application", a.id, "JOB_APPLICATION_UPDATED", actor=user, organization_id=org_id, changes_json={"status": {"before": before, "after": a.status}})
    return {"success": True, "data": _serialize_application(a), "message": "Application updated successfully"}
