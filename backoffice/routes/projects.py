from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_org_user, resolve_org_id
from ..db import get_db
from ..models.models import Project, User
from ..schemas.projects import ProjectCreate, ProjectUpdate
from ..services.audit import compute_diff, create_audit_log
from ..utils import iso, parse_datetime, parse_uuid, sid, user_brief


router = APIRouter(prefix="/projects", tags=["projects"])
logger = structlog.get_logger(__name__)


def _serialize_project(p: Project) -> dict:
    return {
        "id": str(p.id),
        "name": p.name,
        "description": p.description,
        "status": p.status,
        "startDate": iso(p.start_date),
        "endDate": iso(p.end_date),
        "owner": user_brief(p.owner),
        "members": [user_brief(m) for m in p.members],
        "organizationId": sid(p.organization_id),
        "createdBy": sid(p.created_by),
        "updatedBy": sid(p.updated_by),
        "createdAt": iso(p.created_at),
        "updatedAt": iso(p.updated_at),
    }


def _audit_snapshot(p: Project) -> dict:
    return {
        "name": p.name,
        "description": p.description,
        "status": p.status,
        "startDate": iso(p.start_date),
        "endDate": iso(p.end_date),
        "ownerId": sid(p.owner_id),
        "memberIds": sorted(str(m.id) for m in p.members),
    }


def _load_user(db: Session, raw: str, org_id, label: str) -> User:
    return get_org_user(db, raw, org_id, label, label.capitalize(), strict=False)


def _load_members(db: Session, raw_ids: List[str], org_id) -> List[User]:
    return [_load_user(db, raw, org_id, "member") for raw in dict.fromkeys(raw_ids)]


def _get_project(db: Session, project_id: str, org_id) -> Project:
    pid = parse_uuid(project_id, not_found="Project")
    p = db.query(Project).filter(Project.id == pid, Project.organization_id == org_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="Project not found")
    return p


@router.post("", status_code=201)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    owner = _load_user(db, payload.owner, org_id, "owner")
    members = _load_members(db, payload.members, org_id)
    p = Project(
        organization_id=org_id,
        name=payload.name.strip(),
        description=payload.description,
        status=payload.status,
        start_date=parse_datetime(payload.start_date, "startDate"),
        end_date=parse_datetime(payload.end_date, "endDate"),
        owner_id=owner.id,
        created_by=user.id,
        updated_by=user.id,
    )
    p.members = members
    db.add(p)
    db.commit()
    db.refresh(p)
    create_audit_log(db, "project", p.id, "PROJECT_CREATED", actor=user, organization_id=org_id, changes_json={"after": {"name": p.name, "status": p.status}})
    logger.info("project_created", project_id=str(p.id))
    return {"success": True, "data": _serialize_project(p), "message": "Project created successfully"}


@router.get("")
def list_projects(
    status: Optional[str] = None,
    organizationId: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    q = db.query(Project).filter(Project.organization_id == org_id)
    if status:
        q = q.filter(Project.status == status)
    rows = q.order_by(Project.created_at.desc()).all()
    return {"success": True, "data": [_serialize_project(p) for p in rows]}


@router.get("/{project_id}")
def get_project(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    p = _get_project(db, project_id, resolve_org_id(user))
    return {"success": True, "data": _serialize_project(p)}


@router.put("/{project_id}")
def update_project(project_id: str, payload: ProjectUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    p = _get_project(db, project_id, org_id)
    data = payload.model_dump(exclude_unset=True)
    before = _audit_snapshot(p)
    if "owner" in data:
        if data["owner"] is None:
            raise HTTPException(status_code=400, detail="Project owner is required")
        p.owner_id = _load_user(db, data.pop("owner"), org_id, "owner").id
    if "members" in data:
        p.members = _load_members(db, data.pop("members") or [], org_id)
    for key in ("start_date", "end_date"):
        if key in data:
            data[key] = parse_datetime(data[key], key)
    for key, value in data.items():
        if value is None and key in ("name", "status"):
            continue
        setattr(p, key, value)
    p.updated_by = user.id
    db.commit()
    db.refresh(p)
    create_audit_log(db, "project", p.id, "PROJECT_UPDATED", actor=user, organization_id=org_id, changes_json=compute_diff(before, _audit_snapshot(p)))
    return {"success": True, "data": _serialize_project(p), "message": "Project updated successfully"}


@router.delete("/{project_id}")
def delete_project(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    p = _get_project(db, project_id, org_id)
    pid = p.id
    db.delete(p)
    db.commit()
    create_audit_log(db, "project", pid, "PROJECT_DELETED", actor=user, organization_id=org_id, severity="medium")
    return {"success": True, "message": "Project deleted successfully"}
