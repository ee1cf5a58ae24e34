import re
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, resolve_org_id
from ..db import get_db
from ..models.models import Employee, User
from ..schemas.employees import EmployeeCreate, EmployeeStatusUpdate, EmployeeUpdate
from ..services.audit import create_audit_log
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_datetime, parse_uuid, sid


router = APIRouter(prefix="/employees", tags=["employees"])
logger = structlog.get_logger(__name__)

EMPLOYEE_CODE = re.compile(r"^Mb(\d+)Z$")


def _serialize_employee(e: Employee) -> dict:
    manager = e.reporting_manager
    return {
        "id": str(e.id),
        "employeeId": e.employee_id,
        "fullName": e.full_name,
        "firstName": e.first_name,
        "lastName": e.last_name,
        "email": e.email,
        "phone": e.phone,
        "department": e.department,
        "roleTitle": e.role_title,
        "jobTitle": e.job_title,
        "employmentType": e.employment_type,
        "salary": e.salary,
        "startDate": iso(e.start_date),
        "emergencyContact": e.emergency_contact,
        "reportingManager": {"id": str(manager.id), "fullName": manager.full_name, "employeeId": manager.employee_id} if manager else None,
        "status": e.status,
        "deletedAt": iso(e.deleted_at),
        "organizationId": sid(e.organization_id),
        "createdBy": sid(e.created_by),
        "updatedBy": sid(e.updated_by),
        "createdAt": iso(e.created_at),
        "updatedAt": iso(e.updated_at),
    }


def next_employee_code(db: Session, org_id) -> str:
    """Mb001Z, Mb002Z, ... after the highest numeric suffix in the organization."""
    highest = 0
    for (code,) in db.query(Employee.employee_id).filter(Employee.organization_id == org_id).all():
        m = EMPLOYEE_CODE.match(code or "")
        if m:
            highest = max(highest, int(m.group(1)))
    return "Mb%03dZ" % (highest + 1)


def _split_name(full_name: str):
    parts = full_name.strip().split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def _get_employee(db: Session, employee_id: str, org_id) -> Employee:
    eid = parse_uuid(employee_id, not_found="Employee")
    e = db.query(Employee).filter(Employee.id == eid, Employee.organization_id == org_id).first()
    if not e:
        raise HTTPException(status_code=404, detail="Employee not found")
    return e


def _resolve_manager(db: Session, raw: Optional[str], org_id) -> Optional[Employee]:
    if not raw:
        return None
    return _get_employee(db, raw, org_id)


def _email_taken(db: Session, org_id, email: str, exclude_id=None) -> bool:
    q = db.query(Employee).filter(Employee.organization_id == org_id, Employee.email == email.lower())
    if exclude_id:
        q = q.filter(Employee.id != exclude_id)
    return db.query(q.exists()).scalar()


@router.post("", status_code=201)
def create_employee(payload: EmployeeCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    if _email_taken(db, org_id, payload.email):
        raise HTTPException(status_code=400, detail="Employee with this email already exists")
    first, last = _split_name(payload.full_name)
    manager = _resolve_manager(db, payload.reporting_manager, org_id)
    e = Employee(
        organization_id=org_id,
        employee_id=next_employee_code(db, org_id),
        full_name=payload.full_name.strip(),
        first_name=payload.first_name or first,
        last_name=payload.last_name or last,
        email=payload.email.lower(),
        phone=payload.phone,
        department=payload.department,
        role_title=payload.role_title,
        job_title=payload.job_title,
        employment_type=payload.employment_type,
        salary=payload.salary,
        start_date=parse_datetime(payload.start_date, "startDate"),
        emergency_contact=payload.emergency_contact,
        reporting_manager_id=manager.id if manager else None,
        status=payload.status,
        created_by=user.id,
        updated_by=user.id,
    )
    db.add(e)
    db.commit()
    db.refresh(e)
    create_audit_log(db, "employee", e.id, "EMPLOYEE_CREATED", actor=user, organization_id=org_id, changes_json={"after": {"employeeId": e.employee_id, "email": e.email}})
    logger.info("employee_created", employee_id=e.employee_id)
    return {"success": True, "data": _serialize_employee(e), "message": "Employee created successfully"}


@router.get("")
def list_employees(
    status: Optional[str] = None,
    department: Optional[str] = None,
    search: Optional[str] = None,
    organizationId: Optional[str] = None,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    q = db.query(Employee).filter(Employee.organization_id == org_id, Employee.deleted_at.is_(None))
    if status:
        q = q.filter(Employee.status == status)
    if department:
        q = q.filter(Employee.department == department)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Employee.full_name.ilike(like), Employee.email.ilike(like), Employee.employee_id.ilike(like)))
    rows, meta = paginate(q.order_by(Employee.created_at.desc()), paging)
    return {"success": True, "data": [_serialize_employee(e) for e in rows], "pagination": meta}


@router.get("/{employee_id}")
def get_employee(employee_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    e = _get_employee(db, employee_id, resolve_org_id(user))
    return {"success": True, "data": _serialize_employee(e)}


@router.put("/{employee_id}")
def update_employee(employee_id: str, payload: EmployeeUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    e = _get_employee(db, employee_id, org_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("email"):
        data["email"] = data["email"].lower()
        if _email_taken(db, org_id, data["email"], exclude_id=e.id):
            raise HTTPException(status_code=400, detail="Employee with this email already exists")
    if "reporting_manager" in data:
        manager = _resolve_manager(db, data.pop("reporting_manager"), org_id)
        if manager and manager.id == e.id:
            raise HTTPException(status_code=400, detail="Employee cannot report to themselves")
        e.reporting_manager_id = manager.id if manager else None
    if "start_date" in data:
        data["start_date"] = parse_datetime(data["start_date"], "startDate")
    for key, value in data.items():
        if key in ("full_name", "email") and value is None:
            continue
        setattr(e, key, value)
    e.updated_by = user.id
    db.commit()
    db.refresh(e)
    create_audit_log(db, "employee", e.id, "EMPLOYEE_UPDATED", actor=user, organization_id=org_id, changes_json={"fields": sorted(payload.model_dump(exclude_unset=True).keys())})
    return {"success": True, "data": _serialize_employee(e), "message": "Employee updated successfully"}


@router.patch("/{employee_id}/status")
def update_employee_status(employee_id: str, payload: EmployeeStatusUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    e = _get_employee(db, employee_id, org_id)
    before = e.status
    e.status = payload.status
    e.updated_by = user.id
    db.commit()
    db.refresh(e)
    create_audit_log(db, "employee", e.id, "EMPLOYEE_STATUS_CHANGED", actor=user, organization_id=org_id, changes_json={"status": {"before": before, "after": e.status}})
    return {"success": True, "data": _serialize_employee(e), "message": f"Employee status updated to {e.status}"}


@router.delete("/{employee_id}")
def delete_employee(employee_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    e = _get_employee(db, employee_id, org_id)
    e.status = "terminated"
    e.deleted_at = datetime.utcnow()
    e.updated_by = user.id
    db.commit()
    create_audit_log(db, "employee", e.id, "EMPLOYEE_DELETED", actor=user, organization_id=org_id, severity="medium")
    return {"success": True, "message": "Employee deleted successfully"}
