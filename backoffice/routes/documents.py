import uuid
from datetime import datetime, timedelta
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, resolve_org_id
from ..config import settings
from ..db import get_db
from ..models.models import Document, Employee, User
from ..schemas.common import split_tags
from ..schemas.documents import DOCUMENT_CATEGORIES, DocumentPermissions, DocumentUpdate
from ..services.audit import create_audit_log
from ..storage.local_provider import LocalStorageProvider, canonical_key
from ..storage.provider import StorageProvider
from ..utils import iso, parse_datetime, parse_uuid, sid


router = APIRouter(prefix="/documents", tags=["documents"])
logger = structlog.get_logger(__name__)

DOCUMENT_TEMPLATES = [
    {
        "id": "1",
        "name": "Employment Contract Template",
        "category": "contract",
        "description": "Standard employment contract template",
        "fileUrl": "/templates/employment-contract.docx",
        "version": "1.2",
        "lastUpdated": "2024-01-15T00:00:00",
        "isActive": True,
    },
    {
        "id": "2",
        "name": "Performance Review Form",
        "category": "performance",
        "description": "Annual performance review template",
        "fileUrl": "/templates/performance-review.pdf",
        "version": "2.0",
        "lastUpdated": "2024-02-01T00:00:00",
        "isActive": True,
    },
    {
        "id": "3",
        "name": "Employee Handbook",
        "category": "policy",
        "description": "Company policies and procedures",
        "fileUrl": "/templates/employee-handbook.pdf",
        "version": "3.1",
        "lastUpdated": "2024-01-20T00:00:00",
        "isActive": True,
    },
    {
        "id": "4",
        "name": "Training Certificate Template",
        "category": "certificate",
        "description": "Training completion certificate",
        "fileUrl": "/templates/training-certificate.docx",
        "version": "1.0",
        "lastUpdated": "2024-01-10T00:00:00",
        "isActive": True,
    },
]

ANALYTICS_WINDOWS = {"daily": 1, "weekly": 7, "monthly": 30}


def get_storage() -> StorageProvider:
    return LocalStorageProvider()


def _serialize_document(d: Document) -> dict:
    return {
        "id": str(d.id),
        "title": d.title,
        "description": d.description,
        "category": d.category,
        "fileUrl": d.file_url,
        "storageKey": d.storage_key,
        "fileName": d.file_name,
        "fileSize": d.file_size,
        "mimeType": d.mime_type,
        "employeeId": sid(d.employee_id),
        "isConfidential": d.is_confidential,
        "tags": d.tags or [],
        "expiryDate": iso(d.expiry_date),
        "version": d.version,
        "status": d.status,
        "accessPermissions": d.access_permissions or [],
        "downloadCount": d.download_count or 0,
        "lastAccessedAt": iso(d.last_accessed_at),
        "uploadedBy": sid(d.uploaded_by),
        "updatedBy": sid(d.updated_by),
        "archivedAt": iso(d.archived_at),
        "archivedBy": sid(d.archived_by),
        "organizationId": sid(d.organization_id),
        "createdAt": iso(d.created_at),
        "updatedAt": iso(d.updated_at),
    }


def _get_document(db: Session, document_id: str, org_id) -> Document:
    did = parse_uuid(document_id, not_found="Document")
    d = db.query(Document).filter(Document.id == did, Document.organization_id == org_id).first()
    if not d:
        raise HTTPException(status_code=404, detail="Document not found")
    return d


def _resolve_employee(db: Session, raw: Optional[str], org_id) -> Optional[uuid.UUID]:
    if not raw:
        return None
    eid = parse_uuid(raw, "employeeId")
    e = db.query(Employee).filter(Employee.id == eid, Employee.organization_id == org_id).first()
    if not e:
        raise HTTPException(status_code=404, detail="Employee not found")
    return e.id


@router.get("")
def list_documents(
    category: Optional[str] = None,
    employeeId: Optional[str] = None,
    isConfidential: Optional[bool] = None,
    status: Optional[Literal["active", "archived"]] = None,
    search: Optional[str] = None,
    organizationId: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    q = db.query(Document).filter(Document.organization_id == org_id, Document.status == (status or "active"))
    if category:
        q = q.filter(Document.category == category)
    if employeeId:
        q = q.filter(Document.employee_id == parse_uuid(employeeId, "employeeId"))
    if isConfidential is not None:
        q = q.filter(Document.is_confidential.is_(isConfidential))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Document.title.ilike(like),
            Document.description.ilike(like),
            cast(Document.tags, String).ilike(like),
        ))
    rows = q.order_by(Document.created_at.desc()).all()
    return {
        "success": True,
        "data": [_serialize_document(d) for d in rows],
        "total": len(rows),
        "message": "Documents retrieved successfully",
    }


@router.post("/upload", status_code=201)
def upload_document(
    file: UploadFile = File(...),
    title: str = Form(...),
    category: str = Form(...),
    description: Optional[str] = Form(None),
    employeeId: Optional[str] = Form(None),
    isConfidential: bool = Form(False),
    tags: Optional[str] = Form(None),
    expiryDate: Optional[str] = Form(None),
    organizationId: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    org_id = resolve_org_id(user, organizationId)
    if not title.strip():
        raise HTTPException(status_code=400, detail="Missing required fields: title")
    if category not in DOCUMENT_CATEGORIES:
        raise HTTPException(status_code=400, detail=f"Invalid category. Must be one of: {', '.join(DOCUMENT_CATEGORIES)}")
    employee_id = _resolve_employee(db, employeeId, org_id)
    expiry = parse_datetime(expiryDate, "expiryDate")

    doc_id = uuid.uuid4()
    key = canonical_key(str(org_id), category, file.filename or "document")
    size = storage.save(file.file, key)
    d = Document(
        id=doc_id,
        organization_id=org_id,
        title=title.strip(),
        description=description,
        category=category,
        storage_key=key,
        file_url=f"{settings.public_base_url.rstrip('/')}/api/documents/{doc_id}/download",
        file_name=file.filename,
        file_size=size,
        mime_type=file.content_type or "application/octet-stream",
        employee_id=employee_id,
        is_confidential=isConfidential,
        tags=split_tags(tags) or [],
        expiry_date=expiry,
        version=1,
        status="active",
        access_permissions=[],
        download_count=0,
        uploaded_by=user.id,
        updated_by=user.id,
    )
    db.add(d)
    db.commit()
    db.refresh(d)
    create_audit_log(db, "document", d.id, "DOCUMENT_UPLOADED", actor=user, organization_id=org_id, changes_json={"after": {"title": d.title, "category": d.category, "fileSize": size}})
    logger.info("document_uploaded", document_id=str(d.id), size=size)
    return {"success": True, "data": _serialize_document(d), "message": "Document uploaded successfully"}


@router.get("/templates")
def list_document_templates(category: Optional[str] = None, user: User = Depends(get_current_user)):
    templates = [t for t in DOCUMENT_TEMPLATES if not category or t["category"] == category]
    return {"success": True, "data": templates, "message": "Document templates retrieved successfully"}


@router.get("/analytics")
def document_analytics(
    period: Literal["daily", "weekly", "monthly"] = "monthly",
    organizationId: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user, organizationId)
    since = datetime.utcnow() - timedelta(days=ANALYTICS_WINDOWS[period])
    filters = [Document.organization_id == org_id, Document.status == "active"]

    total, downloads, total_size = db.query(
        func.count(Document.id),
        func.coalesce(func.sum(Document.download_count), 0),
        func.coalesce(func.sum(Document.file_size), 0),
    ).filter(*filters).one()
    recent = db.query(func.count(Document.id)).filter(*filters, Document.created_at >= since).scalar() or 0
    confidential = db.query(func.count(Document.id)).filter(*filters, Document.is_confidential.is_(True)).scalar() or 0
    by_category = dict(db.query(Document.category, func.count(Document.id)).filter(*filters).group_by(Document.category).all())
    top = db.query(Document).filter(*filters).order_by(Document.download_count.desc()).limit(5).all()
    average_size = round(float(total_size) / total, 2) if total else 0

    return {
        "success": True,
        "data": {
            "period": period,
            "summary": {
                "totalDocuments": total,
                "recentUploads": recent,
                "totalDownloads": int(downloads),
                "averageFileSize": average_size,
            },
            "byCategory": by_category,
            "byConfidentiality": {"confidential": confidential, "public": total - confidential},
            "topDocuments": [
                {"id": str(d.id), "title": d.title, "category": d.category, "downloadCount": d.download_count or 0}
                for d in top
            ],
            "storageUsage": {"totalSize": int(total_size), "averageSize": average_size},
        },
        "message": "Document analytics retrieved successfully",
    }


@router.get("/{document_id}")
def get_document(document_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    d = _get_document(db, document_id, resolve_org_id(user))
    d.download_count = (d.download_count or 0) + 1
    d.last_accessed_at = datetime.utcnow()
    db.commit()
    db.refresh(d)
    return {"success": True, "data": _serialize_document(d), "message": "Document retrieved successfully"}


@router.get("/{document_id}/download")
def download_document(
    document_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    d = _get_document(db, document_id, resolve_org_id(user))
    if not storage.exists(d.storage_key):
        raise HTTPException(status_code=404, detail="File not found")
    d.download_count = (d.download_count or 0) + 1
    d.last_accessed_at = datetime.utcnow()
    db.commit()
    filename = d.file_name or f"{d.id}"
    stream = storage.open(d.storage_key)
    return StreamingResponse(
        stream,
        media_type=d.mime_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        background=BackgroundTask(stream.close),
    )


@router.put("/{document_id}")
def update_document(document_id: str, payload: DocumentUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    d = _get_document(db, document_id, org_id)
    data = payload.model_dump(exclude_unset=True)
    if "employee_id" in data:
        d.employee_id = _resolve_employee(db, data.pop("employee_id"), org_id)
    if "expiry_date" in data:
        data["expiry_date"] = parse_datetime(data["expiry_date"], "expiryDate")
    if data.get("status") == "archived" and d.status != "archived":
        d.archived_at = datetime.utcnow()
        d.archived_by = user.id
    for key, value in data.items():
        if value is None and key in ("title", "category", "status", "is_confidential"):
            continue
        setattr(d, key, value)
    d.version = (d.version or 1) + 1
    d.updated_by = user.id
    db.commit()
    db.refresh(d)
    create_audit_log(db, "document", d.id, "DOCUMENT_UPDATED", actor=user, organization_id=org_id, changes_json={"fields": sorted(payload.model_dump(exclude_unset=True).keys())})
    return {"success": True, "data": _serialize_document(d), "message": "Document updated successfully"}


@router.delete("/{document_id}")
def delete_document(document_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    d = _get_document(db, document_id, org_id)
    d.status = "archived"
    d.archived_at = datetime.utcnow()
    d.archived_by = user.id
    d.updated_by = user.id
    db.commit()
    create_audit_log(db, "document", d.id, "DOCUMENT_ARCHIVED", actor=user, organization_id=org_id, severity="medium")
    return {"success": True, "message": "Document deleted successfully"}


@router.post("/{document_id}/permissions")
def set_document_permissions(document_id: str, payload: DocumentPermissions, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    d = _get_document(db, document_id, org_id)
    if not isinstance(payload.permissions, list):
        raise HTTPException(status_code=400, detail="Permissions must be an array")
    before = d.access_permissions or []
    d.access_permissions = payload.permissions
    d.updated_by = user.id
    db.commit()
    db.refresh(d)
    create_audit_log(
        db, "document", d.id, "DOCUMENT_PERMISSIONS_UPDATED", actor=user, organization_id=org_id, severity="medium",
        changes_json={"accessPermissions": {"before": before, "after": d.access_permissions}},
    )
    return {"success": True, "data": _serialize_document(d), "message": "Document permissions updated successfully"}
