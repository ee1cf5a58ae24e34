from typing import Literal, Optional, Type

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_org_user, resolve_org_id
from ..db import get_db
from ..models.models import InvoiceTemplate, ReceiptTemplate, User
from ..schemas.templates import (
    InvoiceTemplateCreate,
    InvoiceTemplateUpdate,
    ReceiptTemplateCreate,
    ReceiptTemplateUpdate,
)
from ..services.audit import create_audit_log
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_uuid, sid


router = APIRouter(prefix="/templates", tags=["templates"])
logger = structlog.get_logger(__name__)

TemplateKind = Literal["invoice", "receipt"]

_BASE_DESIGN = {
    "primaryColor": "#1f2937",
    "secondaryColor": "#6b7280",
    "fontFamily": "Helvetica",
    "fontSize": 10,
}

SYSTEM_DEFAULTS = {
    "invoice": [
        {
            "name": "Professional Invoice",
            "templateType": "professional",
            "description": "Clean two-column layout with company header and itemised table",
            "design": _BASE_DESIGN,
            "layout": {"headerPosition": "top", "showLogo": True, "itemTable": "bordered"},
            "content": {"title": "INVOICE", "footer": "Thank you for your business."},
            "fields": {"showTax": True, "showDiscount": True, "showDueDate": True},
        },
        {
            "name": "Minimal Invoice",
            "templateType": "minimal",
            "description": "Single-column invoice with no decoration",
            "design": {**_BASE_DESIGN, "primaryColor": "#000000"},
            "layout": {"headerPosition": "top", "showLogo": False, "itemTable": "plain"},
            "content": {"title": "Invoice", "footer": ""},
            "fields": {"showTax": True, "showDiscount": False, "showDueDate": True},
        },
    ],
    "receipt": [
        {
            "name": "Universal Receipt",
            "templateType": "professional",
            "scenario": "universal",
            "description": "Receipt usable for any payment",
            "design": _BASE_DESIGN,
            "layout": {"headerPosition": "top", "showLogo": True},
            "content": {"title": "RECEIPT", "footer": "Keep this receipt for your records."},
            "fields": {"showPaymentMethod": True, "showTransactionId": True},
        },
        {
            "name": "Order Receipt",
            "templateType": "modern",
            "scenario": "woocommerce_order",
            "description": "Receipt listing the items of a store order",
            "design": {**_BASE_DESIGN, "primaryColor": "#2563eb"},
            "layout": {"headerPosition": "top", "showLogo": True, "itemTable": "striped"},
            "content": {"title": "Order Receipt", "footer": "Thank you for shopping with us."},
            "fields": {"showPaymentMethod": True, "showShipping": True},
        },
        {
            "name": "Subscription Receipt",
            "templateType": "minimal",
            "scenario": "subscription_payment",
            "description": "Receipt for recurring subscription charges",
            "design": _BASE_DESIGN,
            "layout": {"headerPosition": "top", "showLogo": False},
            "content": {"title": "Payment Receipt", "footer": "Your subscription renews automatically."},
            "fields": {"showBillingPeriod": True, "showNextPaymentDate": True},
        },
    ],
}


def _serialize_template(t) -> dict:
    d = {
        "id": str(t.id),
        "name": t.name,
        "description": t.description,
        "templateType": t.template_type,
        "isDefault": t.is_default,
        "isActive": t.is_active,
        "isSystemDefault": t.is_system_default,
        "companyInfo": t.company_info or {},
        "design": t.design or {},
        "layout": t.layout or {},
        "content": t.content or {},
        "fields": t.fields or {},
        "organizationId": sid(t.organization_id),
        "userId": sid(t.user_id),
        "createdBy": sid(t.created_by),
        "updatedBy": sid(t.updated_by),
        "createdAt": iso(t.created_at),
        "updatedAt": iso(t.updated_at),
    }
    if isinstance(t, ReceiptTemplate):
        d["scenario"] = t.scenario
    return d


def _clear_defaults(db: Session, model, org_id, keep_id=None, scenario: Optional[str] = None) -> None:
    """Unset isDefault on every other template of the organization (same scenario for receipts)."""
    q = db.query(model).filter(model.organization_id == org_id, model.is_default.is_(True))
    if keep_id is not None:
        q = q.filter(model.id != keep_id)
    if model is ReceiptTemplate and scenario:
        q = q.filter(model.scenario == scenario)
    for other in q.all():
        other.is_default = False


@router.get("/system-defaults/{kind}")
def system_defaults(kind: TemplateKind, user: User = Depends(get_current_user)):
    return {"success": True, "data": SYSTEM_DEFAULTS[kind]}


@router.get("/defaults/{kind}")
def defaults(kind: TemplateKind, scenario: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    model = InvoiceTemplate if kind == "invoice" else ReceiptTemplate
    q = db.query(model).filter(model.organization_id == org_id, model.is_default.is_(True), model.is_active.is_(True))
    if kind == "receipt" and scenario:
        q = q.filter(model.scenario == scenario)
    org_defaults = [_serialize_template(t) for t in q.all()]
    system = SYSTEM_DEFAULTS[kind]
    if kind == "receipt" and scenario:
        system = [t for t in system if t["scenario"] == scenario]
    return {
        "success": True,
        "data": {
            "systemDefaults": system,
            "organizationDefault": org_defaults[0] if org_defaults else None,
            "organizationDefaults": org_defaults,
        },
    }


def _register(kind: str, model: Type, create_schema: Type, update_schema: Type) -> None:
    """Mount create/list/get/update/delete/set-default for one template kind."""
    label = f"{kind.capitalize()} template"
    action_prefix = f"{kind.upper()}_TEMPLATE"
    entity_type = f"{kind}_template"
    is_receipt = model is ReceiptTemplate

    def _get(db: Session, template_id: str, org_id):
        tid = parse_uuid(template_id, not_found=label)
        t = db.query(model).filter(model.id == tid, model.organization_id == org_id).first()
        if not t:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return t

    def create(payload: create_schema, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
        org_id = resolve_org_id(user, payload.organization_id)
        owner_id = get_org_user(db, payload.user_id, org_id).id
        data = payload.model_dump(exclude={"organization_id", "user_id"}, exclude_none=True)
        t = model(
            organization_id=org_id,
            user_id=owner_id,
            is_system_default=False,
            created_by=user.id,
            updated_by=user.id,
            **data,
        )
        if t.is_default:
            _clear_defaults(db, model, org_id, scenario=getattr(t, "scenario", None) or "universal")
        db.add(t)
        db.commit()
        db.refresh(t)
        create_audit_log(db, entity_type, t.id, f"{action_prefix}_CREATED", actor=user, organization_id=org_id, changes_json={"after": {"name": t.name, "templateType": t.template_type}})
        logger.info("template_created", kind=kind, template_id=str(t.id))
        return {"success": True, "data": _serialize_template(t), "message": f"{label} created successfully"}

    def list_templates(
        isActive: Optional[bool] = None,
        templateType: Optional[str] = None,
        scenario: Optional[str] = None,
        organizationId: Optional[str] = None,
        paging: PageParams = Depends(),
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        org_id = resolve_org_id(user, organizationId)
        q = db.query(model).filter(model.organization_id == org_id)
        if isActive is not None:
            q = q.filter(model.is_active.is_(isActive))
        if templateType:
            q = q.filter(model.template_type == templateType)
        if is_receipt and scenario:
            q = q.filter(model.scenario == scenario)
        rows, meta = paginate(q.order_by(model.is_default.desc(), model.created_at.desc()), paging)
        return {"success": True, "data": [_serialize_template(t) for t in rows], "pagination": meta}

    def get_template(template_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
        t = _get(db, template_id, resolve_org_id(user))
        return {"success": True, "data": _serialize_template(t)}

    def update_template(template_id: str, payload: update_schema, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
        org_id = resolve_org_id(user)
        t = _get(db, template_id, org_id)
        data = payload.model_dump(exclude_unset=True)
        for key, value in data.items():
            if value is None and key in ("name", "template_type", "scenario", "is_default", "is_active"):
                continue
            setattr(t, key, value)
        if t.is_default and (data.get("is_default") or data.get("scenario")):
            _clear_defaults(db, model, org_id, keep_id=t.id, scenario=getattr(t, "scenario", None))
        t.updated_by = user.id
        db.commit()
        db.refresh(t)
        create_audit_log(db, entity_type, t.id, f"{action_prefix}_UPDATED", actor=user, organization_id=org_id, changes_json={"fields": sorted(data.keys())})
        return {"success": True, "data": _serialize_template(t), "message": f"{label} updated successfully"}

    def delete_template(template_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
        org_id = resolve_org_id(user)
        t = _get(db, template_id, org_id)
        if t.is_system_default:
            raise HTTPException(status_code=400, detail="System default templates cannot be deleted")
        tid = t.id
        db.delete(t)
        db.commit()
        create_audit_log(db, entity_type, tid, f"{action_prefix}_DELETED", actor=user, organization_id=org_id, severity="medium")
        return {"success": True, "message": f"{label} deleted successfully"}

    def set_default(template_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
        org_id = resolve_org_id(user)
        t = _get(db, template_id, org_id)
        _clear_defaults(db, model, org_id, keep_id=t.id, scenario=getattr(t, "scenario", None))
        t.is_default = True
        t.updated_by = user.id
        db.commit()
        db.refresh(t)
        create_audit_log(db, entity_type, t.id, f"{action_prefix}_SET_DEFAULT", actor=user, organization_id=org_id)
        return {"success": True, "data": _serialize_template(t), "message": f"{label} set as default"}

    router.add_api_route(f"/{kind}/create", create, methods=["POST"], status_code=201, name=f"create_{kind}_template")
    router.add_api_route(f"/{kind}/list", list_templates, methods=["GET"], name=f"list_{kind}_templates")
    router.add_api_route(f"/{kind}/{{template_id}}", get_template, methods=["GET"], name=f"get_{kind}_template")
    router.add_api_route(f"/{kind}/{{template_id}}", update_template, methods=["PUT"], name=f"update_{kind}_template")
    router.add_api_route(f"/{kind}/{{template_id}}", delete_template, methods=["DELETE"], name=f"delete_{kind}_template")
    router.add_api_route(f"/{kind}/{{template_id}}/set-default", set_default, methods=["PUT", "POST"], name=f"set_default_{kind}_template")


_register("invoice", InvoiceTemplate, InvoiceTemplateCreate, InvoiceTemplateUpdate)
_register("receipt", ReceiptTemplate, ReceiptTemplateCreate, ReceiptTemplateUpdate)
