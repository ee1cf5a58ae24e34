from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, resolve_org_id
from ..db import get_db
from ..models.models import Customer, InventoryItem, Order, OrderLineItem, User
from ..schemas.commerce import CustomerCreate, InventoryItemCreate, OrderCreate
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_datetime, parse_uuid, sid


router = APIRouter(prefix="/commerce", tags=["commerce"])
logger = structlog.get_logger(__name__)


def _serialize_customer(c: Customer) -> dict:
    return {
        "id": str(c.id),
        "name": c.name,
        "email": c.email,
        "isPayingCustomer": c.is_paying_customer,
        "billing": c.billing,
        "shipping": c.shipping,
        "organizationId": sid(c.organization_id),
        "createdAt": iso(c.created_at),
    }


def _serialize_item(i: InventoryItem) -> dict:
    return {
        "id": str(i.id),
        "name": i.name,
        "sku": i.sku,
        "price": i.price,
        "stockQuantity": i.stock_quantity,
        "status": i.status,
        "organizationId": sid(i.organization_id),
        "createdAt": iso(i.created_at),
    }


def _serialize_order(o: Order) -> dict:
    return {
        "id": str(o.id),
        "customerId": sid(o.customer_id),
        "status": o.status,
        "currency": o.currency,
        "total": o.total,
        "createdVia": o.created_via,
        "billing": o.billing,
        "shipping": o.shipping,
        "dateCreated": iso(o.date_created),
        "lineItems": [
            {
                "id": str(li.id),
                "inventoryItemId": sid(li.inventory_item_id),
                "name": li.inventory_item.name if li.inventory_item else None,
                "quantity": li.quantity,
                "subtotal": li.subtotal,
            }
            for li in o.line_items
        ],
        "organizationId": sid(o.organization_id),
    }


def _address(model) -> Optional[dict]:
    return model.model_dump(exclude_none=True) if model else None


@router.post("/customers", status_code=201)
def create_customer(payload: CustomerCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    c = Customer(
        organization_id=org_id,
        name=payload.name,
        email=payload.email,
        is_paying_customer=payload.is_paying_customer,
        billing=_address(payload.billing),
        shipping=_address(payload.shipping),
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return {"success": True, "data": _serialize_customer(c)}


@router.get("/customers")
def list_customers(paging: PageParams = Depends(), db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    q = db.query(Customer).filter(Customer.organization_id == resolve_org_id(user)).order_by(Customer.created_at.desc())
    rows, meta = paginate(q, paging)
    return {"success": True, "data": [_serialize_customer(c) for c in rows], "pagination": meta}


@router.post("/inventory", status_code=201)
def create_inventory_item(payload: InventoryItemCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    i = InventoryItem(organization_id=org_id, **payload.model_dump(exclude={"organization_id"}))
    db.add(i)
    db.commit()
    db.refresh(i)
    return {"success": True, "data": _serialize_item(i)}


@router.get("/inventory")
def list_inventory(status: Optional[str] = None, paging: PageParams = Depends(), db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    q = db.query(InventoryItem).filter(InventoryItem.organization_id == resolve_org_id(user))
    if status:
        q = q.filter(InventoryItem.status == status)
    rows, meta = paginate(q.order_by(InventoryItem.name.asc()), paging)
    return {"success": True, "data": [_serialize_item(i) for i in rows], "pagination": meta}


@router.post("/orders", status_code=201)
def create_order(payload: OrderCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user, payload.organization_id)
    customer_id = None
    if payload.customer_id:
        customer_id = parse_uuid(payload.customer_id, "customerId")
        if not db.query(Customer).filter(Customer.id == customer_id, Customer.organization_id == org_id).first():
            raise HTTPException(status_code=404, detail="Customer not found")

    line_items = []
    for entry in payload.line_items:
        item_id = parse_uuid(entry.inventory_item_id, "inventoryItemId")
        if not db.query(InventoryItem).filter(InventoryItem.id == item_id, InventoryItem.organization_id == org_id).first():
            raise HTTPException(status_code=404, detail="Inventory item not found")
        line_items.append(OrderLineItem(inventory_item_id=item_id, quantity=entry.quantity, subtotal=entry.subtotal))

    total = payload.total if payload.total is not None else round(sum(li.subtotal for li in line_items), 2)
    o = Order(
        organization_id=org_id,
        customer_id=customer_id,
        status=payload.status,
        currency=payload.currency.upper(),
        total=total,
        created_via=payload.created_via,
        billing=_address(payload.billing),
        shipping=_address(payload.shipping),
        line_items=line_items,
    )
    if payload.date_created:
        o.date_created = parse_datetime(payload.date_created, "dateCreated")
    db.add(o)
    db.commit()
    db.refresh(o)
    logger.info("order_recorded", order_id=str(o.id), status=o.status, total=o.total)
    return {"success": True, "data": _serialize_order(o)}


@router.get("/orders")
def list_orders(
    status: Optional[str] = None,
    customerId: Optional[str] = None,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = db.query(Order).filter(Order.organization_id == resolve_org_id(user))
    if status:
        q = q.filter(Order.status == status)
    if customerId:
        q = q.filter(Order.customer_id == parse_uuid(customerId, "customerId"))
    rows, meta = paginate(q.order_by(Order.date_created.desc()), paging)
    return {"success": True, "data": [_serialize_order(o) for o in rows], "pagination": meta}
