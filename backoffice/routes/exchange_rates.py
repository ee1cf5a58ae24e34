from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles, resolve_org_id
from ..db import get_db
from ..models.models import ExchangeRate, User
from ..schemas.currency import ExchangeRateCreate
from ..services.audit import create_audit_log
from ..services.currency import get_exchange_rate
from ..utils import iso, parse_uuid, sid


router = APIRouter(prefix="/exchange-rates", tags=["exchange-rates"])
logger = structlog.get_logger(__name__)


def _serialize_rate(r: ExchangeRate) -> dict:
    return {
        "id": str(r.id),
        "baseCurrency": r.base_currency,
        "targetCurrency": r.target_currency,
        "rate": r.rate,
        "isCustom": r.is_custom,
        "isGlobal": r.is_global,
        "source": r.source,
        "isActive": r.is_active,
        "cacheExpiry": iso(r.cache_expiry),
        "organizationId": sid(r.organization_id),
        "updatedAt": iso(r.updated_at),
    }


@router.get("")
def list_rates(
    baseCurrency: Optional[str] = None,
    targetCurrency: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user)
    q = db.query(ExchangeRate).filter(
        ExchangeRate.is_active.is_(True),
        or_(ExchangeRate.organization_id == org_id, ExchangeRate.is_global.is_(True)),
    )
    if baseCurrency:
        q = q.filter(ExchangeRate.base_currency == baseCurrency.upper())
    if targetCurrency:
        q = q.filter(ExchangeRate.target_currency == targetCurrency.upper())
    rows = q.order_by(ExchangeRate.base_currency, ExchangeRate.target_currency).all()
    return {"success": True, "data": [_serialize_rate(r) for r in rows]}


@router.post("", status_code=201)
def set_custom_rate(payload: ExchangeRateCreate, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user, payload.organization_id)
    base, target = payload.base_currency.upper(), payload.target_currency.upper()
    if base == target:
        raise HTTPException(status_code=400, detail="Base and target currency must differ")
    r = db.query(ExchangeRate).filter(
        ExchangeRate.organization_id == org_id,
        ExchangeRate.base_currency == base,
        ExchangeRate.target_currency == target,
    ).first()
    if r:
        r.rate = payload.rate
        r.is_active = True
    else:
        r = ExchangeRate(
            organization_id=org_id,
            base_currency=base,
            target_currency=target,
            rate=payload.rate,
            is_custom=True,
            is_global=False,
            source="manual",
            is_active=True,
        )
        db.add(r)
    db.commit()
    db.refresh(r)
    create_audit_log(db, "exchange_rate", r.id, "EXCHANGE_RATE_SET", actor=user, organization_id=org_id, context={"pair": f"{base}/{target}", "rate": r.rate})
    return {"success": True, "data": _serialize_rate(r), "message": "Exchange rate saved successfully"}


@router.delete("/{rate_id}")
def delete_rate(rate_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    rid = parse_uuid(rate_id, not_found="Exchange rate")
    r = db.query(ExchangeRate).filter(ExchangeRate.id == rid, ExchangeRate.organization_id == org_id).first()
    if not r:
        raise HTTPException(status_code=404, detail="Exchange rate not found")
    db.delete(r)
    db.commit()
    create_audit_log(db, "exchange_rate", rid, "EXCHANGE_RATE_DELETED", actor=user, organization_id=org_id, severity="medium")
    return {"success": True, "message": "Exchange rate deleted successfully"}


@router.get("/convert")
def convert(
    amount: float = Query(..., ge=0),
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    org_id = resolve_org_id(user)
    rate = get_exchange_rate(db, from_currency, to_currency, org_id)
    if rate is None:
        raise HTTPException(status_code=404, detail=f"No exchange rate available for {from_currency.upper()}/{to_currency.upper()}")
    return {
        "success": True,
        "data": {
            "amount": amount,
            "from": from_currency.upper(),
            "to": to_currency.upper(),
            "rate": rate,
            "converted": round(amount * rate, 2),
        },
    }
