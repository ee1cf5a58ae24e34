import secrets
from datetime import datetime, timedelta
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, get_org_user, require_roles, resolve_org_id
from ..db import get_db
from ..models.models import Affiliate, AffiliateProgram, Commission, Payout, User
from ..schemas.payouts import (
    AffiliateCreate,
    AffiliateProgramCreate,
    CommissionCreate,
    PayoutComplete,
    PayoutCreate,
    PayoutFail,
    PayoutUpdate,
)
from ..services.audit import create_audit_log
from ..services.notifications import notify_org_admins
from ..services.pagination import PageParams, paginate
from ..utils import iso, parse_datetime, parse_uuid, sid, user_brief


router = APIRouter(tags=["payouts"])
logger = structlog.get_logger(__name__)

PAYOUT_STATUSES = ("pending", "processing", "completed", "failed")
TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90}
MAX_COMMISSIONS_PER_PAYOUT = 10


def _serialize_program(p: AffiliateProgram) -> dict:
    return {
        "id": str(p.id),
        "name": p.name,
        "code": p.code,
        "audience": p.audience,
        "cookieDays": p.cookie_days,
        "commissionRuleSet": p.commission_rule_set,
        "minPayout": p.min_payout,
        "payoutWindow": p.payout_window,
        "allowedPayoutMethods": p.allowed_payout_methods or [],
        "isActive": p.is_active,
        "organizationId": sid(p.organization_id),
        "createdAt": iso(p.created_at),
    }


def _serialize_affiliate(a: Affiliate) -> dict:
    return {
        "id": str(a.id),
        "user": user_brief(a.user),
        "programId": sid(a.program_id),
        "trackingCode": a.tracking_code,
        "status": a.status,
        "earnings": {
            "pending": round(a.earnings_pending or 0, 2),
            "paid": round(a.earnings_paid or 0, 2),
            "total": round(a.earnings_total or 0, 2),
        },
        "organizationId": sid(a.organization_id),
        "createdAt": iso(a.created_at),
    }


def _serialize_commission(c: Commission) -> dict:
    return {
        "id": str(c.id),
        "affiliateId": str(c.affiliate_id),
        "amount": c.amount,
        "currency": c.currency,
        "status": c.status,
        "payoutId": sid(c.payout_id),
        "orderRef": c.order_ref,
        "createdAt": iso(c.created_at),
    }


def _serialize_payout(p: Payout) -> dict:
    return {
        "id": str(p.id),
        "affiliateId": str(p.affiliate_id),
        "trackingCode": p.affiliate.tracking_code if p.affiliate else None,
        "amount": p.amount,
        "currency": p.currency,
        "paymentMethod": p.payment_method,
        "paymentDetails": p.payment_details or {},
        "commissionIds": p.commission_ids or [],
        "status": p.status,
        "notes": p.notes,
        "processedAt": iso(p.processed_at),
        "completedAt": iso(p.completed_at),
        "failedAt": iso(p.failed_at),
        "failureReason": p.failure_reason,
        "createdAt": iso(p.created_at),
        "updatedAt": iso(p.updated_at),
    }


def _get_affiliate(db: Session, affiliate_id: str, org_id) -> Affiliate:
    aid = parse_uuid(affiliate_id, not_found="Affiliate")
    a = db.query(Affiliate).filter(Affiliate.id == aid, Affiliate.organization_id == org_id).first()
    if not a:
        raise HTTPException(status_code=404, detail="Affiliate not found")
    return a


def _payouts_in_org(db: Session, org_id):
    return db.query(Payout).join(Affiliate, Payout.affiliate_id == Affiliate.id).filter(Affiliate.organization_id == org_id)


def _get_payout(db: Session, payout_id: str, org_id) -> Payout:
    pid = parse_uuid(payout_id, not_found="Payout")
    p = _payouts_in_org(db, org_id).filter(Payout.id == pid).first()
    if not p:
        raise HTTPException(status_code=404, detail="Payout not found")
    return p


def _require_status(p: Payout, expected: str) -> None:
    if p.status != expected:
        raise HTTPException(status_code=400, detail=f"Payout is not in {expected} status")


# ----- Affiliate programs -----
@router.post("/affiliate-programs", status_code=201)
def create_program(payload: AffiliateProgramCreate, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user, payload.organization_id)
    if db.query(AffiliateProgram).filter(AffiliateProgram.code == payload.code).first():
        raise HTTPException(status_code=400, detail="Program code already exists")
    p = AffiliateProgram(organization_id=org_id, **payload.model_dump(exclude={"organization_id"}))
    db.add(p)
    db.commit()
    db.refresh(p)
    create_audit_log(db, "affiliate_program", p.id, "AFFILIATE_PROGRAM_CREATED", actor=user, organization_id=org_id)
    return {"success": True, "data": _serialize_program(p)}


@router.get("/affiliate-programs")
def list_programs(isActive: Optional[bool] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    org_id = resolve_org_id(user)
    q = db.query(AffiliateProgram).filter(AffiliateProgram.organization_id == org_id)
    if isActive is not None:
        q = q.filter(AffiliateProgram.is_active.is_(isActive))
    return {"success": True, "data": [_serialize_program(p) for p in q.order_by(AffiliateProgram.created_at.desc()).all()]}


# ----- Affiliates -----
@router.post("/affiliates", status_code=201)
def create_affiliate(payload: AffiliateCreate, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user, payload.organization_id)
    user_id = None
    if payload.user_id:
        user_id = get_org_user(db, payload.user_id, org_id).id
        if db.query(Affiliate).filter(Affiliate.user_id == user_id).first():
            raise HTTPException(status_code=400, detail="User is already an affiliate")
    program_id = None
    if payload.program_id:
        program_id = parse_uuid(payload.program_id, "programId")
        if not db.query(AffiliateProgram).filter(AffiliateProgram.id == program_id, AffiliateProgram.organization_id == org_id).first():
            raise HTTPException(status_code=404, detail="Affiliate program not found")
    tracking_code = payload.tracking_code or f"AFF-{secrets.token_hex(4).upper()}"
    if db.query(Affiliate).filter(Affiliate.tracking_code == tracking_code).first():
        raise HTTPException(status_code=400, detail="Tracking code already exists")

    a = Affiliate(
        organization_id=org_id,
        user_id=user_id,
        program_id=program_id,
        tracking_code=tracking_code,
        status="active",
        earnings_pending=0.0,
        earnings_paid=0.0,
        earnings_total=0.0,
    )
    db.add(a)
    db.commit()
    db.refresh(a)
    create_audit_log(db, "affiliate", a.id, "AFFILIATE_CREATED", actor=user, organization_id=org_id, context={"trackingCode": tracking_code})
    return {"success": True, "data": _serialize_affiliate(a)}


@router.get("/affiliates")
def list_affiliates(status: Optional[str] = None, paging: PageParams = Depends(), db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    q = db.query(Affiliate).filter(Affiliate.organization_id == org_id)
    if status:
        q = q.filter(Affiliate.status == status)
    rows, meta = paginate(q.order_by(Affiliate.created_at.desc()), paging)
    return {"success": True, "data": [_serialize_affiliate(a) for a in rows], "pagination": meta}


@router.get("/affiliates/{affiliate_id}")
def get_affiliate(affiliate_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    a = _get_affiliate(db, affiliate_id, resolve_org_id(user))
    return {"success": True, "data": _serialize_affiliate(a)}


@router.post("/affiliates/{affiliate_id}/commissions", status_code=201)
def record_commission(affiliate_id: str, payload: CommissionCreate, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    a = _get_affiliate(db, affiliate_id, org_id)
    c = Commission(
        affiliate_id=a.id,
        amount=payload.amount,
        currency=payload.currency.upper(),
        status=payload.status,
        order_ref=payload.order_ref,
    )
    db.add(c)
    a.earnings_pending = (a.earnings_pending or 0) + payload.amount
    a.earnings_total = (a.earnings_total or 0) + payload.amount
    db.commit()
    db.refresh(c)
    create_audit_log(db, "commission", c.id, "COMMISSION_RECORDED", actor=user, organization_id=org_id, context={"affiliateId": str(a.id), "amount": c.amount})
    return {"success": True, "data": _serialize_commission(c)}


@router.post("/affiliates/{affiliate_id}/payouts", status_code=201)
def create_payout(affiliate_id: str, payload: PayoutCreate, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    a = _get_affiliate(db, affiliate_id, org_id)
    if (a.earnings_pending or 0) < payload.amount:
        raise HTTPException(status_code=400, detail="Insufficient pending earnings")
    program = a.program
    if program is not None:
        if payload.amount < (program.min_payout or 0):
            raise HTTPException(status_code=400, detail=f"Amount is below the minimum payout of {program.min_payout:g}")
        allowed = program.allowed_payout_methods or []
        if allowed and payload.payment_method not in allowed:
            raise HTTPException(status_code=400, detail=f"Payment method must be one of: {', '.join(allowed)}")

    commissions = (
        db.query(Commission)
        .filter(Commission.affiliate_id == a.id, Commission.status == "pending")
        .order_by(Commission.created_at.asc())
        .limit(MAX_COMMISSIONS_PER_PAYOUT)
        .all()
    )
    if not commissions:
        raise HTTPException(status_code=400, detail="No pending commissions found")

    p = Payout(
        affiliate_id=a.id,
        amount=payload.amount,
        currency=payload.currency.upper(),
        payment_method=payload.payment_method,
        payment_details=payload.payment_details,
        commission_ids=[str(c.id) for c in commissions],
        status="pending",
        notes=payload.notes,
    )
    db.add(p)
    db.flush()
    for c in commissions:
        c.status = "paid"
        c.payout_id = p.id
    a.earnings_pending = (a.earnings_pending or 0) - payload.amount
    a.earnings_paid = (a.earnings_paid or 0) + payload.amount
    db.commit()
    db.refresh(p)
    create_audit_log(db, "payout", p.id, "PAYOUT_CREATED", actor=user, organization_id=org_id, severity="medium", context={"amount": p.amount, "commissions": len(commissions)})
    logger.info("payout_created", payout_id=str(p.id), amount=p.amount)
    return {"success": True, "data": _serialize_payout(p)}


@router.get("/affiliates/{affiliate_id}/payouts")
def list_affiliate_payouts(affiliate_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    a = _get_affiliate(db, affiliate_id, resolve_org_id(user))
    rows = db.query(Payout).filter(Payout.affiliate_id == a.id).order_by(Payout.created_at.desc()).all()
    return {"success": True, "results": len(rows), "data": [_serialize_payout(p) for p in rows]}


# ----- Payouts -----
@router.get("/payouts")
def list_payouts(
    status: Optional[str] = None,
    affiliateId: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    paging: PageParams = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    org_id = resolve_org_id(user)
    q = _payouts_in_org(db, org_id)
    if status:
        q = q.filter(Payout.status == status)
    if affiliateId:
        q = q.filter(Payout.affiliate_id == parse_uuid(affiliateId, "affiliateId"))
    start = parse_datetime(startDate, "startDate")
    end = parse_datetime(endDate, "endDate")
    if start:
        q = q.filter(Payout.created_at >= start)
    if end:
        q = q.filter(Payout.created_at <= end)
    rows, meta = paginate(q.order_by(Payout.created_at.desc()), paging)
    return {"success": True, "data": [_serialize_payout(p) for p in rows], "pagination": meta}


@router.get("/payouts/stats")
def payout_stats(
    timeRange: Literal["7d", "30d", "90d"] = "30d",
    affiliateId: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    org_id = resolve_org_id(user)
    since = datetime.utcnow() - timedelta(days=TIME_RANGES[timeRange])
    q = (
        db.query(Payout.status, func.count(Payout.id), func.coalesce(func.sum(Payout.amount), 0))
        .join(Affiliate, Payout.affiliate_id == Affiliate.id)
        .filter(Affiliate.organization_id == org_id, Payout.created_at >= since)
    )
    if affiliateId:
        q = q.filter(Payout.affiliate_id == parse_uuid(affiliateId, "affiliateId"))
    grouped = {status: (count, float(amount)) for status, count, amount in q.group_by(Payout.status).all()}

    stats = {
        "timeRange": timeRange,
        "totalPayouts": sum(count for count, _ in grouped.values()),
        "totalAmount": round(sum(amount for _, amount in grouped.values()), 2),
    }
    for status in PAYOUT_STATUSES:
        count, amount = grouped.get(status, (0, 0.0))
        stats[f"{status}Payouts"] = count
        stats[f"{status}Amount"] = round(amount, 2)
    return {"success": True, "data": stats}


def _my_affiliate(db: Session, user: User) -> Affiliate:
    a = db.query(Affiliate).filter(Affiliate.user_id == user.id).first()
    if not a:
        raise HTTPException(status_code=404, detail="Affiliate account not found")
    return a


@router.get("/payouts/me")
def my_payouts(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = _my_affiliate(db, user)
    rows = db.query(Payout).filter(Payout.affiliate_id == a.id).order_by(Payout.created_at.desc()).all()
    return {"success": True, "data": {"affiliate": _serialize_affiliate(a), "payouts": [_serialize_payout(p) for p in rows]}}


@router.get("/payouts/me/report")
def my_payout_report(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    a = _my_affiliate(db, user)
    q = db.query(Payout).filter(Payout.affiliate_id == a.id)
    start = parse_datetime(startDate, "startDate")
    end = parse_datetime(endDate, "endDate")
    if start:
        q = q.filter(Payout.created_at >= start)
    if end:
        q = q.filter(Payout.created_at <= end)
    rows = q.order_by(Payout.created_at.desc()).all()

    by_status = {status: {"count": 0, "amount": 0.0} for status in PAYOUT_STATUSES}
    for p in rows:
        bucket = by_status.setdefault(p.status, {"count": 0, "amount": 0.0})
        bucket["count"] += 1
        bucket["amount"] = round(bucket["amount"] + p.amount, 2)
    return {
        "success": True,
        "data": {
            "affiliate": _serialize_affiliate(a),
            "period": {"startDate": iso(start), "endDate": iso(end)},
            "summary": {
                "totalPayouts": len(rows),
                "totalAmount": round(sum(p.amount for p in rows), 2),
                "paidAmount": by_status["completed"]["amount"],
                "byStatus": by_status,
            },
            "payouts": [_serialize_payout(p) for p in rows],
        },
    }


@router.get("/payouts/{payout_id}")
def get_payout(payout_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    p = _get_payout(db, payout_id, resolve_org_id(user))
    commissions = db.query(Commission).filter(Commission.payout_id == p.id).all()
    data = _serialize_payout(p)
    data["commissions"] = [_serialize_commission(c) for c in commissions]
    return {"success": True, "data": data}


@router.get("/payouts/{payout_id}/timeline")
def payout_timeline(payout_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    p = _get_payout(db, payout_id, resolve_org_id(user))
    timeline = [{
        "date": iso(p.created_at),
        "event": "Payout Created",
        "details": {"amount": p.amount, "paymentMethod": p.payment_method},
    }]
    if p.processed_at:
        timeline.append({"date": iso(p.processed_at), "event": "Payout Processing Started"})
    if p.status == "completed":
        timeline.append({
            "date": iso(p.completed_at),
            "event": "Payout Completed",
            "details": {"transactionId": (p.payment_details or {}).get("transactionId")},
        })
    elif p.status == "failed":
        timeline.append({"date": iso(p.failed_at), "event": "Payout Failed", "details": {"reason": p.failure_reason}})
    return {"success": True, "data": timeline}


@router.patch("/payouts/{payout_id}")
def update_payout(payout_id: str, payload: PayoutUpdate, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    p = _get_payout(db, payout_id, org_id)
    data = payload.model_dump(exclude_unset=True)
    if "payment_details" in data:
        # transactionId is owned by the completion step
        details = dict(data.pop("payment_details") or {})
        transaction_id = (p.payment_details or {}).get("transactionId")
        if transaction_id:
            details["transactionId"] = transaction_id
        p.payment_details = details
    for key, value in data.items():
        setattr(p, key, value)
    db.commit()
    db.refresh(p)
    create_audit_log(db, "payout", p.id, "PAYOUT_UPDATED", actor=user, organization_id=org_id, changes_json={"fields": sorted(payload.model_dump(exclude_unset=True).keys())})
    return {"success": True, "data": _serialize_payout(p)}


@router.post("/payouts/{payout_id}/process")
def process_payout(payout_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    p = _get_payout(db, payout_id, org_id)
    _require_status(p, "pending")
    p.status = "processing"
    p.processed_at = datetime.utcnow()
    db.commit()
    db.refresh(p)
    create_audit_log(db, "payout", p.id, "PAYOUT_PROCESSING", actor=user, organization_id=org_id, severity="medium")
    logger.info("payout_processing", payout_id=str(p.id))
    return {"success": True, "data": _serialize_payout(p)}


@router.post("/payouts/{payout_id}/complete")
def complete_payout(payout_id: str, payload: PayoutComplete, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    p = _get_payout(db, payout_id, org_id)
    _require_status(p, "processing")
    p.status = "completed"
    p.completed_at = datetime.utcnow()
    p.payment_details = {**(p.payment_details or {}), "transactionId": payload.transaction_id}
    db.commit()
    db.refresh(p)
    create_audit_log(db, "payout", p.id, "PAYOUT_COMPLETED", actor=user, organization_id=org_id, severity="medium", context={"transactionId": payload.transaction_id})
    logger.info("payout_completed", payout_id=str(p.id))
    return {"success": True, "data": _serialize_payout(p)}


@router.post("/payouts/{payout_id}/fail")
def fail_payout(payout_id: str, payload: PayoutFail, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    org_id = resolve_org_id(user)
    p = _get_payout(db, payout_id, org_id)
    _require_status(p, "processing")
    p.status = "failed"
    p.failed_at = datetime.utcnow()
    p.failure_reason = payload.reason or ""

    db.query(Commission).filter(Commission.payout_id == p.id).update(
        {Commission.status: "pending", Commission.payout_id: None}, synchronize_session=False
    )
    a = p.affiliate
    if a is not None:
        a.earnings_pending = (a.earnings_pending or 0) + p.amount
        a.earnings_paid = max((a.earnings_paid or 0) - p.amount, 0.0)
    db.commit()
    db.refresh(p)

    create_audit_log(db, "payout", p.id, "PAYOUT_FAILED", actor=user, organization_id=org_id, severity="high", context={"reason": p.failure_reason})
    notify_org_admins(
        db, org_id,
        title="Payout failed",
        message=f"Payout {p.id} of {p.amount:g} {p.currency} failed: {p.failure_reason or 'no reason given'}",
        template_key="payout_failed",
        payload_json={"payoutId": str(p.id)},
        exclude_user_id=user.id,
    )
    logger.warning("payout_failed", payout_id=str(p.id), reason=p.failure_reason)
    return {"success": True, "data": _serialize_payout(p)}
