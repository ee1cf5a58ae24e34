from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, resolve_org_id
from ..db import get_db
from ..models.models import User
from ..services import analytics as metrics
from ..services.currency import get_display_currency


router = APIRouter(prefix="/analytics/advanced", tags=["analytics"])
logger = structlog.get_logger(__name__)

Period = Literal["day", "week", "month", "quarter", "year", "all"]


class AnalyticsScope:
    """Organization, period and display currency shared by every metric."""

    def __init__(
        self,
        period: Period = "all",
        organizationId: Optional[str] = None,
        displayCurrency: Optional[str] = Query(None, min_length=3, max_length=3),
        db: Session = Depends(get_db),
        user: User = Depends(get_current_user),
    ):
        self.db = db
        self.period = period
        self.organization_id = resolve_org_id(user, organizationId)
        self.currency = (displayCurrency or get_display_currency(db, user.id, self.organization_id)).upper()


def _envelope(data, scope: AnalyticsScope, with_currency: bool = False) -> dict:
    out = {"success": True, "data": data, "period": scope.period}
    if with_currency:
        out["currency"] = scope.currency
    return out


@router.get("/sales/total-revenue")
def total_revenue(scope: AnalyticsScope = Depends()):
    data = metrics.total_revenue(scope.db, scope.organization_id, scope.period, scope.currency)
    return _envelope(data, scope, with_currency=True)


@router.get("/sales/revenue-by-product")
def revenue_by_product(scope: AnalyticsScope = Depends()):
    data = metrics.revenue_by_product(scope.db, scope.organization_id, scope.period, scope.currency)
    return _envelope(data, scope, with_currency=True)


@router.get("/sales/order-status-distribution")
def order_status_distribution(scope: AnalyticsScope = Depends()):
    return _envelope(metrics.order_status_distribution(scope.db, scope.organization_id, scope.period), scope)


@router.get("/customers/new-vs-returning")
def new_vs_returning(scope: AnalyticsScope = Depends()):
    return _envelope(metrics.new_vs_returning(scope.db, scope.organization_id, scope.period), scope)


@router.get("/customers/acquisition-sources")
def acquisition_sources(scope: AnalyticsScope = Depends()):
    return _envelope(metrics.acquisition_sources(scope.db, scope.organization_id, scope.period), scope)


@router.get("/customers/lifetime-value")
def lifetime_value(scope: AnalyticsScope = Depends()):
    data = metrics.customer_lifetime_value(scope.db, scope.organization_id, scope.period, scope.currency)
    return _envelope(data, scope, with_currency=True)


@router.get("/customers/repeat-purchase-rate")
def repeat_purchase_rate(scope: AnalyticsScope = Depends()):
    return _envelope(metrics.repeat_purchase_rate(scope.db, scope.organization_id, scope.period), scope)


@router.get("/customers/retention-cohort")
def retention_cohort(months: int = Query(6, ge=1, le=24), scope: AnalyticsScope = Depends()):
    return _envelope(metrics.retention_cohort(scope.db, scope.organization_id, months=months), scope)


@router.get("/customers/geographic-distribution")
def geographic_distribution(scope: AnalyticsScope = Depends()):
    return _envelope(metrics.geographic_distribution(scope.db, scope.organization_id, scope.period), scope)


@router.get("/products/best-sellers")
def best_sellers(limit: int = Query(10, ge=1, le=100), scope: AnalyticsScope = Depends()):
    data = metrics.best_sellers(scope.db, scope.organization_id, scope.period, scope.currency, limit=limit)
    return _envelope(data, scope, with_currency=True)


@router.get("/products/low-stock")
def low_stock(threshold: int = Query(10, ge=0), scope: AnalyticsScope = Depends()):
    data = metrics.low_stock(scope.db, scope.organization_id, threshold=threshold)
    return {"success": True, "data": data, "threshold": threshold}


@router.get("/funnel/abandoned-cart-rate")
def abandoned_cart_rate(scope: AnalyticsScope = Depends()):
    return _envelope(metrics.abandoned_cart_rate(scope.db, scope.organization_id, scope.period), scope)
