"""
Currency conversion service.

Rates are resolved in this order:
    1. same currency -> 1
    2. organization custom rate
    3. reverse organization rate (1 / rate)
    4. global cached rate that has not expired
    5. external rates API (result cached as a global rate)
    6. expired global rate
When nothing is found the amount is returned unchanged.
"""
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import httpx
import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import ExchangeRate, Organization, User


logger = structlog.get_logger(__name__)


class ExchangeRateClient:
    """Client for the public latest-rates endpoint."""

    def __init__(self, url_template: Optional[str] = None, timeout: Optional[float] = None):
        self.url_template = url_template or settings.exchange_rate_api_url
        self.timeout = timeout or settings.exchange_rate_timeout_s

    def latest(self, base: str) -> Dict[str, float]:
        url = self.url_template.format(base=base.upper())
        with httpx.Client(timeout=self.timeout) as client:
            response = client.get(url)
            response.raise_for_status()
            payload = response.json()
        rates = payload.get("rates") or payload.get("conversion_rates") or {}
        return {k.upper(): float(v) for k, v in rates.items()}


def _norm(code: Optional[str]) -> Optional[str]:
    return code.strip().upper() if code else None


def get_display_currency(
    db: Session,
    user_id: Optional[uuid.UUID] = None,
    organization_id: Optional[uuid.UUID] = None,
) -> str:
    """User preference, then the organization's analytics then default currency, then USD."""
    if user_id:
        user = db.query(User).filter(User.id == user_id).first()
        if user and user.display_currency:
            return user.display_currency.upper()
    if organization_id:
        org = db.query(Organization).filter(Organization.id == organization_id).first()
        if org:
            if org.analytics_currency:
                return org.analytics_currency.upper()
            if org.default_currency:
                return org.default_currency.upper()
    return settings.default_currency


def _active_pair(db: Session, base: str, target: str):
    return db.query(ExchangeRate).filter(
        ExchangeRate.base_currency == base,
        ExchangeRate.target_currency == target,
        ExchangeRate.is_active.is_(True),
    )


def _fetch_and_cache(db: Session, base: str, target: str, client: Optional[ExchangeRateClient]) -> Optional[float]:
    if not settings.exchange_rate_api_enabled:
        return None
    client = client or ExchangeRateClient()
    try:
        rates = client.latest(base)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("exchange_rate_fetch_failed", base=base, target=target, error=str(exc))
        return None
    rate = rates.get(target)
    if rate is None:
        return None

    expiry = datetime.utcnow() + timedelta(hours=settings.exchange_rate_ttl_hours)
    cached = _active_pair(db, base, target).filter(
        ExchangeRate.is_global.is_(True), ExchangeRate.organization_id.is_(None)
    ).first()
    if cached:
        cached.rate = rate
        cached.cache_expiry = expiry
        cached.source = "api"
    else:
        db.add(ExchangeRate(
            base_currency=base,
            target_currency=target,
            rate=rate,
            is_global=True,
            is_custom=False,
            source="api",
            cache_expiry=expiry,
        ))
    db.commit()
    return rate


def get_exchange_rate(
    db: Session,
    from_currency: str,
    to_currency: str,
    organization_id: Optional[uuid.UUID] = None,
    client: Optional[ExchangeRateClient] = None,
) -> Optional[float]:
    base, target = _norm(from_currency), _norm(to_currency)
    if not base or not target:
        return None
    if base == target:
        return 1.0

    if organization_id:
        org_rate = _active_pair(db, base, target).filter(ExchangeRate.organization_id == organization_id).first()
        if org_rate:
            return org_rate.rate
        reverse = _active_pair(db, target, base).filter(ExchangeRate.organization_id == organization_id).first()
        if reverse and reverse.rate:
            return 1.0 / reverse.rate

    now = datetime.utcnow()
    global_rates = _active_pair(db, base, target).filter(ExchangeRate.is_global.is_(True))
    fresh = global_rates.filter(or_(ExchangeRate.cache_expiry.is_(None), ExchangeRate.cache_expiry > now)).first()
    if fresh:
        return fresh.rate

    fetched = _fetch_and_cache(db, base, target, client)
    if fetched is not None:
        return fetched

    stale = global_rates.order_by(ExchangeRate.updated_at.desc()).first()
    if stale:
        logger.info("exchange_rate_stale_used", base=base, target=target)
        return stale.rate
    return None


def convert_currency(
    db: Session,
    amount: float,
    from_currency: Optional[str],
    to_currency: str,
    organization_id: Optional[uuid.UUID] = None,
    client: Optional[ExchangeRateClient] = None,
) -> float:
    amount = float(amount or 0)
    rate = get_exchange_rate(db, from_currency or settings.default_currency, to_currency, organization_id, client)
    if rate is None:
        logger.warning("exchange_rate_missing", base=from_currency, target=to_currency)
        return amount
    return round(amount * rate, 2)


def summarize_by_currency(
    db: Session,
    totals: Dict[str, float],
    to_currency: str,
    organization_id: Optional[uuid.UUID] = None,
) -> Dict:
    """Convert per-currency totals and keep the breakdown for display."""
    breakdown: List[Dict] = []
    converted_total = 0.0
    for currency, amount in sorted(totals.items()):
        converted = convert_currency(db, amount, currency, to_currency, organization_id)
        converted_total += converted
        breakdown.append({
            "currency": currency,
            "originalAmount": round(amount, 2),
            "convertedAmount": converted,
        })
    return {
        "totalConverted": round(converted_total, 2),
        "targetCurrency": to_currency,
        "currencyBreakdown": breakdown,
    }
