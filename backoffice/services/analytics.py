"""
Commerce analytics.

Each metric is an independent query over an organization's orders, customers
and inventory. Money values are converted to the caller's display currency.
"""
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import Customer, InventoryItem, Order, OrderLineItem
from .currency import convert_currency, summarize_by_currency


PERIODS = ("day", "week", "month", "quarter", "year", "all")
EXCLUDED_STATUSES = ("cancelled", "refunded")
CART_STATUSES = ("draft", "pending", "completed")


def get_date_range(period: Optional[str], now: Optional[datetime] = None) -> Optional[Tuple[datetime, datetime]]:
    """Start/end of a reporting period; None means no date filter."""
    if not period or period == "all":
        return None
    now = now or datetime.utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        return midnight, now
    if period == "week":
        return midnight - timedelta(days=6), now
    if period == "month":
        return midnight.replace(day=1), now
    if period == "quarter":
        quarter_month = (now.month - 1) // 3 * 3 + 1
        return midnight.replace(month=quarter_month, day=1), now
    if period == "year":
        return midnight.replace(month=1, day=1), now
    return None


def _orders(db: Session, organization_id: uuid.UUID, period: Optional[str], revenue_only: bool = True):
    query = db.query(Order).filter(Order.organization_id == organization_id)
    return _scope(query, period, revenue_only)


def _scope(query, period: Optional[str], revenue_only: bool = True):
    date_range = get_date_range(period)
    if date_range:
        query = query.filter(Order.date_created >= date_range[0], Order.date_created <= date_range[1])
    if revenue_only:
        query = query.filter(Order.status.notin_(EXCLUDED_STATUSES))
    return query


def total_revenue(db: Session, organization_id: uuid.UUID, period: Optional[str], currency: str) -> Dict:
    query = db.query(Order.currency, func.sum(Order.total)).filter(Order.organization_id == organization_id)
    rows = _scope(query, period).group_by(Order.currency).all()
    totals = {(cur or "USD").upper(): float(amount or 0) for cur, amount in rows}
    summary = summarize_by_currency(db, totals, currency, organization_id)
    return {
        "totalRevenue": summary["totalConverted"],
        "currency": summary["targetCurrency"],
        "currencyBreakdown": summary["currencyBreakdown"],
    }


def _product_sales(db: Session, organization_id: uuid.UUID, period: Optional[str], currency: str) -> List[Dict]:
    query = (
        db.query(
            InventoryItem.id,
            InventoryItem.name,
            Order.currency,
            func.sum(OrderLineItem.subtotal),
            func.sum(OrderLineItem.quantity),
        )
        .join(Order, OrderLineItem.order_id == Order.id)
        .join(InventoryItem, OrderLineItem.inventory_item_id == InventoryItem.id)
        .filter(Order.organization_id == organization_id)
    )
    rows = _scope(query, period).group_by(InventoryItem.id, InventoryItem.name, Order.currency).all()

    products: Dict[str, Dict] = {}
    for item_id, name, order_currency, sales, quantity in rows:
        key = str(item_id)
        entry = products.setdefault(key, {
            "productId": key,
            "name": name,
            "sales": 0.0,
            "quantity": 0,
            "originalSales": {},
            "currency": currency,
        })
        order_currency = (order_currency or "USD").upper()
        entry["originalSales"][order_currency] = round(entry["originalSales"].get(order_currency, 0) + float(sales or 0), 2)
        entry["sales"] = round(entry["sales"] + convert_currency(db, sales or 0, order_currency, currency, organization_id), 2)
        entry["quantity"] += int(quantity or 0)
    return list(products.values())


def revenue_by_product(db: Session, organization_id: uuid.UUID, period: Optional[str], currency: str) -> List[Dict]:
    return sorted(_product_sales(db, organization_id, period, currency), key=lambda p: p["sales"], reverse=True)


def best_sellers(db: Session, organization_id: uuid.UUID, period: Optional[str], currency: str, limit: int = 10) -> List[Dict]:
    products = sorted(_product_sales(db, organization_id, period, currency), key=lambda p: p["quantity"], reverse=True)
    return products[:limit]


def order_status_distribution(db: Session, organization_id: uuid.UUID, period: Optional[str]) -> List[Dict]:
    query = db.query(Order.status, func.count(Order.id)).filter(Order.organization_id == organization_id)
    rows = _scope(query, period, revenue_only=False).group_by(Order.status).all()
    return sorted(({"status": status, "count": count} for status, count in rows), key=lambda r: r["count"], reverse=True)


def new_vs_returning(db: Session, organization_id: uuid.UUID, period: Optional[str]) -> Dict:
    customer_ids = {
        cid for (cid,) in _scope(
            db.query(Order.customer_id).filter(Order.organization_id == organization_id, Order.customer_id.isnot(None)),
            period,
        ).distinct().all()
    }
    if not customer_ids:
        return {"new": 0, "returning": 0}

    first_orders = (
        db.query(Order.customer_id, func.min(Order.date_created))
        .filter(Order.organization_id == organization_id, Order.customer_id.in_(customer_ids))
        .group_by(Order.customer_id)
        .all()
    )
    date_range = get_date_range(period)
    start = date_range[0] if date_range else datetime.min
    end = date_range[1] if date_range else datetime.max
    new = sum(1 for _, first in first_orders if first is not None and start <= first.replace(tzinfo=None) <= end)
    return {"new": new, "returning": len(first_orders) - new}


def acquisition_sources(db: Session, organization_id: uuid.UUID, period: Optional[str]) -> List[Dict]:
    orders = (
        _orders(db, organization_id, period)
        .filter(Order.customer_id.isnot(None))
        .order_by(Order.date_created.asc())
        .all()
    )
    first_source: Dict[uuid.UUID, str] = {}
    for order in orders:
        first_source.setdefault(order.customer_id, order.created_via or "Direct")

    counts: Dict[str, int] = {}
    for source in first_source.values():
        counts[source] = counts.get(source, 0) + 1
    total = sum(counts.values())
    return [
        {"source": source, "customers": customers, "percentage": round(customers / total * 100) if total else 0}
        for source, customers in sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    ]


def customer_lifetime_value(db: Session, organization_id: uuid.UUID, period: Optional[str], currency: str) -> Dict:
    query = db.query(Order.customer_id, Order.currency, func.sum(Order.total)).filter(
        Order.organization_id == organization_id, Order.customer_id.isnot(None)
    )
    rows = _scope(query, period).group_by(Order.customer_id, Order.currency).all()

    spent: Dict[uuid.UUID, float] = {}
    for customer_id, order_currency, amount in rows:
        converted = convert_currency(db, amount or 0, order_currency or "USD", currency, organization_id)
        spent[customer_id] = spent.get(customer_id, 0.0) + converted

    customer_count = len(spent)
    average = sum(spent.values()) / customer_count if customer_count else 0
    return {"lifetimeValue": round(average, 2), "currency": currency, "customerCount": customer_count}


def repeat_purchase_rate(db: Session, organization_id: uuid.UUID, period: Optional[str]) -> Dict:
    query = db.query(Order.customer_id, func.count(Order.id)).filter(
        Order.organization_id == organization_id, Order.customer_id.isnot(None)
    )
    rows = _scope(query, period).group_by(Order.customer_id).all()
    repeaters = sum(1 for _, count in rows if count > 1)
    rate = (repeaters / len(rows) * 100) if rows else 0
    return {"repeatPurchaseRate": f"{rate:.1f}", "repeatCustomers": repeaters, "totalCustomers": len(rows)}


def retention_cohort(db: Session, organization_id: uuid.UUID, months: int = 6, now: Optional[datetime] = None) -> List[Dict]:
    """Orders per calendar month for the last ``months`` months, oldest first."""
    now = now or datetime.utcnow()
    keys = []
    year, month = now.year, now.month
    for _ in range(months):
        keys.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    keys.reverse()

    oldest = datetime(keys[0][0], keys[0][1], 1)
    dates = (
        db.query(Order.date_created)
        .filter(
            Order.organization_id == organization_id,
            Order.status.notin_(EXCLUDED_STATUSES),
            Order.date_created >= oldest,
        )
        .all()
    )
    counts: Dict[Tuple[int, int], int] = {}
    for (created,) in dates:
        counts[(created.year, created.month)] = counts.get((created.year, created.month), 0) + 1
    return [{"cohort": f"{y}-{m}", "orders": counts.get((y, m), 0)} for y, m in keys]


def _address_with_city(*candidates) -> Optional[Dict]:
    for address in candidates:
        if address and address.get("city"):
            return address
    return None


def geographic_distribution(db: Session, organization_id: uuid.UUID, period: Optional[str]) -> List[Dict]:
    customers = db.query(Customer).filter(
        Customer.organization_id == organization_id, Customer.is_paying_customer.is_(True)
    ).all()

    regions: Dict[str, Dict] = {}
    for customer in customers:
        address = _address_with_city(customer.shipping, customer.billing)
        if address is None:
            latest = (
                _scope(
                    db.query(Order).filter(Order.organization_id == organization_id, Order.customer_id == customer.id),
                    period,
                    revenue_only=False,
                )
                .order_by(Order.date_created.desc())
                .first()
            )
            if latest:
                address = _address_with_city(latest.shipping, latest.billing)
        if address is None:
            continue
        city = address.get("city") or "Unknown"
        state = address.get("state") or "Unknown"
        country = address.get("country") or "Unknown"
        key = f"{city}|{state}|{country}"
        region = regions.setdefault(key, {"city": city, "state": state, "country": country, "customers": 0})
        region["customers"] += 1
    return sorted(regions.values(), key=lambda r: r["customers"], reverse=True)


def low_stock(db: Session, organization_id: uuid.UUID, threshold: int = 10) -> List[Dict]:
    items = (
        db.query(InventoryItem)
        .filter(
            InventoryItem.organization_id == organization_id,
            InventoryItem.stock_quantity <= threshold,
            InventoryItem.status == "publish",
        )
        .order_by(InventoryItem.stock_quantity.asc())
        .all()
    )
    return [{"id": str(i.id), "name": i.name, "sku": i.sku, "stockQuantity": i.stock_quantity} for i in items]


def abandoned_cart_rate(db: Session, organization_id: uuid.UUID, period: Optional[str]) -> Dict:
    base = _scope(db.query(Order).filter(Order.organization_id == organization_id), period, revenue_only=False)
    total_carts = base.filter(Order.status.in_(CART_STATUSES)).count()
    completed = base.filter(Order.status == "completed").count()
    abandoned = total_carts - completed
    rate = (abandoned / total_carts * 100) if total_carts else 0
    return {"abandoned": abandoned, "totalCarts": total_carts, "rate": f"{rate:.1f}"}
