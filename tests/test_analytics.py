from datetime import datetime, timedelta

import pytest

from backoffice.models.models import ExchangeRate, Order
from backoffice.services.analytics import get_date_range, retention_cohort


BASE = "/api/analytics/advanced"


def _post(client, headers, path, body):
    resp = client.post(f"/api/commerce/{path}", json=body, headers=headers)
    assert resp.status_code == 201, resp.json()
    return resp.json()["data"]


@pytest.fixture()
def shop(client, admin_headers, db, org):
    db.add(ExchangeRate(organization_id=org.id, base_currency="EUR", target_currency="USD", rate=2.0, is_custom=True))
    db.commit()

    widget = _post(client, admin_headers, "inventory", {"name": "Widget", "sku": "W-1", "stockQuantity": 3})
    gadget = _post(client, admin_headers, "inventory", {"name": "Gadget", "stockQuantity": 50})
    _post(client, admin_headers, "inventory", {"name": "Prototype", "stockQuantity": 1, "status": "draft"})

    alice = _post(client, admin_headers, "customers", {
        "name": "Alice", "email": "alice@shop.com", "isPayingCustomer": True,
        "shipping": {"city": "Lagos", "state": "LA", "country": "NG"},
    })
    bob = _post(client, admin_headers, "customers", {"name": "Bob", "isPayingCustomer": True})
    _post(client, admin_headers, "customers", {"name": "Carol"})

    def order(customer, status, items, currency="USD", **extra):
        body = {
            "customerId": customer["id"],
            "status": status,
            "currency": currency,
            "lineItems": [{"inventoryItemId": i["id"], "quantity": q, "subtotal": s} for i, q, s in items],
            **extra,
        }
        return _post(client, admin_headers, "orders", body)

    order(alice, "completed", [(widget, 2, 20)], createdVia="checkout")
    order(alice, "completed", [(gadget, 1, 30)])
    order(bob, "cancelled", [(gadget, 5, 100)])
    order(bob, "pending", [(widget, 1, 10)], currency="EUR", billing={"city": "Abuja", "country": "NG"})
    return {"widget": widget, "gadget": gadget}


def _get(client, headers, path, **params):
    resp = client.get(f"{BASE}/{path}", params={"period": "all", **params}, headers=headers)
    assert resp.status_code == 200, resp.json()
    return resp.json()


def test_order_total_defaults_to_line_items(client, admin_headers, shop):
    orders = client.get("/api/commerce/orders", params={"status": "cancelled"}, headers=admin_headers).json()["data"]
    assert orders[0]["total"] == 100
    assert orders[0]["lineItems"][0]["name"] == "Gadget"


def test_order_rejects_foreign_inventory(client, admin_headers):
    body = {"lineItems": [{"inventoryItemId": "00000000-0000-0000-0000-000000000000", "subtotal": 1}]}
    resp = client.post("/api/commerce/orders", json=body, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Inventory item not found"


def test_total_revenue_converts_currencies(client, admin_headers, shop):
    body = _get(client, admin_headers, "sales/total-revenue")
    assert body["currency"] == "USD"
    assert body["data"]["totalRevenue"] == 70.0
    breakdown = {b["currency"]: b["convertedAmount"] for b in body["data"]["currencyBreakdown"]}
    assert breakdown == {"EUR": 20.0, "USD": 50.0}

    in_euros = _get(client, admin_headers, "sales/total-revenue", displayCurrency="EUR")
    assert in_euros["data"]["totalRevenue"] == 35.0


def test_period_defaults_to_all_time(client, admin_headers, shop, db):
    for o in db.query(Order).all():
        o.date_created = datetime.utcnow() - timedelta(days=400)
    db.commit()

    resp = client.get(f"{BASE}/sales/total-revenue", headers=admin_headers).json()
    assert resp["period"] == "all"
    assert resp["data"]["totalRevenue"] == 70.0


def test_product_metrics(client, admin_headers, shop):
    by_revenue = _get(client, admin_headers, "sales/revenue-by-product")["data"]
    assert [(p["name"], p["sales"]) for p in by_revenue] == [("Widget", 40.0), ("Gadget", 30.0)]
    assert by_revenue[0]["originalSales"] == {"USD": 20.0, "EUR": 10.0}

    best = _get(client, admin_headers, "products/best-sellers", limit=1)["data"]
    assert [(p["name"], p["quantity"]) for p in best] == [("Widget", 3)]

    low = client.get(f"{BASE}/products/low-stock", params={"threshold": 10}, headers=admin_headers).json()
    assert [i["name"] for i in low["data"]] == ["Widget"]
    assert low["threshold"] == 10


def test_customer_metrics(client, admin_headers, shop):
    statuses = _get(client, admin_headers, "sales/order-status-distribution")["data"]
    assert statuses[0] == {"status": "completed", "count": 2}
    assert sum(s["count"] for s in statuses) == 4

    repeat = _get(client, admin_headers, "customers/repeat-purchase-rate")["data"]
    assert repeat == {"repeatPurchaseRate": "50.0", "repeatCustomers": 1, "totalCustomers": 2}

    ltv = _get(client, admin_headers, "customers/lifetime-value")["data"]
    assert ltv["lifetimeValue"] == 35.0
    assert ltv["customerCount"] == 2

    sources = _get(client, admin_headers, "customers/acquisition-sources")["data"]
    assert {s["source"]: s["percentage"] for s in sources} == {"checkout": 50, "Direct": 50}

    regions = _get(client, admin_headers, "customers/geographic-distribution")["data"]
    assert {r["city"] for r in regions} == {"Lagos", "Abuja"}

    funnel = _get(client, admin_headers, "funnel/abandoned-cart-rate")["data"]
    assert funnel == {"abandoned": 1, "totalCarts": 3, "rate": "33.3"}


def test_new_vs_returning(client, admin_headers, org, db):
    alice = _post(client, admin_headers, "customers", {"name": "Alice"})
    bob = _post(client, admin_headers, "customers", {"name": "Bob"})
    long_ago = (datetime.utcnow() - timedelta(days=400)).isoformat()
    _post(client, admin_headers, "orders", {"customerId": alice["id"], "status": "completed", "total": 5, "dateCreated": long_ago})
    _post(client, admin_headers, "orders", {"customerId": alice["id"], "status": "completed", "total": 5})
    _post(client, admin_headers, "orders", {"customerId": bob["id"], "status": "completed", "total": 5})

    data = client.get(f"{BASE}/customers/new-vs-returning", params={"period": "month"}, headers=admin_headers).json()["data"]
    assert data == {"new": 1, "returning": 1}


def test_retention_cohort_counts_by_month(db, org):
    for when in (datetime(2023, 12, 1), datetime(2024, 1, 10), datetime(2024, 3, 1)):
        db.add(Order(organization_id=org.id, status="completed", total=1, date_created=when))
    db.add(Order(organization_id=org.id, status="refunded", total=1, date_created=datetime(2024, 3, 2)))
    db.commit()

    cohort = retention_cohort(db, org.id, months=3, now=datetime(2024, 3, 15))
    assert cohort == [
        {"cohort": "2024-1", "orders": 1},
        {"cohort": "2024-2", "orders": 0},
        {"cohort": "2024-3", "orders": 1},
    ]


@pytest.mark.parametrize(
    "period, start",
    [
        ("day", datetime(2024, 5, 15)),
        ("week", datetime(2024, 5, 9)),
        ("month", datetime(2024, 5, 1)),
        ("quarter", datetime(2024, 4, 1)),
        ("year", datetime(2024, 1, 1)),
    ],
)
def test_date_ranges(period, start):
    now = datetime(2024, 5, 15, 13, 30)
    assert get_date_range(period, now) == (start, now)


def test_all_period_has_no_range():
    assert get_date_range("all") is None


def test_invalid_period_rejected(client, admin_headers):
    resp = client.get(f"{BASE}/sales/total-revenue", params={"period": "decade"}, headers=admin_headers)
    assert resp.status_code == 400
