from backoffice.models.models import AuditLog


def _create(client, headers, org, user, kind="invoice", **fields):
    body = {"name": "Standard", "organizationId": str(org.id), "userId": str(user.id), **fields}
    resp = client.post(f"/api/templates/{kind}/create", json=body, headers=headers)
    assert resp.status_code == 201, resp.json()
    return resp.json()["data"]


def test_create_requires_owner_fields(client, admin_headers):
    resp = client.post("/api/templates/invoice/create", json={"name": "No owner"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing required fields: organizationId, userId"


def test_invoice_template_type_validated(client, admin_headers, org, admin):
    body = {"name": "Bad", "organizationId": str(org.id), "userId": str(admin.id), "templateType": "creative"}
    resp = client.post("/api/templates/invoice/create", json=body, headers=admin_headers)
    assert resp.status_code == 400


def test_single_default_per_organization(client, admin_headers, org, admin):
    first = _create(client, admin_headers, org, admin, isDefault=True)
    second = _create(client, admin_headers, org, admin, name="Modern", templateType="modern", isDefault=True)
    assert second["isDefault"] is True

    listing = client.get("/api/templates/invoice/list", headers=admin_headers).json()["data"]
    defaults = [t["id"] for t in listing if t["isDefault"]]
    assert defaults == [second["id"]]

    client.put(f"/api/templates/invoice/{first['id']}/set-default", headers=admin_headers)
    listing = client.get("/api/templates/invoice/list", headers=admin_headers).json()["data"]
    assert [t["id"] for t in listing if t["isDefault"]] == [first["id"]]


def test_receipt_defaults_are_per_scenario(client, admin_headers, org, admin):
    universal = _create(client, admin_headers, org, admin, kind="receipt", isDefault=True)
    order = _create(client, admin_headers, org, admin, kind="receipt", name="Orders", scenario="woocommerce_order", isDefault=True)

    listing = client.get("/api/templates/receipt/list", headers=admin_headers).json()["data"]
    assert {t["id"] for t in listing if t["isDefault"]} == {universal["id"], order["id"]}

    filtered = client.get("/api/templates/receipt/list", params={"scenario": "woocommerce_order"}, headers=admin_headers).json()["data"]
    assert [t["id"] for t in filtered] == [order["id"]]


def test_update_and_delete_are_audited(client, admin_headers, org, admin, db):
    t = _create(client, admin_headers, org, admin)
    updated = client.put(f"/api/templates/invoice/{t['id']}", json={"design": {"primaryColor": "#000"}}, headers=admin_headers)
    assert updated.json()["data"]["design"] == {"primaryColor": "#000"}
    assert client.delete(f"/api/templates/invoice/{t['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/templates/invoice/{t['id']}", headers=admin_headers).status_code == 404

    actions = {a.action for a in db.query(AuditLog).filter(AuditLog.entity_type == "invoice_template")}
    assert actions == {"INVOICE_TEMPLATE_CREATED", "INVOICE_TEMPLATE_UPDATED", "INVOICE_TEMPLATE_DELETED"}


def test_system_and_org_defaults(client, admin_headers, org, admin):
    system = client.get("/api/templates/system-defaults/receipt", headers=admin_headers).json()["data"]
    assert {t["scenario"] for t in system} == {"universal", "woocommerce_order", "subscription_payment"}

    mine = _create(client, admin_headers, org, admin, isDefault=True)
    defaults = client.get("/api/templates/defaults/invoice", headers=admin_headers).json()["data"]
    assert defaults["organizationDefault"]["id"] == mine["id"]
    assert len(defaults["systemDefaults"]) == 2


def test_unknown_kind_rejected(client, admin_headers):
    assert client.get("/api/templates/system-defaults/quote", headers=admin_headers).status_code == 400


def test_moving_a_default_receipt_keeps_one_default_per_scenario(client, admin_headers, org, admin):
    universal = _create(client, admin_headers, org, admin, kind="receipt", isDefault=True)
    order = _create(client, admin_headers, org, admin, kind="receipt", name="Orders", scenario="woocommerce_order", isDefault=True)

    moved = client.put(f"/api/templates/receipt/{universal['id']}", json={"scenario": "woocommerce_order"}, headers=admin_headers)
    assert moved.status_code == 200

    listing = client.get("/api/templates/receipt/list", params={"scenario": "woocommerce_order"}, headers=admin_headers).json()["data"]
    assert [t["id"] for t in listing if t["isDefault"]] == [universal["id"]]
    assert {t["id"] for t in listing} == {universal["id"], order["id"]}


def test_owner_must_exist_in_the_organization(client, admin_headers, org, other_org, user_factory):
    body = {"name": "Ghost", "organizationId": str(org.id), "userId": "00000000-0000-0000-0000-000000000000"}
    resp = client.post("/api/templates/invoice/create", json=body, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "User not found"

    outsider = user_factory("outsider@globex.com", organization=other_org)
    body["userId"] = str(outsider.id)
    assert client.post("/api/templates/invoice/create", json=body, headers=admin_headers).status_code == 404
