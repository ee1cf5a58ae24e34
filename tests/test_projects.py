from backoffice.models.models import AuditLog


def _create(client, headers, owner, **fields):
    body = {"name": "Website relaunch", "owner": str(owner.id), **fields}
    resp = client.post("/api/projects", json=body, headers=headers)
    assert resp.status_code == 201, resp.json()
    return resp.json()["data"]


def test_create_project_with_members(client, admin_headers, admin, member, db):
    project = _create(
        client, admin_headers, admin,
        members=[str(member.id), str(member.id)],
        startDate="2024-02-01",
    )
    assert project["status"] == "active"
    assert project["owner"]["email"] == admin.email
    assert [m["id"] for m in project["members"]] == [str(member.id)]
    assert project["startDate"].startswith("2024-02-01")

    audit = db.query(AuditLog).filter(AuditLog.entity_type == "project").one()
    assert audit.action == "PROJECT_CREATED"


def test_create_requires_owner(client, admin_headers):
    resp = client.post("/api/projects", json={"name": "No owner"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing required fields: owner"


def test_unknown_owner(client, admin_headers):
    resp = client.post(
        "/api/projects",
        json={"name": "Ghost", "owner": "00000000-0000-0000-0000-000000000000"},
        headers=admin_headers,
    )
    assert resp.status_code == 404
    assert resp.json()["message"] == "Owner not found"


def test_update_and_filter(client, admin_headers, admin, member):
    project = _create(client, admin_headers, admin)
    _create(client, admin_headers, admin, name="Other")
    updated = client.put(
        f"/api/projects/{project['id']}",
        json={"status": "on_hold", "owner": str(member.id)},
        headers=admin_headers,
    ).json()["data"]
    assert updated["status"] == "on_hold"
    assert updated["owner"]["id"] == str(member.id)

    held = client.get("/api/projects", params={"status": "on_hold"}, headers=admin_headers).json()["data"]
    assert [p["id"] for p in held] == [project["id"]]

    cleared = client.put(f"/api/projects/{project['id']}", json={"owner": None}, headers=admin_headers)
    assert cleared.status_code == 400


def test_delete_and_isolation(client, admin_headers, admin, other_org, user_factory, headers_for):
    project = _create(client, admin_headers, admin)
    outsider = user_factory("outsider@globex.com", organization=other_org)
    assert client.get(f"/api/projects/{project['id']}", headers=headers_for(outsider)).status_code == 404

    assert client.delete(f"/api/projects/{project['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/projects/{project['id']}", headers=admin_headers).status_code == 404
    assert client.get("/api/projects/not-a-uuid", headers=admin_headers).json()["message"] == "Project not found"


def test_owner_and_members_must_belong_to_the_organization(client, admin_headers, admin, other_org, user_factory):
    outsider = user_factory("outsider@globex.com", organization=other_org)
    resp = client.post("/api/projects", json={"name": "Leak", "owner": str(outsider.id)}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Owner not found"

    resp = client.post(
        "/api/projects",
        json={"name": "Leak", "owner": str(admin.id), "members": [str(outsider.id)]},
        headers=admin_headers,
    )
    assert resp.status_code == 404
    assert resp.json()["message"] == "Member not found"

    project = _create(client, admin_headers, admin)
    resp = client.put(f"/api/projects/{project['id']}", json={"owner": str(outsider.id)}, headers=admin_headers)
    assert resp.status_code == 404


def test_null_name_and_status_are_ignored_on_update(client, admin_headers, admin, db):
    project = _create(client, admin_headers, admin)
    resp = client.put(
        f"/api/projects/{project['id']}",
        json={"name": None, "status": None, "description": "Phase two"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    updated = resp.json()["data"]
    assert updated["name"] == "Website relaunch"
    assert updated["status"] == "active"

    audit = db.query(AuditLog).filter(AuditLog.action == "PROJECT_UPDATED").one()
    assert audit.changes_json == {"description": {"before": None, "after": "Phase two"}}
