from fastapi.testclient import TestClient

from backoffice.main import create_app


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_request_id_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


def test_login_and_me(client, admin):
    resp = client.post("/auth/login", json={"email": "ADMIN@acme.com", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["email"] == "admin@acme.com"
    assert me["roles"] == ["admin"]


def test_login_rejects_bad_password(client, admin):
    resp = client.post("/auth/login", json={"email": "admin@acme.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Invalid credentials", "error": "Unauthorized"}


def test_invalid_token(client):
    resp = client.get("/api/projects", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid token"


def test_inactive_user_rejected(client, member, member_headers, db):
    member.is_active = False
    db.commit()
    resp = client.get("/api/projects", headers=member_headers)
    assert resp.status_code == 401
    assert resp.json()["message"] == "User not active"


def test_foreign_organization_forbidden(client, member_headers, other_org):
    resp = client.get("/api/projects", params={"organizationId": str(other_org.id)}, headers=member_headers)
    assert resp.status_code == 403


def test_super_admin_reaches_other_organizations(client, user_factory, headers_for, other_org):
    root = user_factory("root@acme.com", roles=("super-admin",))
    resp = client.get("/api/projects", params={"organizationId": str(other_org.id)}, headers=headers_for(root))
    assert resp.status_code == 200
    assert client.get("/api/audit-logs", headers=headers_for(root)).status_code == 200


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Not Found", "error": "Not Found"}


def test_unhandled_errors_become_500():
    app = create_app()

    def boom():
        raise RuntimeError("kaboom")

    app.add_api_route("/boom", boom)
    resp = TestClient(app, raise_server_exceptions=False).get("/boom")
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "kaboom", "error": "Internal server error"}
