from backoffice.models.models import AuditLog, Notification


def _create(client, headers, **overrides):
    body = {"title": "Checkout is slow", "description": "Takes 10s to load", "rating": 2, "category": "product"}
    body.update(overrides)
    return client.post("/api/feedback/create", json=body, headers=headers)


def test_create_feedback_defaults(client, member_headers, member, admin, db):
    resp = _create(client, member_headers, tags="speed, checkout")
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    fb = body["feedback"]
    assert fb["status"] == "new"
    assert fb["hasResponse"] is False
    assert fb["tags"] == ["speed", "checkout"]
    assert fb["user"]["id"] == str(member.id)
    assert fb["metadata"]["userAgent"]

    assert db.query(AuditLog).filter(AuditLog.action == "FEEDBACK_CREATED").count() == 1
    notes = db.query(Notification).filter(Notification.user_id == admin.id).all()
    assert [n.template_key for n in notes] == ["feedback_created"]


def test_create_feedback_missing_fields(client, member_headers):
    resp = client.post("/api/feedback/create", json={"title": "Only a title"}, headers=member_headers)
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"].startswith("Missing required fields:")
    assert "description" in body["message"]
    assert "rating" in body["message"]


def test_create_feedback_rating_out_of_range(client, member_headers):
    resp = _create(client, member_headers, rating=6)
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("Invalid value for rating")


def test_list_filters_combine(client, member_headers):
    first = _create(client, member_headers, title="A").json()["feedback"]
    _create(client, member_headers, title="B")
    client.put(f"/api/feedback/{first['id']}", json={"status": "resolved"}, headers=member_headers)

    resp = client.get("/api/feedback/list", params={"status": "resolved"}, headers=member_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert [f["title"] for f in body["feedback"]] == ["A"]
    assert body["pagination"]["total"] == 1

    resp = client.get("/api/feedback/list", params={"sortBy": "title", "sortOrder": "asc"}, headers=member_headers)
    assert [f["title"] for f in resp.json()["feedback"]] == ["A", "B"]


def test_list_rejects_foreign_organization(client, member_headers, other_org):
    resp = client.get("/api/feedback/list", params={"organizationId": str(other_org.id)}, headers=member_headers)
    assert resp.status_code == 403
    assert resp.json()["success"] is False


def test_respond_marks_feedback_responded(client, member_headers, admin_headers):
    fb = _create(client, member_headers).json()["feedback"]
    resp = client.post(
        f"/api/feedback/{fb['id']}/respond",
        json={"response": "We are on it", "responseType": "update"},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["response"]["responseType"] == "update"

    detail = client.get(f"/api/feedback/{fb['id']}", headers=member_headers).json()["feedback"]
    assert detail["status"] == "responded"
    assert detail["hasResponse"] is True
    assert len(detail["responses"]) == 1


def test_bulk_status_counts_only_changed_rows(client, member_headers):
    ids = [_create(client, member_headers, title=t).json()["feedback"]["id"] for t in ("x", "y")]
    client.put(f"/api/feedback/{ids[0]}", json={"status": "closed"}, headers=member_headers)
    resp = client.put("/api/feedback/bulk/status", json={"feedbackIds": ids, "status": "closed"}, headers=member_headers)
    assert resp.status_code == 200
    assert resp.json()["modifiedCount"] == 1


def test_summary(client, member_headers):
    _create(client, member_headers, rating=5, category="support")
    _create(client, member_headers, rating=3, category="support")
    analytics = client.get("/api/feedback/analytics/summary", headers=member_headers).json()["analytics"]
    assert analytics["totalFeedback"] == 2
    assert analytics["averageRating"] == 4.0
    assert analytics["responseRate"] == 0
    assert analytics["byCategory"] == [{"_id": "support", "count": 2}]
    assert [r["_id"] for r in analytics["byRating"]] == [5, 3]


def test_unknown_and_malformed_ids_are_404(client, member_headers):
    assert client.get("/api/feedback/not-a-uuid", headers=member_headers).status_code == 404
    resp = client.delete("/api/feedback/00000000-0000-0000-0000-000000000000", headers=member_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Feedback not found"


def test_requires_authentication(client):
    resp = client.get("/api/feedback/list")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Not authenticated", "error": "Unauthorized"}


def test_feedback_owner_must_belong_to_the_organization(client, member_headers, other_org, user_factory):
    outsider = user_factory("outsider@globex.com", organization=other_org)
    resp = _create(client, member_headers, userId=str(outsider.id))
    assert resp.status_code == 404
    assert resp.json()["message"] == "User not found"


def test_update_audits_changed_fields_only(client, member_headers, db):
    fb = _create(client, member_headers).json()["feedback"]
    client.put(f"/api/feedback/{fb['id']}", json={"priority": "high", "category": "product"}, headers=member_headers)
    audit = db.query(AuditLog).filter(AuditLog.action == "FEEDBACK_UPDATED").one()
    assert audit.changes_json == {"priority": {"before": "medium", "after": "high"}}
