import uuid

from backoffice.models.models import AuditLog
from backoffice.services.audit import compute_diff, create_audit_log, verify_audit_log


def test_entry_is_hashed_and_verifiable(db, org, admin):
    entry = create_audit_log(
        db, "payout", uuid.uuid4(), "PAYOUT_FAILED",
        actor=admin, severity="high", changes_json={"status": {"before": "processing", "after": "failed"}},
    )
    assert entry.organization_id == org.id
    assert entry.actor_role == "admin"
    assert len(entry.integrity_hash) == 64
    assert verify_audit_log(entry) is True

    entry.changes_json = {"status": {"before": "processing", "after": "completed"}}
    assert verify_audit_log(entry) is False


def test_unknown_severity_falls_back_to_low(db, org):
    entry = create_audit_log(db, "system", "boot", "SYSTEM_STARTED", organization_id=org.id, severity="apocalyptic", source="system")
    assert entry.severity == "low"
    assert entry.actor_id is None


def test_compute_diff():
    diff = compute_diff({"title": "Old", "rating": 3, "gone": 1}, {"title": "New", "rating": 3, "added": True})
    assert diff == {
        "title": {"before": "Old", "after": "New"},
        "gone": {"before": 1, "after": None},
        "added": {"before": None, "after": True},
    }


def test_audit_log_route_filters(client, db, org, admin, admin_headers, member_headers):
    target = uuid.uuid4()
    create_audit_log(db, "feedback", target, "FEEDBACK_CREATED", actor=admin)
    create_audit_log(db, "feedback", target, "FEEDBACK_RESPONDED", actor=admin)
    create_audit_log(db, "survey", uuid.uuid4(), "SURVEY_CREATED", actor=admin)

    resp = client.get("/api/audit-logs", params={"entityType": "feedback", "limit": 1}, headers=admin_headers).json()
    assert resp["pagination"]["total"] == 2
    assert resp["pagination"]["hasNextPage"] is True
    assert resp["data"][0]["action"] == "FEEDBACK_RESPONDED"
    assert resp["data"][0]["verified"] is True

    by_entity = client.get("/api/audit-logs", params={"entityId": str(target), "action": "FEEDBACK_CREATED"}, headers=admin_headers).json()
    assert [e["action"] for e in by_entity["data"]] == ["FEEDBACK_CREATED"]

    assert client.get("/api/audit-logs", headers=member_headers).status_code == 403


def test_audit_log_route_is_tenant_scoped(client, db, org, other_org, admin_headers):
    create_audit_log(db, "project", uuid.uuid4(), "PROJECT_CREATED", organization_id=other_org.id)
    assert db.query(AuditLog).count() == 1
    resp = client.get("/api/audit-logs", headers=admin_headers).json()
    assert resp["data"] == []
