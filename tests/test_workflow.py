import pytest

from backoffice.services.workflow_engine import evaluate_conditions, execute_action, seed_default_rules


@pytest.fixture()
def default_rules(db):
    assert seed_default_rules(db) == 4
    return db


@pytest.mark.parametrize(
    "conditions, data, context, expected",
    [
        ({"department": "any"}, {}, {}, True),
        ({"leaveDays": {"min": 1, "max": 3}}, {"leaveDays": 2}, {}, True),
        ({"leaveDays": {"min": 1, "max": 3}}, {"leaveDays": 5}, {}, False),
        ({"leaveDays": {"min": 4}}, {"leaveDays": 10}, {}, True),
        ({"leaveDays": {"min": 4}}, {}, {}, False),
        ({"leaveDays": {"max": 3}}, {"leaveDays": "two"}, {}, False),
        ({"reviewType": "annual"}, {}, {"reviewType": "annual"}, True),
        ({"reviewType": "annual"}, {"reviewType": "quarterly"}, {}, False),
        ({"amount": {"min": "lots"}}, {"amount": 10}, {}, False),
    ],
)
def test_evaluate_conditions(conditions, data, context, expected):
    assert evaluate_conditions(conditions, data, context) is expected


def test_unknown_action_reports_failure():
    result = execute_action({"type": "launch_rocket"}, {}, {})
    assert result["success"] is False
    assert "launch_rocket" in result["message"]


def test_seed_is_idempotent(default_rules):
    assert seed_default_rules(default_rules) == 0


def test_short_leave_auto_approved(client, member_headers, default_rules):
    resp = client.post(
        "/api/workflow/trigger",
        json={"event": "leave_request_submitted", "data": {"leaveDays": 2, "department": "Sales"}},
        headers=member_headers,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["triggeredRules"] == 1
    instance = data["instances"][0]
    assert instance["ruleName"] == "Leave Request Approval"
    assert instance["actions"][0]["status"] == "completed"
    assert instance["escalation"]["escalateTo"] == "hr-manager"


def test_long_leave_needs_approval(client, member_headers, admin_headers, default_rules):
    trigger = client.post(
        "/api/workflow/trigger",
        json={"event": "leave_request_submitted", "data": {"leaveDays": 6}},
        headers=member_headers,
    ).json()["data"]
    instance = trigger["instances"][0]
    assert instance["ruleName"] == "Long Leave Request"
    action = instance["actions"][0]
    assert action["status"] == "pending"
    assert instance["status"] == "active"

    missing = client.post(
        "/api/workflow/approve",
        json={"instanceId": instance["id"], "actionId": "nope"},
        headers=admin_headers,
    )
    assert missing.status_code == 404
    assert missing.json()["message"] == "Action not found"

    approved = client.post(
        "/api/workflow/approve",
        json={"instanceId": instance["id"], "actionId": action["id"], "notes": "Enjoy"},
        headers=admin_headers,
    ).json()["data"]
    assert approved["action"]["status"] == "approved"
    assert approved["instance"]["status"] == "completed"


def test_reject_and_escalate(client, admin_headers, default_rules):
    instance = client.post(
        "/api/workflow/trigger",
        json={"event": "leave_request_submitted", "data": {"leaveDays": 9}},
        headers=admin_headers,
    ).json()["data"]["instances"][0]
    rejected = client.post(
        "/api/workflow/reject",
        json={"instanceId": instance["id"], "actionId": instance["actions"][0]["id"]},
        headers=admin_headers,
    ).json()["data"]
    assert rejected["action"]["status"] == "rejected"

    other = client.post(
        "/api/workflow/trigger",
        json={"event": "leave_request_submitted", "data": {"leaveDays": 5}},
        headers=admin_headers,
    ).json()["data"]["instances"][0]
    escalated = client.post("/api/workflow/escalate", json={"instanceId": other["id"], "reason": "Too slow"}, headers=admin_headers).json()["data"]
    assert escalated["status"] == "escalated"
    assert escalated["escalation"]["escalateTo"] == "super-admin"
    assert escalated["escalation"]["reason"] == "Too slow"


def test_escalate_without_escalation(client, admin_headers, default_rules):
    instance = client.post(
        "/api/workflow/trigger",
        json={"event": "training_completed", "data": {"trainingType": "mandatory"}},
        headers=admin_headers,
    ).json()["data"]["instances"][0]
    assert [a["action"]["type"] for a in instance["actions"]] == ["notify_hr", "update_compliance"]
    resp = client.post("/api/workflow/escalate", json={"instanceId": instance["id"]}, headers=admin_headers)
    assert resp.status_code == 400


def test_trigger_requires_event_and_data(client, admin_headers):
    resp = client.post("/api/workflow/trigger", json={}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Missing required fields: event, data"


def test_custom_rule_and_instances_listing(client, admin_headers, default_rules):
    rule = client.post(
        "/api/workflow/rules",
        json={
            "name": "Big expense",
            "module": "finance",
            "event": "expense_submitted",
            "conditions": {"amount": {"min": 1000}},
            "actions": [{"type": "require_approval", "approver": "finance-manager"}],
            "escalation": {"enabled": True, "timeLimit": 12, "escalateTo": "cfo"},
        },
        headers=admin_headers,
    )
    assert rule.status_code == 201
    assert rule.json()["data"]["escalation"] == {"enabled": True, "timeLimit": 12, "escalateTo": "cfo"}

    client.post("/api/workflow/trigger", json={"event": "expense_submitted", "data": {"amount": 5000}}, headers=admin_headers)
    client.post("/api/workflow/trigger", json={"event": "expense_submitted", "data": {"amount": 10}}, headers=admin_headers)

    listing = client.get("/api/workflow/instances", params={"module": "finance", "limit": 1}, headers=admin_headers).json()
    assert listing["pagination"]["total"] == 1
    assert listing["pagination"]["hasNextPage"] is False

    rules = client.get("/api/workflow/rules", params={"module": "finance"}, headers=admin_headers).json()["data"]
    assert [r["name"] for r in rules] == ["Big expense"]

    analytics = client.get("/api/workflow/analytics", params={"period": "7d"}, headers=admin_headers).json()["data"]
    assert analytics["summary"]["totalInstances"] == 1
    assert analytics["byModule"] == {"finance": 1}


def test_members_cannot_create_rules(client, member_headers):
    resp = client.post(
        "/api/workflow/rules",
        json={"name": "x", "module": "hr", "event": "e", "conditions": {}, "actions": [{"type": "notify_hr"}]},
        headers=member_headers,
    )
    assert resp.status_code == 403


def test_range_bounds_must_be_numeric(client, admin_headers, db):
    resp = client.post(
        "/api/workflow/rules",
        json={"name": "Big spend", "module": "finance", "event": "expense_submitted", "conditions": {"amount": {"min": "lots"}}, "actions": [{"type": "notify_hr"}]},
        headers=admin_headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Range bounds for amount must be numeric"
    assert client.get("/api/workflow/rules", params={"module": "finance"}, headers=admin_headers).json()["data"] == []
