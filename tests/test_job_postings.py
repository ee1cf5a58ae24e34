from datetime import datetime, timedelta

import pytest


POSTING = {
    "title": "Backend Engineer",
    "department": "Engineering",
    "location": "Lagos",
    "employmentType": "full_time",
    "experienceLevel": "mid",
    "description": "Build and run our APIs",
    "skills": ["python", "sql"],
    "salaryRange": {"min": 100000, "max": 200000},
}


@pytest.fixture()
def posting(client, admin_headers):
    resp = client.post("/api/job-postings", json=POSTING, headers=admin_headers)
    assert resp.status_code == 201
    return resp.json()["data"]


def test_create_defaults_to_draft(posting):
    assert posting["status"] == "draft"
    assert posting["publishedAt"] is None
    assert posting["salaryRange"] == {"min": 100000, "max": 200000, "currency": "NGN"}


def test_salary_range_bounds_validated(client, admin_headers):
    body = dict(POSTING, salaryRange={"min": 5, "max": 1})
    resp = client.post("/api/job-postings", json=body, headers=admin_headers)
    assert resp.status_code == 400
    assert "Minimum salary cannot exceed maximum salary" in resp.json()["message"]


def test_apply_requires_published_posting(client, member_headers, posting):
    resp = client.post(f"/api/job-postings/{posting['id']}/apply", json={"coverLetter": "Hi"}, headers=member_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Job posting is not accepting applications"


def test_apply_flow(client, admin_headers, member_headers, posting):
    published = client.post(f"/api/job-postings/{posting['id']}/publish", json={}, headers=admin_headers).json()["data"]
    assert published["status"] == "published"
    assert published["publishedAt"] is not None

    resp = client.post(f"/api/job-postings/{posting['id']}/apply", json={"coverLetter": "Hi"}, headers=member_headers)
    assert resp.status_code == 201
    application = resp.json()["data"]
    assert application["status"] == "applied"

    again = client.post(f"/api/job-postings/{posting['id']}/apply", json={}, headers=member_headers)
    assert again.status_code == 400
    assert again.json()["message"] == "You have already applied for this position"

    patched = client.patch(
        f"/api/job-postings/{posting['id']}/applications/{application['id']}",
        json={"status": "shortlisted", "notes": "Strong CV"},
        headers=admin_headers,
    )
    assert patched.json()["data"]["status"] == "shortlisted"

    detail = client.get(f"/api/job-postings/{posting['id']}", headers=admin_headers).json()["data"]
    assert detail["applicationCount"] == 1
    assert detail["viewCount"] == 1


def test_apply_after_deadline(client, admin_headers, member_headers):
    body = dict(POSTING, status="published", applicationDeadline=(datetime.utcnow() - timedelta(days=1)).isoformat())
    posting = client.post("/api/job-postings", json=body, headers=admin_headers).json()["data"]
    resp = client.post(f"/api/job-postings/{posting['id']}/apply", json={}, headers=member_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Application deadline has passed"


def test_list_puts_urgent_first(client, admin_headers):
    client.post("/api/job-postings", json=dict(POSTING, title="Calm"), headers=admin_headers)
    client.post("/api/job-postings", json=dict(POSTING, title="Urgent", isUrgent=True), headers=admin_headers)
    resp = client.get("/api/job-postings", headers=admin_headers).json()
    assert [p["title"] for p in resp["data"]] == ["Urgent", "Calm"]
    assert resp["pagination"]["total"] == 2


def test_close_posting(client, admin_headers, posting):
    resp = client.post(f"/api/job-postings/{posting['id']}/close", headers=admin_headers)
    assert resp.json()["data"]["status"] == "closed"
