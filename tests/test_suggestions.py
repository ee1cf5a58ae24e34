def _create(client, headers, title="Dark mode"):
    resp = client.post(
        "/api/suggestions/create",
        json={"title": title, "description": "Please add a dark theme", "category": "Feature"},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json()["suggestion"]


def test_create_suggestion(client, member_headers):
    s = _create(client, member_headers)
    assert s["status"] == "new"
    assert s["votes"]["upvotes"] == 0
    assert s["votes"]["downvotes"] == 0


def test_same_vote_twice_does_not_change_tally(client, member_headers):
    s = _create(client, member_headers)
    first = client.post(f"/api/suggestions/{s['id']}/vote", json={"vote": "upvote"}, headers=member_headers)
    second = client.post(f"/api/suggestions/{s['id']}/vote", json={"vote": "upvote"}, headers=member_headers)
    assert first.json()["data"] == {"upvotes": 1, "downvotes": 0, "userVote": "upvote"}
    assert second.status_code == 200
    assert second.json()["data"] == {"upvotes": 1, "downvotes": 0, "userVote": "upvote"}
    assert second.json()["message"] == "Vote already recorded"


def test_opposite_vote_flips_tally(client, member_headers, admin_headers):
    s = _create(client, member_headers)
    client.post(f"/api/suggestions/{s['id']}/vote", json={"vote": "upvote"}, headers=member_headers)
    client.post(f"/api/suggestions/{s['id']}/vote", json={"vote": "upvote"}, headers=admin_headers)
    resp = client.post(f"/api/suggestions/{s['id']}/vote", json={"vote": "downvote"}, headers=member_headers)
    assert resp.json()["data"] == {"upvotes": 1, "downvotes": 1, "userVote": "downvote"}

    detail = client.get(f"/api/suggestions/{s['id']}", headers=member_headers).json()["suggestion"]
    assert detail["score"] == 0
    assert len(detail["votes"]["voters"]) == 2


def test_invalid_vote_type(client, member_headers):
    s = _create(client, member_headers)
    resp = client.post(f"/api/suggestions/{s['id']}/vote", json={"vote": "sideways"}, headers=member_headers)
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("Invalid value for vote")


def test_retract_vote(client, member_headers):
    s = _create(client, member_headers)
    assert client.delete(f"/api/suggestions/{s['id']}/vote", headers=member_headers).status_code == 404
    client.post(f"/api/suggestions/{s['id']}/vote", json={"vote": "downvote"}, headers=member_headers)
    resp = client.delete(f"/api/suggestions/{s['id']}/vote", headers=member_headers)
    assert resp.json()["data"] == {"upvotes": 0, "downvotes": 0, "userVote": None}


def test_comments(client, member_headers):
    s = _create(client, member_headers)
    blank = client.post(f"/api/suggestions/{s['id']}/comment", json={"content": "   "}, headers=member_headers)
    assert blank.status_code == 400
    assert blank.json()["message"] == "Comment content is required"

    resp = client.post(f"/api/suggestions/{s['id']}/comment", json={"content": "+1 from me"}, headers=member_headers)
    assert resp.status_code == 201
    listing = client.get(f"/api/suggestions/{s['id']}/comments", headers=member_headers).json()
    assert [c["content"] for c in listing["comments"]] == ["+1 from me"]
    assert listing["pagination"]["total"] == 1


def test_list_sorted_by_votes(client, member_headers):
    low = _create(client, member_headers, title="Low")
    high = _create(client, member_headers, title="High")
    client.post(f"/api/suggestions/{high['id']}/vote", json={"vote": "upvote"}, headers=member_headers)
    client.post(f"/api/suggestions/{low['id']}/vote", json={"vote": "downvote"}, headers=member_headers)
    resp = client.get("/api/suggestions/list", params={"sortBy": "votes"}, headers=member_headers)
    assert [s["title"] for s in resp.json()["suggestions"]] == ["High", "Low"]


def test_assignee_must_belong_to_the_organization(client, member_headers, admin, other_org, user_factory):
    s = _create(client, member_headers)
    outsider = user_factory("outsider@globex.com", organization=other_org)
    resp = client.put(f"/api/suggestions/{s['id']}", json={"assignedTo": str(outsider.id)}, headers=member_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Assignee not found"

    assigned = client.put(f"/api/suggestions/{s['id']}", json={"assignedTo": str(admin.id)}, headers=member_headers)
    assert assigned.json()["suggestion"]["assignedTo"] == str(admin.id)
