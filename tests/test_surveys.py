import pytest

from backoffice.models.models import Notification


QUESTIONS = [
    {"id": "q1", "type": "rating", "question": "How happy are you?", "required": True, "minRating": 1, "maxRating": 5},
    {"id": "q2", "type": "text", "question": "Anything else?"},
]


@pytest.fixture()
def survey(client, admin_headers):
    resp = client.post(
        "/api/surveys/create",
        json={"title": "Pulse", "description": "Monthly pulse survey", "questions": QUESTIONS, "allowAnonymous": True},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    return resp.json()["survey"]


def _publish(client, headers, survey_id):
    resp = client.post(f"/api/surveys/{survey_id}/publish", headers=headers)
    assert resp.status_code == 200
    return resp.json()["survey"]


def test_create_starts_as_draft(survey):
    assert survey["status"] == "draft"
    assert [q["id"] for q in survey["questions"]] == ["q1", "q2"]
    assert survey["settings"]["allowAnonymous"] is True


def test_create_requires_questions(client, admin_headers):
    resp = client.post("/api/surveys/create", json={"title": "Empty", "description": "x", "questions": []}, headers=admin_headers)
    assert resp.status_code == 400


def test_submit_to_draft_survey_rejected(client, member_headers, survey):
    resp = client.post(
        f"/api/surveys/{survey['id']}/responses/submit",
        json={"responses": [{"questionId": "q1", "response": 4}]},
        headers=member_headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Survey is not active"


def test_submit_updates_counts_and_average(client, admin, admin_headers, member_headers, user_factory, headers_for, survey, db):
    _publish(client, admin_headers, survey["id"])
    resp = client.post(
        f"/api/surveys/{survey['id']}/responses/submit",
        json={"responses": [{"questionId": "q1", "response": 4}], "timeSpent": 120},
        headers=member_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["response"]["status"] == "completed"

    other = user_factory("other@acme.com")
    client.post(
        f"/api/surveys/{survey['id']}/responses/submit",
        json={"responses": [{"questionId": "q1", "response": 2}], "timeSpent": 60},
        headers=headers_for(other),
    )

    detail = client.get(f"/api/surveys/{survey['id']}", headers=admin_headers).json()["survey"]
    assert detail["totalResponses"] == 2
    assert detail["completedResponses"] == 2
    assert detail["averageCompletionTime"] == 90

    keys = [n.template_key for n in db.query(Notification).filter(Notification.user_id == admin.id)]
    assert keys.count("survey_response") == 2


def test_duplicate_response_rejected(client, admin_headers, member_headers, survey):
    _publish(client, admin_headers, survey["id"])
    body = {"responses": [{"questionId": "q1", "response": 5}], "isAnonymous": True}
    assert client.post(f"/api/surveys/{survey['id']}/responses/submit", json=body, headers=member_headers).status_code == 201
    resp = client.post(f"/api/surveys/{survey['id']}/responses/submit", json=body, headers=member_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "You have already responded to this survey"


@pytest.mark.parametrize(
    "answers, message",
    [
        ([], "Question 'How happy are you?' is required"),
        ([{"questionId": "q1", "response": 9}], "Rating for 'How happy are you?' must be between 1 and 5"),
        ([{"questionId": "nope", "response": 1}], "Unknown question: nope"),
    ],
)
def test_answer_validation(client, admin_headers, member_headers, survey, answers, message):
    _publish(client, admin_headers, survey["id"])
    resp = client.post(f"/api/surveys/{survey['id']}/responses/submit", json={"responses": answers}, headers=member_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == message


def test_anonymous_response_hides_user(client, admin_headers, member_headers, survey):
    _publish(client, admin_headers, survey["id"])
    client.post(
        f"/api/surveys/{survey['id']}/responses/submit",
        json={"responses": [{"questionId": "q1", "response": 3}], "isAnonymous": True},
        headers=member_headers,
    )
    responses = client.get(f"/api/surveys/{survey['id']}/responses", headers=admin_headers).json()["responses"]
    assert responses[0]["user"] is None
    assert responses[0]["isAnonymous"] is True
