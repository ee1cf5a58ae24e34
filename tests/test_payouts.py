import pytest

from backoffice.models.models import AffiliateProgram, Commission


@pytest.fixture()
def program(client, admin_headers):
    resp = client.post(
        "/api/affiliate-programs",
        json={"name": "Partners", "code": "PARTNERS", "minPayout": 1000, "allowedPayoutMethods": ["bank_transfer"]},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    return resp.json()["data"]


@pytest.fixture()
def affiliate(client, admin_headers, member, program):
    resp = client.post(
        "/api/affiliates",
        json={"userId": str(member.id), "programId": program["id"]},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    return resp.json()["data"]


def _commission(client, headers, affiliate_id, amount):
    resp = client.post(f"/api/affiliates/{affiliate_id}/commissions", json={"amount": amount}, headers=headers)
    assert resp.status_code == 201
    return resp.json()["data"]


def _payout(client, headers, affiliate_id, amount, method="bank_transfer"):
    return client.post(
        f"/api/affiliates/{affiliate_id}/payouts",
        json={"amount": amount, "paymentMethod": method, "paymentDetails": {"account": "0123"}},
        headers=headers,
    )


def test_affiliate_gets_tracking_code(affiliate):
    assert affiliate["trackingCode"].startswith("AFF-")
    assert affiliate["earnings"] == {"pending": 0, "paid": 0, "total": 0}


def test_duplicate_program_code(client, admin_headers, program):
    resp = client.post("/api/affiliate-programs", json={"name": "Again", "code": "PARTNERS"}, headers=admin_headers)
    assert resp.status_code == 400


def test_commission_adds_pending_earnings(client, admin_headers, affiliate):
    _commission(client, admin_headers, affiliate["id"], 1500)
    detail = client.get(f"/api/affiliates/{affiliate['id']}", headers=admin_headers).json()["data"]
    assert detail["earnings"] == {"pending": 1500, "paid": 0, "total": 1500}


def test_payout_checks(client, admin_headers, affiliate):
    resp = _payout(client, admin_headers, affiliate["id"], 2000)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Insufficient pending earnings"

    _commission(client, admin_headers, affiliate["id"], 3000)
    below = _payout(client, admin_headers, affiliate["id"], 500)
    assert below.status_code == 400
    assert "minimum payout" in below.json()["message"]

    wrong_method = _payout(client, admin_headers, affiliate["id"], 1500, method="crypto")
    assert wrong_method.status_code == 400
    assert wrong_method.json()["message"] == "Payment method must be one of: bank_transfer"

    missing = _payout(client, admin_headers, "00000000-0000-0000-0000-000000000000", 1500)
    assert missing.status_code == 404


def test_no_pending_commissions(client, admin_headers, affiliate, db):
    _commission(client, admin_headers, affiliate["id"], 3000)
    db.query(Commission).update({Commission.status: "approved"})
    db.commit()
    resp = _payout(client, admin_headers, affiliate["id"], 1500)
    assert resp.status_code == 400
    assert resp.json()["message"] == "No pending commissions found"


def test_payout_lifecycle_completes(client, admin_headers, affiliate):
    _commission(client, admin_headers, affiliate["id"], 1200)
    _commission(client, admin_headers, affiliate["id"], 800)
    resp = _payout(client, admin_headers, affiliate["id"], 2000)
    assert resp.status_code == 201
    payout = resp.json()["data"]
    assert payout["status"] == "pending"
    assert len(payout["commissionIds"]) == 2

    earnings = client.get(f"/api/affiliates/{affiliate['id']}", headers=admin_headers).json()["data"]["earnings"]
    assert earnings == {"pending": 0, "paid": 2000, "total": 2000}

    early = client.post(f"/api/payouts/{payout['id']}/complete", json={"transactionId": "TX1"}, headers=admin_headers)
    assert early.status_code == 400
    assert early.json()["message"] == "Payout is not in processing status"

    processing = client.post(f"/api/payouts/{payout['id']}/process", headers=admin_headers).json()["data"]
    assert processing["status"] == "processing"
    done = client.post(f"/api/payouts/{payout['id']}/complete", json={"transactionId": "TX1"}, headers=admin_headers).json()["data"]
    assert done["status"] == "completed"
    assert done["paymentDetails"] == {"account": "0123", "transactionId": "TX1"}

    timeline = client.get(f"/api/payouts/{payout['id']}/timeline", headers=admin_headers).json()["data"]
    assert [e["event"] for e in timeline] == ["Payout Created", "Payout Processing Started", "Payout Completed"]


def test_failed_payout_restores_earnings(client, admin_headers, affiliate, db):
    _commission(client, admin_headers, affiliate["id"], 2500)
    payout = _payout(client, admin_headers, affiliate["id"], 2500).json()["data"]
    client.post(f"/api/payouts/{payout['id']}/process", headers=admin_headers)
    failed = client.post(f"/api/payouts/{payout['id']}/fail", json={"reason": "Bank rejected"}, headers=admin_headers).json()["data"]
    assert failed["status"] == "failed"
    assert failed["failureReason"] == "Bank rejected"

    earnings = client.get(f"/api/affiliates/{affiliate['id']}", headers=admin_headers).json()["data"]["earnings"]
    assert earnings == {"pending": 2500, "paid": 0, "total": 2500}
    statuses = {c.status for c in db.query(Commission).all()}
    assert statuses == {"pending"}


def test_patch_only_touches_editable_fields(client, admin_headers, affiliate):
    _commission(client, admin_headers, affiliate["id"], 1500)
    payout = _payout(client, admin_headers, affiliate["id"], 1500).json()["data"]
    resp = client.patch(
        f"/api/payouts/{payout['id']}",
        json={"notes": "Pay on Friday", "status": "completed", "amount": 1},
        headers=admin_headers,
    )
    data = resp.json()["data"]
    assert data["notes"] == "Pay on Friday"
    assert data["status"] == "pending"
    assert data["amount"] == 1500


def test_stats_and_my_report(client, admin_headers, member_headers, affiliate):
    # each payout sweeps every pending commission
    for _ in range(2):
        _commission(client, admin_headers, affiliate["id"], 2000)
        assert _payout(client, admin_headers, affiliate["id"], 1500).status_code == 201

    stats = client.get("/api/payouts/stats", params={"timeRange": "7d"}, headers=admin_headers).json()["data"]
    assert stats["totalPayouts"] == 2
    assert stats["pendingPayouts"] == 2
    assert stats["pendingAmount"] == 3000

    mine = client.get("/api/payouts/me", headers=member_headers).json()["data"]
    assert len(mine["payouts"]) == 2
    report = client.get("/api/payouts/me/report", headers=member_headers).json()["data"]
    assert report["summary"]["totalAmount"] == 3000


def test_me_requires_affiliate_account(client, admin_headers):
    resp = client.get("/api/payouts/me", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Affiliate account not found"


def test_admin_endpoints_forbidden_for_members(client, member_headers):
    assert client.get("/api/payouts", headers=member_headers).status_code == 403


def test_affiliate_references_stay_in_the_organization(client, admin_headers, db, other_org, user_factory, program):
    outsider = user_factory("outsider@globex.com", organization=other_org)
    resp = client.post("/api/affiliates", json={"userId": str(outsider.id)}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "User not found"

    foreign = AffiliateProgram(organization_id=other_org.id, name="Globex partners", code="GLOBEX")
    db.add(foreign)
    db.commit()
    resp = client.post("/api/affiliates", json={"programId": str(foreign.id)}, headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Affiliate program not found"

    own = client.post("/api/affiliates", json={"programId": program["id"]}, headers=admin_headers)
    assert own.status_code == 201
