"""Tests for the Giglet API — FastAPI TestClient over a temp store.

Covers: health, error envelope, auth, creator/brand signup, gig flow end to
end (post, feed, accept, submit, evaluate, pay, withdraw), squads, scout.
"""

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from api import create_app
from evaluation import EvaluationResult, StaticEvaluator

HOUR = 3600


@pytest.fixture
def evaluator():
    return StaticEvaluator(EvaluationResult(compliance_passed=True, quality_score=88))


@pytest.fixture
def client(settings, evaluator, clock):
    app = create_app(replace(settings, rate_limit_requests=5000), evaluator=evaluator,
                     clock=clock)
    with TestClient(app) as c:
        yield c


def _creator(client, username="maya_makes", **fields):
    resp = client.post("/creators", json={"username": username, **fields})
    assert resp.status_code == 200, resp.text
    return resp.json()["creator"]


def _brand(client, balance=0):
    resp = client.post("/brands", json={"company_name": "Acme Snacks"})
    assert resp.status_code == 200, resp.text
    brand = resp.json()["brand"]
    if balance:
        assert client.post(f"/brands/{brand['id']}/balance", json={"amount": balance}).status_code == 200
    return brand


def _gig(client, brand_id, **fields):
    body = {"brand_id": brand_id, "title": "Unbox our chips", "primary_thing": "food",
            "base_payout": 100, "deliverables": {"videos": 1}}
    body.update(fields)
    resp = client.post("/gigs", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["gig"]


# ── Health ────────────────────────────────────────────────────────────


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json()["name"] == "Giglet"

    def test_healthz(self, client):
        body = client.get("/healthz").json()
        assert body["ok"] is True
        assert body["env"] == "test"

    def test_readyz(self, client):
        body = client.get("/readyz").json()
        assert body["status"] == "ready"
        assert body["stripe"] == "stub"


# ── Errors ────────────────────────────────────────────────────────────


class TestErrorEnvelope:
    def test_not_found(self, client):
        resp = client.get("/creators/cr-missing")
        assert resp.status_code == 404
        body = resp.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "not_found"
        assert body["error"]["retryable"] is False

    def test_request_validation(self, client):
        resp = client.post("/creators", json={"username": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_domain_validation(self, client):
        resp = client.post("/creators", json={"username": "bad name!"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_eligibility_is_403(self, client):
        brand = _brand(client)
        gig = _gig(client, brand["id"])
        creator = _creator(client)
        resp = client.post(f"/gigs/{gig['id']}/accept", json={"creator_id": creator["id"]})
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "not_eligible"
        assert error["details"]["minutes_until_unlock"] == 60


class TestAuth:
    def test_token_required_in_prod(self, settings):
        app = create_app(replace(settings, env="production", api_token="s3cret"))
        with TestClient(app) as c:
            assert c.get("/healthz").status_code == 200
            assert c.get("/leaderboard").status_code == 401
            ok = c.get("/leaderboard", headers={"Authorization": "Bearer s3cret"})
            assert ok.status_code == 200

    def test_rate_limit(self, settings):
        app = create_app(replace(settings, rate_limit_requests=2))
        with TestClient(app) as c:
            assert c.get("/leaderboard").status_code == 200
            assert c.get("/leaderboard").status_code == 200
            resp = c.get("/leaderboard")
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "rate_limited"


# ── Gig flow ──────────────────────────────────────────────────────────


class TestGigFlow:
    def test_end_to_end(self, client, evaluator, clock):
        brand = _brand(client, balance=500)
        gig = _gig(client, brand["id"], ai_compliance_required=True)
        creator = _creator(client)
        cid = creator["id"]

        feed = client.get(f"/creators/{cid}/feed").json()["gigs"]
        assert feed[0]["id"] == gig["id"]
        assert feed[0]["locked"] is True

        clock.advance(HOUR)
        accepted = client.post(f"/gigs/{gig['id']}/accept", json={"creator_id": cid}).json()
        assert accepted["accepted"] is True
        again = client.post(f"/gigs/{gig['id']}/accept", json={"creator_id": cid}).json()
        assert again["already_accepted"] is True

        link_only = client.post(f"/gigs/{gig['id']}/submissions",
                                json={"creator_id": cid, "content_link": "https://tiktok.com/x"})
        assert link_only.status_code == 400

        sub = client.post(f"/gigs/{gig['id']}/submissions", json={
            "creator_id": cid, "files": {"videos": ["https://cdn.giglet.test/take1.mp4"]},
        }).json()["submission"]
        assert sub["status"] == "submitted"

        result = client.post(f"/submissions/{sub['id']}/evaluate").json()
        assert result["status"] == "approved"
        assert result["payment_id"]
        assert evaluator.calls == [(gig["id"], "https://cdn.giglet.test/take1.mp4")]

        payments = client.get(f"/creators/{cid}/payments").json()
        assert payments["balance"] == 85
        assert payments["payments"][0]["status"] == "balance_transferred"

        rep = client.get(f"/creators/{cid}/rep").json()["rep"]
        assert rep["rep"] == 50 + 20

        notes = client.get(f"/creators/{cid}/notifications?unread_only=true").json()
        assert notes["notifications"][0]["type"] == "submission_approved"

        client.put(f"/creators/{cid}/bank-account", json={"bank_account_id": "ba_123"})
        wd = client.post(f"/creators/{cid}/withdraw", json={"amount": 50}).json()["withdrawal"]
        assert wd["method"] == "ach"
        assert client.get(f"/creators/{cid}/payments").json()["balance"] == 35

    def test_out_of_band_evaluation(self, client, clock):
        brand = _brand(client, balance=0)
        gig = _gig(client, brand["id"])
        cid = _creator(client)["id"]
        clock.advance(HOUR)
        client.post(f"/gigs/{gig['id']}/accept", json={"creator_id": cid})
        sub = client.post(f"/gigs/{gig['id']}/submissions",
                          json={"creator_id": cid, "content_link": "https://x"}).json()["submission"]

        resp = client.post(f"/submissions/{sub['id']}/evaluation", json={
            "compliance_passed": False, "quality_score": 30, "compliance_issues": ["Blurry"],
        })
        assert resp.json()["status"] == "rejected"
        assert client.get(f"/gigs/{gig['id']}").json()["gig"]["status"] == "needs_changes"

    def test_close_and_expire(self, client, clock):
        brand = _brand(client)
        gig = _gig(client, brand["id"], deadline_hours=1)
        closed = _gig(client, brand["id"])
        resp = client.post(f"/gigs/{closed['id']}/close", json={"brand_id": brand["id"]})
        assert resp.json()["gig"]["status"] == "closed"

        clock.advance(2 * HOUR)
        assert client.post("/admin/gigs/expire").json()["expired"] == 1
        assert client.get(f"/gigs/{gig['id']}").json()["gig"]["status"] == "expired"

    def test_batch_payments_endpoint(self, client):
        body = client.post("/admin/payments/process").json()
        assert body == {"ok": True, "processed": 0, "skipped": 0, "failed": 0}


# ── Profiles, community, scout ────────────────────────────────────────


class TestCreatorEndpoints:
    def test_trust_score_updates(self, client):
        cid = _creator(client)["id"]
        client.put(f"/creators/{cid}/verifications",
                   json={"email_verified": True, "phone_verified": True})
        resp = client.put(f"/creators/{cid}/socials",
                          json={"platform": "tiktok", "handle": "@maya", "followers": 1200})
        assert resp.json()["trust"]["score"] == 27
        assert client.get(f"/creators/{cid}/trust-score").json()["trust"]["socials"] == 7

    def test_rep_levels_lookup(self, client):
        body = client.get("/rep/levels/650").json()
        assert body["level"]["name"] == "Pro"

    def test_leaderboard(self, client):
        _creator(client, "alpha")
        board = client.get("/leaderboard").json()["leaderboard"]
        assert board[0]["username"] == "alpha"

    def test_squads(self, client):
        recruiter = _creator(client, "recruiter")["id"]
        joiner = _creator(client, "joiner")["id"]
        squad = client.post("/squads", json={"recruiter_id": recruiter, "name": "Foodies"}).json()["squad"]
        joined = client.post(f"/squads/{squad['id']}/join", json={"creator_id": joiner}).json()
        assert joiner in joined["squad"]["member_ids"]
        mine = client.get(f"/creators/{joiner}/squads").json()["squads"]
        assert [s["id"] for s in mine] == [squad["id"]]
        left = client.post(f"/squads/{squad['id']}/leave", json={"creator_id": joiner}).json()
        assert joiner not in left["squad"]["member_ids"]

    def test_scout(self, client):
        _creator(client, "austin_amy", location="Austin", interests=["food"])
        _creator(client, "boston_bo", location="Boston", interests=["tech"])
        body = client.post("/scout", json={"location": "austin"}).json()
        assert [c["username"] for c in body["creators"]] == ["austin_amy"]
        assert body["locations"] == ["Austin", "Boston"]

    def test_stripe_onboarding_stub(self, client):
        cid = _creator(client)["id"]
        body = client.post(f"/stripe/onboarding/{cid}").json()
        assert body["stripe_account_id"].startswith("acct_stub_")
        assert client.get(f"/stripe/status/{cid}").json()["connected"] is True

    def test_stripe_webhook_stub(self, client):
        body = client.post("/stripe/webhook", content=b"{}").json()
        assert body["handled"] is False
