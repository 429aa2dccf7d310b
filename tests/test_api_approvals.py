"""
Approval HTTP API tests.

Tests cover:
  - submit → decide → Approved through the API
  - 403 for the wrong actor, 409 for terminal state and stale versions
  - 422 when the process has no steps, 503 when the directory is down
  - pending queue, overdue report, entity approval status
  - actor identity from a JWT bearer token
"""
import pytest

from approvals.integrations.directory import DirectoryUnavailableError
from approvals.services.jwt_service import generate_access_token


def _h(user_id):
    return {"X-User-Id": str(user_id)}


@pytest.fixture()
def api_chain(client):
    res = client.post(
        "/api/v1/processes",
        json={
            "title": "Purchase Order Approval",
            "status": "Active",
            "steps": [
                {"approver_user_id": 7},
                {"approver_designation_id": 2, "timeout_days": 1},
                {"approver_user_id": 9},
            ],
        },
        headers=_h(1),
    )
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def submitted(client, api_chain):
    res = client.post(
        "/api/v1/approvals",
        json={"entity_type": "purchase_order", "entity_id": 42, "process_id": api_chain["id"]},
        headers=_h(5),
    )
    assert res.status_code == 201
    return res.get_json()


def _decide(client, approval_id, actor, outcome="Approve", **extra):
    return client.post(
        f"/api/v1/approvals/{approval_id}/decide",
        json={"outcome": outcome, **extra},
        headers=_h(actor),
    )


# ═════════════════════════════════════════════════════════════════════════
# SUBMIT
# ═════════════════════════════════════════════════════════════════════════

class TestSubmitAPI:
    def test_submit(self, submitted):
        assert submitted["status"] == "Pending"
        assert submitted["current_step_order"] == 1
        assert submitted["requester_id"] == 5
        assert submitted["entity_id"] == "42"
        assert submitted["version"] == 1

    def test_submit_requires_actor(self, client, api_chain):
        res = client.post(
            "/api/v1/approvals",
            json={"entity_type": "rfq", "entity_id": 1, "process_id": api_chain["id"]},
        )
        assert res.status_code == 401

    def test_submit_missing_fields(self, client):
        res = client.post("/api/v1/approvals", json={"entity_type": "rfq"}, headers=_h(5))
        assert res.status_code == 400
        assert "entity_id" in res.get_json()["error"]

    def test_submit_duplicate(self, client, submitted, api_chain):
        res = client.post(
            "/api/v1/approvals",
            json={"entity_type": "purchase_order", "entity_id": "42", "process_id": api_chain["id"]},
            headers=_h(5),
        )
        assert res.status_code == 409

    def test_submit_no_steps(self, client):
        empty = client.post(
            "/api/v1/processes", json={"title": "Empty", "status": "Active"}, headers=_h(1),
        ).get_json()
        res = client.post(
            "/api/v1/approvals",
            json={"entity_type": "rfq", "entity_id": 1, "process_id": empty["id"]},
            headers=_h(5),
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_NO_STEPS"

    def test_submit_inactive_process(self, client, api_chain):
        client.post(f"/api/v1/processes/{api_chain['id']}/toggle-active", headers=_h(1))
        res = client.post(
            "/api/v1/approvals",
            json={"entity_type": "rfq", "entity_id": 1, "process_id": api_chain["id"]},
            headers=_h(5),
        )
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# DECIDE
# ═════════════════════════════════════════════════════════════════════════

class TestDecideAPI:
    def test_full_approval(self, client, submitted):
        aid = submitted["id"]
        assert _decide(client, aid, 7).get_json()["current_step_order"] == 2
        assert _decide(client, aid, 8, note="ok").get_json()["current_step_order"] == 3
        data = _decide(client, aid, 9).get_json()
        assert data["status"] == "Approved"
        assert [d["actor_id"] for d in data["decisions"]] == [7, 8, 9]
        assert data["decisions"][1]["note"] == "ok"

        detail = client.get(f"/api/v1/approvals/{aid}").get_json()
        assert detail["status"] == "Approved"

    def test_wrong_actor_forbidden(self, client, submitted):
        res = _decide(client, submitted["id"], 9)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED_ACTOR"
        detail = client.get(f"/api/v1/approvals/{submitted['id']}").get_json()
        assert detail["current_step_order"] == 1
        assert detail["decisions"] == []

    def test_reject_then_terminal(self, client, submitted):
        aid = submitted["id"]
        assert _decide(client, aid, 7, "reject").get_json()["status"] == "Rejected"
        res = _decide(client, aid, 7)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_TERMINAL_STATE"

    def test_stale_version(self, client, submitted):
        aid = submitted["id"]
        assert _decide(client, aid, 7, version=1).status_code == 200
        res = _decide(client, aid, 8, version=1)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONCURRENT_MODIFICATION"
        assert body["details"] == {"expected_version": 1, "actual_version": 2}

    def test_missing_outcome(self, client, submitted):
        res = client.post(f"/api/v1/approvals/{submitted['id']}/decide", json={}, headers=_h(7))
        assert res.status_code == 400

    def test_unknown_outcome(self, client, submitted):
        assert _decide(client, submitted["id"], 7, "Escalate").status_code == 422

    def test_bad_version_type(self, client, submitted):
        assert _decide(client, submitted["id"], 7, version="1").status_code == 400

    def test_unknown_request(self, client):
        assert _decide(client, 999, 7).status_code == 404

    def test_directory_outage(self, app, client, submitted):
        class _DownDirectory:
            def designation_of(self, user_id):
                raise DirectoryUnavailableError("down")

            def manager_of(self, user_id):
                raise DirectoryUnavailableError("down")

        _decide(client, submitted["id"], 7)
        app.extensions["directory"] = _DownDirectory()
        res = _decide(client, submitted["id"], 8)
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_DIRECTORY_UNAVAILABLE"


# ═════════════════════════════════════════════════════════════════════════
# QUEUES & STATUS
# ═════════════════════════════════════════════════════════════════════════

class TestQueuesAPI:
    def test_pending_for_actor(self, client, submitted):
        assert [a["id"] for a in client.get("/api/v1/approvals/pending", headers=_h(7)).get_json()] == [
            submitted["id"]
        ]
        assert client.get("/api/v1/approvals/pending", headers=_h(8)).get_json() == []
        _decide(client, submitted["id"], 7)
        assert len(client.get("/api/v1/approvals/pending", headers=_h(8)).get_json()) == 1

    def test_pending_requires_actor(self, client):
        assert client.get("/api/v1/approvals/pending").status_code == 401

    def test_overdue(self, client, submitted):
        _decide(client, submitted["id"], 7)
        assert client.get("/api/v1/approvals/overdue").get_json() == []
        res = client.get("/api/v1/approvals/overdue?now=2999-01-01T00:00:00")
        overdue = res.get_json()
        assert [o["approval_request_id"] for o in overdue] == [submitted["id"]]
        assert overdue[0]["step_order"] == 2

    def test_overdue_bad_timestamp(self, client):
        assert client.get("/api/v1/approvals/overdue?now=yesterday").status_code == 400

    def test_entity_status(self, client, submitted):
        res = client.get("/api/v1/purchase_order/42/approval-status")
        assert res.get_json()["status"] == "Pending"
        res = client.get("/api/v1/rfq/1/approval-status")
        assert res.get_json()["status"] == "not_submitted"

    def test_entity_status_unknown_type(self, client):
        assert client.get("/api/v1/spaceship/1/approval-status").status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# IDENTITY
# ═════════════════════════════════════════════════════════════════════════

class TestActorIdentity:
    def test_bearer_token_sets_actor(self, client, submitted):
        token = generate_access_token(7)
        res = client.post(
            f"/api/v1/approvals/{submitted['id']}/decide",
            json={"outcome": "Approve"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert res.status_code == 200
        assert res.get_json()["decisions"][0]["actor_id"] == 7

    def test_header_ignored_when_auth_enabled(self, app, client, submitted):
        app.config["API_AUTH_ENABLED"] = "true"
        try:
            res = _decide(client, submitted["id"], 7)
            assert res.status_code == 401
        finally:
            app.config["API_AUTH_ENABLED"] = "false"

    def test_invalid_token_falls_back_to_header_when_auth_disabled(self, client, submitted):
        res = client.post(
            f"/api/v1/approvals/{submitted['id']}/decide",
            json={"outcome": "Approve"},
            headers={"Authorization": "Bearer not-a-jwt", "X-User-Id": "7"},
        )
        assert res.status_code == 200
