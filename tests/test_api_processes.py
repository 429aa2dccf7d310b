"""
Process & step HTTP API tests.

Tests cover:
  - process CRUD, toggle, status, soft delete
  - step add / update / delete / list
  - reorder endpoint with {id, order} bodies
  - suggested approver endpoint
  - error envelope, status codes and 401 without an actor
"""
import pytest

ADMIN = {"X-User-Id": "1"}


@pytest.fixture()
def api_process(client):
    res = client.post(
        "/api/v1/processes",
        json={
            "title": "RFQ Approval",
            "status": "Active",
            "steps": [
                {"approver_user_id": 7, "description": "Requester's manager"},
                {"approver_designation_id": 2, "description": "Procurement", "timeout_days": 2},
                {"approver_user_id": 9, "description": "Director"},
            ],
        },
        headers=ADMIN,
    )
    assert res.status_code == 201
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════
# PROCESSES
# ═════════════════════════════════════════════════════════════════════════

class TestProcessAPI:
    def test_create_returns_steps(self, api_process):
        assert api_process["title"] == "RFQ Approval"
        assert api_process["created_by"] == 1
        assert api_process["step_count"] == 3
        assert [s["order"] for s in api_process["steps"]] == [1, 2, 3]
        assert api_process["steps"][1]["approver"] == {"type": "designation", "designation_id": 2}

    def test_create_requires_actor(self, client):
        res = client.post("/api/v1/processes", json={"title": "X"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_create_missing_title(self, client):
        res = client.post("/api/v1/processes", json={}, headers=ADMIN)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_empty_title(self, client):
        res = client.post("/api/v1/processes", json={"title": "  "}, headers=ADMIN)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"title": "required"}

    def test_create_non_object_body(self, client):
        res = client.post("/api/v1/processes", json=["title"], headers=ADMIN)
        assert res.status_code == 400

    def test_create_with_ambiguous_step(self, client):
        res = client.post(
            "/api/v1/processes",
            json={"title": "Bad", "steps": [{"approver_user_id": 1, "approver_designation_id": 2}]},
            headers=ADMIN,
        )
        assert res.status_code == 422
        assert client.get("/api/v1/processes").get_json() == []

    def test_delete_with_pending_request(self, client, api_process):
        pid = api_process["id"]
        client.post(
            "/api/v1/approvals",
            json={"entity_type": "rfq", "entity_id": 8, "process_id": pid},
            headers={"X-User-Id": "5"},
        )
        res = client.delete(f"/api/v1/processes/{pid}", headers=ADMIN)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        assert client.get(f"/api/v1/processes/{pid}").status_code == 200

    def test_get_with_and_without_steps(self, client, api_process):
        pid = api_process["id"]
        plain = client.get(f"/api/v1/processes/{pid}").get_json()
        assert "steps" not in plain
        full = client.get(f"/api/v1/processes/{pid}?include=steps").get_json()
        assert len(full["steps"]) == 3

    def test_get_unknown(self, client):
        res = client.get("/api/v1/processes/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_with_filters(self, client, api_process):
        client.post("/api/v1/processes", json={"title": "Draft chain"}, headers=ADMIN)
        client.post("/api/v1/processes", json={"title": "Off", "is_active": False}, headers=ADMIN)

        assert len(client.get("/api/v1/processes").get_json()) == 3
        active = client.get("/api/v1/processes?status=Active").get_json()
        assert [p["title"] for p in active] == ["RFQ Approval"]
        enabled = client.get("/api/v1/processes?active=true").get_json()
        assert [p["title"] for p in enabled] == ["RFQ Approval", "Draft chain"]

    def test_list_bad_bool(self, client):
        assert client.get("/api/v1/processes?active=maybe").status_code == 400

    def test_list_bad_status(self, client):
        assert client.get("/api/v1/processes?status=Closed").status_code == 422

    def test_update(self, client, api_process):
        res = client.put(
            f"/api/v1/processes/{api_process['id']}",
            json={"title": "RFQ Approval v2", "description": "Updated"},
            headers={"X-User-Id": "3"},
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["title"] == "RFQ Approval v2"
        assert data["updated_by"] == 3

    def test_update_non_string_description(self, client, api_process):
        res = client.put(
            f"/api/v1/processes/{api_process['id']}", json={"description": 5}, headers=ADMIN,
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"description": "invalid"}

    def test_toggle_active(self, client, api_process):
        res = client.post(f"/api/v1/processes/{api_process['id']}/toggle-active", headers=ADMIN)
        assert res.get_json()["is_active"] is False

    def test_set_status(self, client, api_process):
        url = f"/api/v1/processes/{api_process['id']}/status"
        assert client.put(url, json={"status": "Expired"}, headers=ADMIN).get_json()["status"] == "Expired"
        assert client.put(url, json={}, headers=ADMIN).status_code == 400
        assert client.put(url, json={"status": "Gone"}, headers=ADMIN).status_code == 422

    def test_soft_delete(self, client, api_process):
        pid = api_process["id"]
        assert client.delete(f"/api/v1/processes/{pid}", headers=ADMIN).status_code == 204
        assert client.get(f"/api/v1/processes/{pid}").status_code == 404
        assert client.get(f"/api/v1/processes/{pid}/steps").status_code == 404
        assert client.get("/api/v1/processes").get_json() == []


# ═════════════════════════════════════════════════════════════════════════
# STEPS
# ═════════════════════════════════════════════════════════════════════════

class TestStepAPI:
    def test_list_steps(self, client, api_process):
        steps = client.get(f"/api/v1/processes/{api_process['id']}/steps").get_json()
        assert [s["order"] for s in steps] == [1, 2, 3]
        assert steps[0]["approver_user_id"] == 7

    def test_add_step(self, client, api_process):
        res = client.post(
            f"/api/v1/processes/{api_process['id']}/steps",
            json={"approver_designation_id": 3, "description": "Finance", "name": "CFO"},
            headers=ADMIN,
        )
        assert res.status_code == 201
        data = res.get_json()
        assert data["order"] == 4
        assert data["approver"] == {"type": "designation", "designation_id": 3}

    @pytest.mark.parametrize(
        "body",
        [
            {"description": "No approver"},
            {"approver_user_id": 7, "approver_designation_id": 2},
            {"approver_user_id": 7, "timeout_days": -2},
        ],
    )
    def test_add_step_invalid(self, client, api_process, body):
        res = client.post(f"/api/v1/processes/{api_process['id']}/steps", json=body, headers=ADMIN)
        assert res.status_code == 422

    def test_add_step_unknown_process(self, client):
        res = client.post("/api/v1/processes/999/steps", json={"approver_user_id": 7}, headers=ADMIN)
        assert res.status_code == 404

    def test_update_step(self, client, api_process):
        sid = api_process["steps"][0]["id"]
        res = client.put(
            f"/api/v1/steps/{sid}",
            json={"approver_designation_id": 4, "timeout_days": 5},
            headers=ADMIN,
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["approver_user_id"] is None
        assert data["approver_designation_id"] == 4
        assert data["timeout_days"] == 5

    def test_update_step_order_refused(self, client, api_process):
        sid = api_process["steps"][0]["id"]
        res = client.put(f"/api/v1/steps/{sid}", json={"order": 3}, headers=ADMIN)
        assert res.status_code == 400

    def test_delete_step_renumbers(self, client, api_process):
        first, second, third = api_process["steps"]
        assert client.delete(f"/api/v1/steps/{first['id']}", headers=ADMIN).status_code == 204
        steps = client.get(f"/api/v1/processes/{api_process['id']}/steps").get_json()
        assert [(s["id"], s["order"]) for s in steps] == [(second["id"], 1), (third["id"], 2)]
        assert client.delete(f"/api/v1/steps/{first['id']}", headers=ADMIN).status_code == 404

    def test_suggested_approver(self, client, api_process):
        designation_step = api_process["steps"][1]
        res = client.get(f"/api/v1/steps/{designation_step['id']}/approver?requester_id=5")
        data = res.get_json()
        assert data["suggested_user_id"] == 8
        user_step = api_process["steps"][2]
        res = client.get(f"/api/v1/steps/{user_step['id']}/approver")
        assert res.get_json()["suggested_user_id"] == 9


# ═════════════════════════════════════════════════════════════════════════
# REORDER
# ═════════════════════════════════════════════════════════════════════════

class TestReorderAPI:
    def _url(self, process):
        return f"/api/v1/processes/{process['id']}/steps/reorder"

    def test_reorder_by_identity(self, client, api_process):
        a, b, c = (s["id"] for s in api_process["steps"])
        res = client.post(
            self._url(api_process),
            json={"steps": [{"id": a, "order": 2}, {"id": b, "order": 3}, {"id": c, "order": 1}]},
            headers=ADMIN,
        )
        assert res.status_code == 200
        assert [(s["id"], s["order"]) for s in res.get_json()] == [(c, 1), (a, 2), (b, 3)]

    def test_reorder_is_idempotent(self, client, api_process):
        a, b, c = (s["id"] for s in api_process["steps"])
        body = {"steps": [{"id": c, "order": 0}, {"id": b, "order": 1}, {"id": a, "order": 2}]}
        first = client.post(self._url(api_process), json=body, headers=ADMIN).get_json()
        second = client.post(self._url(api_process), json=body, headers=ADMIN).get_json()
        assert first == second

    def test_foreign_step_reported(self, client, api_process):
        other = client.post(
            "/api/v1/processes",
            json={"title": "Other", "steps": [{"approver_user_id": 4}]},
            headers=ADMIN,
        ).get_json()
        a, b, c = (s["id"] for s in api_process["steps"])
        foreign = other["steps"][0]["id"]

        res = client.post(
            self._url(api_process),
            json={"steps": [{"id": a, "order": 1}, {"id": b, "order": 2}, {"id": foreign, "order": 3}]},
            headers=ADMIN,
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_REORDER"
        assert body["details"] == {"missing": [c], "extra": [foreign], "duplicates": []}

        steps = client.get(f"/api/v1/processes/{api_process['id']}/steps").get_json()
        assert [s["id"] for s in steps] == [a, b, c]

    def test_tied_orders(self, client, api_process):
        a, b, c = (s["id"] for s in api_process["steps"])
        res = client.post(
            self._url(api_process),
            json={"steps": [{"id": a, "order": 1}, {"id": b, "order": 1}, {"id": c, "order": 2}]},
            headers=ADMIN,
        )
        assert res.status_code == 422

    def test_missing_steps_key(self, client, api_process):
        res = client.post(self._url(api_process), json={}, headers=ADMIN)
        assert res.status_code == 400

    def test_unknown_process(self, client):
        res = client.post(
            "/api/v1/processes/999/steps/reorder", json={"steps": []}, headers=ADMIN,
        )
        assert res.status_code == 404
