"""API tests - routes, headers and error mapping over the in-memory engine"""
import pytest
from fastapi.testclient import TestClient

from docflow.api.deps import get_engine
from docflow.main import create_app

from tests.conftest import COMPANY_ID, LINEAR_XML, OTHER_COMPANY_ID

BASE = "/api/v1/workflows"


@pytest.fixture
def client(engine):
    app = create_app(with_lifespan=False)
    app.dependency_overrides[get_engine] = lambda: engine
    return TestClient(app)


def headers(actor_id: str = "manager", company_id: str = COMPANY_ID) -> dict:
    return {"X-Actor-Id": actor_id, "X-Company-Id": company_id}


def register(client, xml: str = LINEAR_XML) -> str:
    response = client.post(
        f"{BASE}/definitions",
        json={"name": "Purchase approval", "xml": xml},
        headers=headers("ceo")
    )
    assert response.status_code == 201, response.text
    return response.json()["definition_id"]


def start(client, definition_id: str, document_id: str = "DOC-1", amount: str = "12000.50") -> dict:
    response = client.post(
        f"{BASE}/instances",
        json={
            "definition_id": definition_id,
            "document": {"document_id": document_id, "title": "Laptops", "amount": amount},
        },
        headers=headers()
    )
    assert response.status_code == 201, response.text
    return response.json()


def error_code(response) -> str:
    body = response.json()
    return body.get("detail", body)["error"]["code"]


class TestDefinitions:

    def test_register_and_fetch(self, client):
        definition_id = register(client)

        response = client.get(f"{BASE}/definitions/{definition_id}", headers=headers())
        assert response.status_code == 200
        body = response.json()
        assert [s["role_name"] for s in body["definition"]["steps"]] == ["Manager", "Director", "CEO"]

        listed = client.get(f"{BASE}/definitions", headers=headers())
        assert [d["definition_id"] for d in listed.json()["items"]] == [definition_id]

    def test_register_from_structured_data(self, client):
        response = client.post(
            f"{BASE}/definitions",
            json={
                "name": "Two step",
                "definition": {
                    "steps": [
                        {"order": 1, "roleName": "Manager", "roleLevel": 60, "action": "review"},
                        {"order": 2, "roleName": "CEO", "roleLevel": 100, "action": "sign"},
                    ],
                    "routing": [{"type": "onReject", "stepOrder": 2, "targetStep": 1}],
                },
            },
            headers=headers("ceo")
        )
        assert response.status_code == 201
        assert response.json()["step_count"] == 2
        assert response.json()["routing_rule_count"] == 1

    def test_other_company_cannot_see_definition(self, client):
        definition_id = register(client)
        response = client.get(f"{BASE}/definitions/{definition_id}", headers=headers("outsider", OTHER_COMPANY_ID))
        assert response.status_code == 404

    @pytest.mark.parametrize("xml,code", [
        ("<workflow><step", "DEFINITION_PARSE_ERROR"),
        ("<workflow/>", "VALIDATION_ERROR"),
        ('<workflow><step order="1" roleName="X" roleLevel="500" action="a"/></workflow>', "VALIDATION_ERROR"),
    ])
    def test_validate_rejects_bad_markup(self, client, xml, code):
        response = client.post(f"{BASE}/definitions/validate", json={"xml": xml}, headers=headers())
        assert response.status_code == 400
        assert error_code(response) == code

    def test_validate_accepts_example(self, client):
        example = client.get(f"{BASE}/definitions/examples/conditional")
        assert example.status_code == 200
        assert "<workflow>" in example.text

        response = client.post(f"{BASE}/definitions/validate", json={"xml": example.text}, headers=headers())
        assert response.status_code == 200
        assert response.json()["is_valid"] is True
        assert len(response.json()["definition"]["routing_rules"]) == 7

    def test_unknown_example(self, client):
        assert client.get(f"{BASE}/definitions/examples/nope").status_code == 404

    def test_conditions(self, client):
        response = client.get(f"{BASE}/conditions")
        assert "isHighValue" in response.json()["conditions"]


class TestDefinitionManagement:

    def test_update_and_delete(self, client):
        definition_id = register(client)
        url = f"{BASE}/definitions/{definition_id}"

        updated = client.put(url, json={"name": "Hardware purchases"}, headers=headers())
        assert updated.status_code == 200, updated.text
        assert updated.json()["name"] == "Hardware purchases"

        deleted = client.delete(url, headers=headers())
        assert deleted.status_code == 204
        assert client.get(f"{BASE}/definitions", headers=headers()).json()["items"] == []
        listed = client.get(f"{BASE}/definitions", params={"include_inactive": "true"}, headers=headers())
        assert [d["is_active"] for d in listed.json()["items"]] == [False]

        again = client.delete(url, headers=headers())
        assert again.status_code == 404

    def test_steps_locked_while_running(self, client):
        definition_id = register(client)
        start(client, definition_id)

        response = client.put(
            f"{BASE}/definitions/{definition_id}",
            json={"xml": '<workflow><step order="1" roleName="CEO" roleLevel="100" action="sign"/></workflow>'},
            headers=headers()
        )

        assert response.status_code == 409
        assert error_code(response) == "INVALID_STATE_TRANSITION"

    def test_start_permissions(self, client):
        definition_id = register(client)

        denied = client.patch(
            f"{BASE}/definitions/{definition_id}/permissions",
            json={"allowed_role_levels": [80]},
            headers=headers("manager")
        )
        assert denied.status_code == 403
        assert error_code(denied) == "AUTHORIZATION_ERROR"

        granted = client.patch(
            f"{BASE}/definitions/{definition_id}/permissions",
            json={"allowed_role_levels": [80]},
            headers=headers("ceo")
        )
        assert granted.json()["allowed_role_levels"] == [80]

        response = client.post(
            f"{BASE}/instances",
            json={"definition_id": definition_id, "document": {"document_id": "DOC-9"}},
            headers=headers("manager")
        )
        assert response.status_code == 403
        assert error_code(response) == "START_NOT_PERMITTED"


def test_delegate_task(client):
    xml = '<workflow><step order="1" roleName="Manager" roleLevel="60" action="review" allowedActions="DELEGATE"/></workflow>'
    definition_id = register(client, xml)
    task = start(client, definition_id)["tasks"][0]
    assert task["allowed_actions"] == ["APPROVE", "REJECT", "DELEGATE"]

    response = client.post(
        f"{BASE}/tasks/{task['task_id']}/delegate",
        json={"target_actor_id": "director", "comment": "Out of office"},
        headers=headers("manager")
    )

    assert response.status_code == 200, response.text
    assert response.json()["task"]["assigned_to"] == "director"
    assert client.get(f"{BASE}/tasks/pending", headers=headers("manager")).json()["items"] == []
    assert len(client.get(f"{BASE}/tasks/pending", headers=headers("director")).json()["items"]) == 1

    missing_target = client.post(
        f"{BASE}/tasks/{task['task_id']}/delegate", json={}, headers=headers("director")
    )
    assert missing_target.status_code == 400


class TestWorkflow:

    def test_approval_flow(self, client):
        definition_id = register(client)
        started = start(client, definition_id)
        instance_id = started["instance"]["instance_id"]
        assert started["instance"]["document"]["amount"] == "12000.50"
        assert len(started["tasks"]) == 1

        for actor_id, expected in (("manager", "IN_PROGRESS"), ("director", "IN_PROGRESS"), ("ceo", "COMPLETED")):
            pending = client.get(f"{BASE}/tasks/pending", headers=headers(actor_id)).json()["items"]
            assert len(pending) == 1
            response = client.post(
                f"{BASE}/tasks/{pending[0]['task_id']}/approve",
                json={"comment": f"ok from {actor_id}"},
                headers=headers(actor_id)
            )
            assert response.status_code == 200, response.text
            assert response.json()["instance_status"] == expected

        history = client.get(f"{BASE}/instances/{instance_id}/history", headers=headers()).json()["items"]
        assert history[0]["action_type"] == "WORKFLOW_STARTED"
        assert history[-1]["action_type"] == "WORKFLOW_COMPLETED"

    def test_reject_routes_back(self, client):
        definition_id = register(client)
        instance_id = start(client, definition_id)["instance"]["instance_id"]
        manager_task = client.get(f"{BASE}/instances/{instance_id}", headers=headers()).json()["tasks"][0]
        client.post(f"{BASE}/tasks/{manager_task['task_id']}/approve", json={}, headers=headers())

        tasks = client.get(f"{BASE}/instances/{instance_id}", headers=headers()).json()["tasks"]
        director_task = next(t for t in tasks if t["status"] == "PENDING")
        response = client.post(
            f"{BASE}/tasks/{director_task['task_id']}/reject",
            json={"comment": "Need a second quote"},
            headers=headers("director")
        )

        assert response.status_code == 200
        assert response.json()["task"]["status"] == "REJECTED"
        assert response.json()["instance_status"] == "IN_PROGRESS"

    def test_insufficient_level_is_forbidden(self, client):
        definition_id = register(client)
        instance_id = start(client, definition_id)["instance"]["instance_id"]
        task = client.get(f"{BASE}/instances/{instance_id}", headers=headers()).json()["tasks"][0]
        client.post(f"{BASE}/tasks/{task['task_id']}/approve", json={}, headers=headers())
        tasks = client.get(f"{BASE}/instances/{instance_id}", headers=headers()).json()["tasks"]
        director_task = next(t for t in tasks if t["status"] == "PENDING")

        response = client.post(f"{BASE}/tasks/{director_task['task_id']}/approve", json={}, headers=headers())

        assert response.status_code == 403
        assert error_code(response) == "UNAUTHORIZED_TRANSITION"

    def test_decided_task_conflicts(self, client):
        definition_id = register(client)
        instance_id = start(client, definition_id)["instance"]["instance_id"]
        task = client.get(f"{BASE}/instances/{instance_id}", headers=headers()).json()["tasks"][0]
        client.post(f"{BASE}/tasks/{task['task_id']}/approve", json={}, headers=headers())

        again = client.post(f"{BASE}/tasks/{task['task_id']}/approve", json={}, headers=headers())

        assert again.status_code == 409
        assert error_code(again) == "INVALID_STATE_TRANSITION"

    def test_duplicate_start_conflicts(self, client):
        definition_id = register(client)
        start(client, definition_id)
        response = client.post(
            f"{BASE}/instances",
            json={"definition_id": definition_id, "document": {"document_id": "DOC-1"}},
            headers=headers()
        )
        assert response.status_code == 409

    def test_bulk_approve(self, client):
        single = '<workflow><step order="1" roleName="Manager" roleLevel="60" action="review"/></workflow>'
        definition_id = register(client, single)
        task_ids = []
        for n in range(2):
            started = start(client, definition_id, document_id=f"DOC-{n}")
            task_ids.append(started["tasks"][0]["task_id"])

        response = client.post(
            f"{BASE}/tasks/bulk-approve",
            json={"task_ids": task_ids + ["TSK-missing"]},
            headers=headers()
        )

        body = response.json()
        assert response.status_code == 200
        assert body["total_tasks"] == 3
        assert body["successful_task_ids"] == task_ids
        assert body["errors"] == ["task TSK-missing: task not found"]

    def test_bulk_limit(self, client):
        response = client.post(
            f"{BASE}/tasks/bulk-reject",
            json={"task_ids": [f"TSK-{i}" for i in range(101)]},
            headers=headers()
        )
        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"


class TestScoping:

    def test_missing_actor_header(self, client):
        response = client.get(f"{BASE}/definitions", headers={"X-Company-Id": COMPANY_ID})
        assert response.status_code == 401

    def test_missing_company_header(self, client):
        response = client.get(f"{BASE}/definitions", headers={"X-Actor-Id": "manager"})
        assert response.status_code == 400

    def test_unknown_instance(self, client):
        response = client.get(f"{BASE}/instances/WFI-missing", headers=headers())
        assert response.status_code == 404
        assert error_code(response) == "INSTANCE_NOT_FOUND"

    def test_other_company_instance_is_hidden(self, client):
        definition_id = register(client)
        instance_id = start(client, definition_id)["instance"]["instance_id"]

        response = client.get(f"{BASE}/instances/{instance_id}", headers=headers("outsider", OTHER_COMPANY_ID))

        assert response.status_code == 404

    def test_other_company_cannot_decide(self, client):
        definition_id = register(client)
        task = start(client, definition_id)["tasks"][0]

        response = client.post(
            f"{BASE}/tasks/{task['task_id']}/approve",
            json={},
            headers=headers("outsider", OTHER_COMPANY_ID)
        )
        assert response.status_code == 403

    def test_correlation_id_is_echoed(self, client):
        response = client.get(f"{BASE}/conditions", headers={"X-Correlation-Id": "abc-123"})
        assert response.headers["X-Correlation-Id"] == "abc-123"


class TestDirectory:

    def test_member_roundtrip(self, client):
        response = client.put(
            "/api/v1/directory/members",
            json={"actor_id": "auditor", "role_name": "Auditor", "role_level": 75},
            headers=headers("ceo")
        )
        assert response.status_code == 200

        fetched = client.get("/api/v1/directory/members/auditor", headers=headers())
        assert fetched.json()["role_level"] == 75
        assert fetched.json()["company_id"] == COMPANY_ID

    def test_membership_is_per_company(self, client):
        response = client.get("/api/v1/directory/members/manager", headers=headers("outsider", OTHER_COMPANY_ID))
        assert response.status_code == 404

    def test_new_member_can_act(self, client):
        client.put(
            "/api/v1/directory/members",
            json={"actor_id": "deputy", "role_name": "Director", "role_level": 85},
            headers=headers("ceo")
        )
        definition_id = register(client)
        task = start(client, definition_id)["tasks"][0]

        response = client.post(f"{BASE}/tasks/{task['task_id']}/approve", json={}, headers=headers("deputy"))

        assert response.status_code == 200

    def test_invalid_level(self, client):
        response = client.put(
            "/api/v1/directory/members",
            json={"actor_id": "x", "role_name": "Clerk", "role_level": 0},
            headers=headers("ceo")
        )
        assert response.status_code == 400


def test_history_since_filter(client):
    definition_id = register(client)
    instance_id = start(client, definition_id)["instance"]["instance_id"]
    url = f"{BASE}/instances/{instance_id}/history"

    everything = client.get(url, headers=headers()).json()["items"]
    assert len(everything) == 2
    assert client.get(url, params={"since": "2000-01-01T00:00:00Z"}, headers=headers()).json()["items"] == everything
    assert client.get(url, params={"since": "2999-01-01T00:00:00Z"}, headers=headers()).json()["items"] == []

    bad = client.get(url, params={"since": "yesterday-ish"}, headers=headers())
    assert bad.status_code == 400
