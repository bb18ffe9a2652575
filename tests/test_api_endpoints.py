import pytest
from fastapi.testclient import TestClient

from voice_agent_planner.app import create_app
from voice_agent_planner.config import OrchestratorConfig
from voice_agent_planner.models.enums import PlanEventKind
from voice_agent_planner.models.plan import StepDeferral
from voice_agent_planner.notifications.sink import RecordingSink
from voice_agent_planner.registry.builtin import GenericActionExecutor
from voice_agent_planner.registry.in_memory import InMemoryRegistry

SEARCH_THEN_WRITE = {
    "user_request": "Research X and write a summary",
    "steps": [
        {"type": "web_search", "description": "Find articles about X"},
        {"type": "document_create", "description": "Write a summary"},
    ],
    "user_id": "u1",
}


class TestPlanAPI:
    @pytest.fixture
    def sink(self):
        return RecordingSink()

    @pytest.fixture
    def registry(self):
        registry = InMemoryRegistry({"generic_action": GenericActionExecutor()})
        registry.register_function(
            "web_search", lambda step, context: {"digest": f"Top results for: {step.description}"}
        )
        registry.register_function(
            "document_create",
            lambda step, context: {"title": "Summary", "sources_used": len(context.prior_results)},
        )
        registry.register_function(
            "client_action", lambda step, context: StepDeferral(reason="client")
        )
        return registry

    @pytest.fixture
    def client(self, registry, sink):
        app = create_app(registry=registry, sink=sink, config=OrchestratorConfig())
        with TestClient(app) as client:
            yield client

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "sessions": 0}

    def test_create_and_wait(self, client, sink):
        response = client.post("/sessions/s1/plans?wait=true", json=SEARCH_THEN_WRITE)
        assert response.status_code == 201

        plan = response.json()
        assert plan["phase"] == "finished"
        assert plan["is_complete"] is True
        assert plan["session_id"] == "s1"
        assert [s["status"] for s in plan["steps"]] == ["completed", "completed"]
        assert plan["steps"][1]["result"] == {"title": "Summary", "sources_used": 1}
        assert plan["progress"]["completed"] == 2
        assert sink.kinds()[0] == PlanEventKind.PLAN_CREATED
        assert sink.kinds()[-1] == PlanEventKind.PLAN_FINISHED

        current = client.get("/sessions/s1/plans/current")
        assert current.status_code == 200
        assert current.json()["id"] == plan["id"]

    def test_unknown_step_type(self, client):
        body = {"user_request": "Fly", "steps": [{"type": "teleport", "description": "go"}]}
        plan = client.post("/sessions/s1/plans?wait=true", json=body).json()
        assert plan["is_complete"] is True
        assert plan["steps"][0]["error"]["code"] == "step.unknown_type"

    def test_invalid_plan(self, client):
        body = {"user_request": "Nothing", "steps": []}
        response = client.post("/sessions/s1/plans", json=body)
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "plan.invalid"

    def test_unknown_session(self, client):
        response = client.get("/sessions/ghost/plans/current")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "session.not_found"

    def test_report_result_for_deferred_step(self, client):
        body = {"user_request": "Ask", "steps": [{"type": "client_action", "description": "confirm"}]}
        plan = client.post("/sessions/s1/plans?wait=true", json=body).json()
        assert plan["steps"][0]["status"] == "in_progress"

        step_id = plan["steps"][0]["id"]
        response = client.post(
            f"/sessions/s1/plans/current/steps/{step_id}/result",
            json={"status": "completed", "result": {"confirmed": True}},
        )
        assert response.status_code == 200
        updated = response.json()
        assert updated["is_complete"] is True
        assert updated["steps"][0]["result"] == {"confirmed": True}

        again = client.post(
            f"/sessions/s1/plans/current/steps/{step_id}/result",
            json={"status": "completed"},
        )
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "step.invalid_transition"

    def test_report_result_for_unknown_step(self, client):
        client.post("/sessions/s1/plans?wait=true", json=SEARCH_THEN_WRITE)
        response = client.post(
            "/sessions/s1/plans/current/steps/step_missing/result",
            json={"status": "failed", "error": {"code": "client.error", "detail": "x"}},
        )
        assert response.status_code == 404

    def test_cancel(self, client):
        body = {
            "user_request": "Ask",
            "steps": [
                {"type": "client_action", "description": "confirm"},
                {"type": "generic_action", "description": "after"},
            ],
        }
        client.post("/sessions/s1/plans?wait=true", json=body)

        response = client.post("/sessions/s1/plans/current/cancel", json={"reason": "User hung up"})
        assert response.status_code == 200
        plan = response.json()
        assert plan["is_complete"] is True
        assert [s["error"]["code"] for s in plan["steps"]] == ["plan.cancelled", "plan.cancelled"]
        assert plan["steps"][0]["error"]["detail"] == "User hung up"

    def test_history(self, client):
        first = client.post("/sessions/s1/plans?wait=true", json=SEARCH_THEN_WRITE).json()
        client.post("/sessions/s1/plans?wait=true", json=SEARCH_THEN_WRITE)

        history = client.get("/sessions/s1/plans/history").json()
        assert [p["id"] for p in history] == [first["id"]]

    def test_metrics(self, client):
        assert client.get("/metrics").text == "No metrics yet."

        client.post("/sessions/s1/plans?wait=true", json=SEARCH_THEN_WRITE)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "### Plan metrics" in response.text
        assert "- **steps_completed**: 2" in response.text


class TestRejectPolicyAPI:
    def test_busy_session_conflict(self):
        registry = InMemoryRegistry()
        registry.register_function("client_action", lambda step, context: StepDeferral())
        app = create_app(
            registry=registry,
            sink=RecordingSink(),
            config=OrchestratorConfig(supersede_policy="reject"),
        )
        body = {"user_request": "Ask", "steps": [{"type": "client_action", "description": "confirm"}]}
        with TestClient(app) as client:
            client.post("/sessions/s1/plans?wait=true", json=body)
            response = client.post("/sessions/s1/plans", json=body)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "plan.in_progress"
