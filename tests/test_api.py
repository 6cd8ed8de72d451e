"""HTTP API tests (FastAPI TestClient).

The lifespan is not run: each test installs a RefinementOrchestrator with a
mocked runner on app.state directly.

Tests:
- refine endpoints return 200 with status success / clarification / error
- success payload carries the diff summary and the updated conversation
- nested-flow refine uses its own conversation
- cancel, conversation get/clear, /diff, /health
- 422 on malformed bodies, 401 with COPILOT_API_KEY set
"""

from __future__ import annotations

import json
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from workflow_copilot.agent.orchestrator import RefinementOrchestrator
from workflow_copilot.agent.schema import SchemaLoadResult
from workflow_copilot.agent.skills import SkillCatalogue
from workflow_copilot.agent.state import ConversationStore, RefinementTarget
from workflow_copilot.api import app, limiter
from workflow_copilot.errors import ErrorCode
from workflow_copilot.runner import CancelResult, ExecutionError, ExecutionResult

WORKFLOW = {
    "id": "wf-1",
    "name": "Demo",
    "nodes": [{"id": "start-1", "type": "start"}, {"id": "end-1", "type": "end"}],
    "connections": [],
}

PROPOSED = {
    "id": "wf-1",
    "name": "Demo v2",
    "nodes": [
        {"id": "start-1", "type": "start"},
        {"id": "p1", "type": "prompt", "data": {"description": "Greet"}},
        {"id": "end-1", "type": "end"},
    ],
    "connections": [{"from": "start-1", "to": "p1"}, {"from": "p1", "to": "end-1"}],
}


def _install(run_result: ExecutionResult) -> MagicMock:
    runner = MagicMock()
    runner.run = AsyncMock(return_value=run_result)
    runner.cancel = AsyncMock(return_value=CancelResult(cancelled=False))
    runner.registry = []
    app.state.orchestrator = RefinementOrchestrator(
        runner=runner,
        schema_loader=AsyncMock(return_value=SchemaLoadResult(success=True, schema={})),
        skill_scanner=AsyncMock(return_value=SkillCatalogue()),
    )
    return runner


@pytest.fixture(autouse=True)
def _app_state():
    limiter.enabled = False
    app.state.conversations = ConversationStore()
    yield
    for attr in ("orchestrator", "conversations"):
        if hasattr(app.state, attr):
            delattr(app.state, attr)
    limiter.enabled = True


@pytest.fixture
def client():
    return TestClient(app)


# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------


class TestRefineWorkflowEndpoint:

    def test_success_includes_diff_and_conversation(self, client):
        _install(ExecutionResult(success=True, elapsed_ms=1, output=json.dumps(PROPOSED)))

        resp = client.post("/workflows/wf-1/refine", json={"workflow": WORKFLOW, "message": "Add a greeting"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["workflow"]["name"] == "Demo v2"
        assert body["diff"]["isNewWorkflow"] is True
        assert body["diff"]["nameChange"] == {"from": "Demo", "to": "Demo v2"}
        assert [n["id"] for n in body["diff"]["addedNodes"]] == ["p1"]
        assert body["conversation"]["currentIteration"] == 1
        assert body["correlationId"]

    def test_clarification(self, client):
        _install(ExecutionResult(success=True, elapsed_ms=1, output="Which option do you mean?"))
        resp = client.post("/workflows/wf-1/refine", json={"workflow": WORKFLOW, "message": "change it"})
        body = resp.json()
        assert resp.status_code == 200
        assert body["status"] == "clarification"
        assert body["message"] == "Which option do you mean?"
        assert "diff" not in body

    def test_error_is_still_200(self, client):
        error = ExecutionError(code=ErrorCode.TIMEOUT, message="timed out", details="Timeout after 1000ms")
        _install(ExecutionResult(success=False, elapsed_ms=1, error=error))

        resp = client.post("/workflows/wf-1/refine", json={"workflow": WORKFLOW, "message": "x"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "error"
        assert body["code"] == "TIMEOUT"
        assert body["conversation"]["currentIteration"] == 0

    def test_correlation_id_and_options_forwarded(self, client):
        runner = _install(ExecutionResult(success=True, elapsed_ms=1, output=json.dumps(PROPOSED)))
        client.post(
            "/workflows/wf-1/refine",
            json={"workflow": WORKFLOW, "message": "x", "correlation_id": "req-9", "timeout_ms": 5000},
        )
        _, timeout, correlation_id = runner.run.await_args.args
        assert timeout == 5000
        assert correlation_id == "req-9"

    def test_conversation_accumulates(self, client):
        _install(ExecutionResult(success=True, elapsed_ms=1, output=json.dumps(PROPOSED)))
        for _ in range(2):
            client.post("/workflows/wf-1/refine", json={"workflow": WORKFLOW, "message": "x"})
        assert app.state.conversations.get(RefinementTarget("wf-1")).current_iteration == 2

    @pytest.mark.parametrize("body", [
        {"workflow": WORKFLOW},
        {"workflow": WORKFLOW, "message": ""},
        {"message": "x"},
        {"workflow": WORKFLOW, "message": "x", "timeout_ms": 10},
    ])
    def test_malformed_body_is_422(self, client, body):
        _install(ExecutionResult(success=True, elapsed_ms=1, output="{}"))
        assert client.post("/workflows/wf-1/refine", json=body).status_code == 422

    def test_503_without_orchestrator(self, client):
        resp = client.post("/workflows/wf-1/refine", json={"workflow": WORKFLOW, "message": "x"})
        assert resp.status_code == 503


class TestRefineNestedFlowEndpoint:

    def test_prohibited_node_type(self, client):
        output = json.dumps({
            "nodes": [
                {"id": "start-1", "type": "start"},
                {"id": "ask-1", "type": "askUserQuestion"},
                {"id": "end-1", "type": "end"},
            ],
            "connections": [],
        })
        _install(ExecutionResult(success=True, elapsed_ms=1, output=output))

        resp = client.post(
            "/workflows/wf-1/nested-flows/flow-a/refine",
            json={"nodes": WORKFLOW["nodes"], "connections": [], "message": "ask the user"},
        )

        body = resp.json()
        assert body["status"] == "error"
        assert body["code"] == "PROHIBITED_NODE_TYPE"
        assert "ask-1" in body["details"]

    def test_non_object_node_is_typed_error(self, client):
        output = json.dumps({"nodes": ["oops", *WORKFLOW["nodes"]], "connections": []})
        _install(ExecutionResult(success=True, elapsed_ms=1, output=output))

        resp = client.post(
            "/workflows/w/nested-flows/n/refine",
            json={"nodes": WORKFLOW["nodes"], "connections": [], "message": "tidy up"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "error"
        assert body["code"] == "PARSE_ERROR"
        assert "diff" not in body

    def test_uses_separate_conversation(self, client):
        output = json.dumps({"nodes": WORKFLOW["nodes"], "connections": []})
        _install(ExecutionResult(success=True, elapsed_ms=1, output=output))

        resp = client.post(
            "/workflows/wf-1/nested-flows/flow-a/refine",
            json={"nodes": WORKFLOW["nodes"], "connections": [], "message": "tidy up"},
        )

        assert resp.json()["status"] == "success"
        assert resp.json()["diff"]["totalChanges"] == 0
        store = app.state.conversations
        assert store.get(RefinementTarget("wf-1", "flow-a")).current_iteration == 1
        assert store.get(RefinementTarget("wf-1")) is None


# ---------------------------------------------------------------------------
# Cancel / conversation / diff / health
# ---------------------------------------------------------------------------


class TestOtherEndpoints:

    def test_cancel_unknown(self, client):
        _install(ExecutionResult(success=True, elapsed_ms=1, output="{}"))
        resp = client.post("/refinements/nope/cancel")
        assert resp.status_code == 200
        assert resp.json() == {"correlationId": "nope", "cancelled": False, "elapsedMs": None}

    def test_get_and_clear_conversation(self, client):
        history = app.state.conversations.get_or_create(RefinementTarget("wf-1", "flow-a"))
        history.record_round_trip("u", "a")

        got = client.get("/workflows/wf-1/conversation", params={"nested_flow_id": "flow-a"}).json()
        assert got["currentIteration"] == 1
        assert got["needsResetWarning"] is False

        cleared = client.delete("/workflows/wf-1/conversation", params={"nested_flow_id": "flow-a"}).json()
        assert cleared["cleared"] is True
        assert cleared["conversation"]["messages"] == []

    def test_unknown_conversation_is_empty(self, client):
        got = client.get("/workflows/unknown/conversation").json()
        assert got == {"messages": [], "currentIteration": 0, "needsResetWarning": False}

    def test_diff_endpoint(self, client):
        resp = client.post("/diff", json={
            "baseline_nodes": PROPOSED["nodes"],
            "baseline_connections": PROPOSED["connections"],
            "baseline_name": "Demo v2",
            "proposed": PROPOSED,
        })
        assert resp.status_code == 200
        assert resp.json()["totalChanges"] == 0
        assert resp.json()["hasChanges"] is False

    def test_health(self, client):
        _install(ExecutionResult(success=True, elapsed_ms=1, output="{}"))
        body = client.get("/health").json()
        assert body["api"] == "ok"
        assert body["active_refinements"] == 0


class TestApiKey:

    def test_missing_key_rejected(self, client):
        with patch.dict(os.environ, {"COPILOT_API_KEY": "secret"}):
            assert client.get("/health").status_code == 401

    def test_valid_key_accepted(self, client):
        with patch.dict(os.environ, {"COPILOT_API_KEY": "secret"}):
            resp = client.get("/health", headers={"Authorization": "Bearer secret"})
        assert resp.status_code == 200
