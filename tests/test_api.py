"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from contextlib import ExitStack
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from agent_service.agent import AgentOrchestrator, OrchestratorSettings
from agent_service.models import ClinicRules
from agent_service.prompts import CLARIFY_MESSAGE, ERROR_MESSAGE, PRICE_BLOCKED_MESSAGE
from agent_service.server import app
from agent_service.services.llm import ToolCallingModel


def _tool_message(name: str, args: dict) -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": "call_1"}])


def _intent(intent_group="scheduling", confidence=0.9) -> AIMessage:
    return _tool_message(
        "extract_intent",
        {
            "intent_group": intent_group,
            "intent": "book_appointment",
            "slots": {},
            "missing_fields": ["patient_name"],
            "confidence": confidence,
        },
    )


def _decision(decision_type="ask_missing", message="What's your name?") -> AIMessage:
    return _tool_message(
        "decide_next_action",
        {"decision_type": decision_type, "message": message, "actions": []},
    )


@pytest.fixture
def run_app(make_chat_model, make_store):
    """Start the app with an orchestrator built from doubles (mirrors the lifespan).

    ``app.state`` is shared, so only the most recently started client is live.
    Leaving a client (``client.__exit__``) drains pending outcome writes.
    """
    with ExitStack() as stack:

        def _start(*messages, rules=None, **settings):
            store = make_store(rules=rules)
            orchestrator = AgentOrchestrator(
                model=ToolCallingModel(llm=make_chat_model(*messages)),
                store=store,
                settings=OrchestratorSettings(**settings),
            )
            stack.enter_context(
                patch("agent_service.server.build_orchestrator", return_value=orchestrator),
            )
            client = stack.enter_context(TestClient(app))
            return client, store

        yield _start


class TestHealthEndpoint:
    def test_health_returns_ok(self, run_app):
        client, _ = run_app()
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "service": "agent-service"}


class TestProcessValidation:
    def test_short_correlation_id_is_rejected(self, run_app, envelope_body):
        client, _ = run_app()
        envelope_body["correlation_id"] = "abc"
        response = client.post("/process", json=envelope_body)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "invalid_envelope"
        assert "correlation_id" in data["details"]["field_errors"]

    def test_every_violated_field_is_reported(self, run_app):
        client, _ = run_app()
        response = client.post(
            "/process",
            json={"correlation_id": "abc", "from": "123", "message_text": ""},
        )

        assert response.status_code == 400
        fields = response.json()["details"]["field_errors"]
        assert set(fields) == {"correlation_id", "clinic_id", "from", "message_text"}

    def test_non_string_field_is_rejected(self, run_app, envelope_body):
        client, _ = run_app()
        envelope_body["clinic_id"] = 42
        response = client.post("/process", json=envelope_body)
        assert response.status_code == 400
        assert "clinic_id" in response.json()["details"]["field_errors"]

    def test_non_object_body_is_rejected(self, run_app):
        client, _ = run_app()
        response = client.post("/process", json=["not", "an", "envelope"])
        assert response.status_code == 400
        assert response.json()["details"]["form_errors"]

    def test_invalid_json_is_rejected(self, run_app):
        client, _ = run_app()
        response = client.post(
            "/process", content=b"{not json", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_envelope"


class TestProcessEndpoint:
    def test_valid_envelope_returns_reply(self, run_app, envelope_body):
        client, _ = run_app(_intent(), _decision(), rules=ClinicRules(clinic_id="clinic-1"))
        response = client.post("/process", json=envelope_body)

        assert response.status_code == 200
        data = response.json()
        assert data["correlation_id"] == "corr-123456"
        assert data["final_message"] == "What's your name?"
        assert data["actions"] == []
        assert "debug" not in data

    def test_low_confidence_returns_clarifying_question(self, run_app, envelope_body):
        client, store = run_app(_intent(confidence=0.59), rules=ClinicRules(clinic_id="clinic-1"))
        response = client.post("/process", json=envelope_body)
        client.__exit__(None, None, None)

        assert response.status_code == 200
        assert response.json()["final_message"] == CLARIFY_MESSAGE
        assert response.json()["actions"] == []
        assert store.logged[0]["decision_type"] is None

    def test_price_block_for_default_rules(self, run_app, envelope_body):
        client, store = run_app(
            _intent(intent_group="billing"),
            _decision(decision_type="proceed", message="It costs $50."),
            rules=None,
            debug=True,
        )
        response = client.post("/process", json=envelope_body)
        client.__exit__(None, None, None)

        data = response.json()
        assert response.status_code == 200
        assert data["final_message"] == PRICE_BLOCKED_MESSAGE
        assert data["debug"]["decision"]["decision_type"] == "block_price"
        assert data["debug"]["decision"]["confidence"] == 1
        assert data["actions"][0]["type"] == "log"
        assert store.logged[0]["decision_type"] == "block_price"

    def test_internal_failure_still_returns_200(self, run_app, envelope_body):
        client, _ = run_app(RuntimeError("LLM exploded"), rules=ClinicRules(clinic_id="clinic-1"))
        response = client.post("/process", json=envelope_body)

        assert response.status_code == 200
        data = response.json()
        assert data["final_message"] == ERROR_MESSAGE
        assert "LLM exploded" not in response.text
        assert isinstance(data["actions"], list)

    def test_identical_requests_give_identical_bodies(self, run_app, envelope_body):
        rules = ClinicRules(clinic_id="clinic-1")
        first, _ = run_app(_intent(), _decision(), rules=rules)
        body_a = first.post("/process", json=envelope_body).content
        first.__exit__(None, None, None)

        second, _ = run_app(_intent(), _decision(), rules=rules)
        body_b = second.post("/process", json=envelope_body).content
        assert body_a == body_b

    def test_response_includes_request_id_header(self, run_app, envelope_body):
        client, _ = run_app(_intent(), _decision(), rules=ClinicRules(clinic_id="clinic-1"))
        response = client.post("/process", json=envelope_body, headers={"X-Request-ID": "trace-1"})
        assert response.headers["X-Request-ID"] == "trace-1"


class TestAgentNotReady:
    def test_returns_503_when_orchestrator_not_initialised(self, envelope_body):
        """Requests that arrive before the lifespan has wired the agent get 503."""
        app.state.orchestrator = None
        response = TestClient(app).post("/process", json=envelope_body)
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()
