"""Two-step guarded tool-calling orchestrator for the clinic agent.

Architecture:
  Each request runs a compiled LangGraph ``StateGraph`` with four nodes:

    1. **extract_intent**      — forced ``extract_intent`` tool call on the
                                 raw patient message
    2. **gate_check**          — confidence gate; low-confidence or failed
                                 extraction ends the run with a clarifying
                                 question
    3. **decide_next_action**  — forced ``decide_next_action`` tool call on
                                 the serialized intent, with the clinic rules
                                 in the instructions
    4. **policy_override**     — deterministic policy rules that may replace
                                 the model's decision

  Routing:
    extract_intent → gate_check → (passed?) → decide_next_action → policy_override → END
                                → (failed?) → END

  The loop is not open-ended: every model call is hard-wired to one tool and
  counts against ``max_steps``.  Context loading and the graph run share one
  deadline; on expiry or any fault the request degrades to an apologetic
  reply instead of failing.  Outcome records are written fire-and-forget.

  The graph is stateless (no checkpointer): everything a request needs is in
  its envelope.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from agent_service import config
from agent_service.api.schemas import Envelope, ProcessResponse
from agent_service.composer import compose_fallback, compose_response, is_abort
from agent_service.models import ClinicRules, OutcomeRecord
from agent_service.policy import apply_policies
from agent_service.prompts import (
    SAFE_DEFAULT_MESSAGE,
    build_decision_instructions,
    build_extraction_instructions,
)
from agent_service.services.clinic_context import build_knowledge_block, load_clinic_context
from agent_service.services.llm import ToolCallingModel
from agent_service.services.outcome_log import OutcomeLogger
from agent_service.services.store import ClinicStore
from agent_service.tools.schemas import (
    DECIDE_NEXT_ACTION,
    EXTRACT_INTENT,
    TOOL_REGISTRY,
    Decision,
    ExtractedIntent,
)

logger = logging.getLogger(__name__)


# ── Settings ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OrchestratorSettings:
    """Knobs of the bounded loop.  None of them affect the price policy."""

    max_steps: int = 2
    timeout_ms: int = 25_000
    confidence_threshold: float = 0.6
    knowledge_limit: int = 8
    debug: bool = False

    @classmethod
    def from_config(cls) -> OrchestratorSettings:
        return cls(
            max_steps=config.AGENT_MAX_STEPS,
            timeout_ms=config.AGENT_TIMEOUT_MS,
            confidence_threshold=config.AGENT_CONFIDENCE_THRESHOLD,
            knowledge_limit=config.AGENT_KNOWLEDGE_LIMIT,
            debug=config.AGENT_DEBUG,
        )


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict, total=False):
    """The state that flows through the graph for one request.

    ``outcome`` stays ``None`` while the run is on the happy path; the first
    node that short-circuits sets it, and ``policy_override`` sets it to
    ``"decided"``.
    """

    envelope: Envelope
    rules: ClinicRules
    knowledge_block: str
    steps: int
    extracted: ExtractedIntent | None
    decision: Decision | None
    outcome: str | None


def safe_default_decision() -> Decision:
    """Decision used when the decision step yields nothing usable."""
    return Decision(decision_type="ask_missing", message=SAFE_DEFAULT_MESSAGE, actions=[])


# ── Nodes ────────────────────────────────────────────────────────────


def _make_extract_node(model: ToolCallingModel, settings: OrchestratorSettings):
    """Create the node that forces the ``extract_intent`` tool."""
    spec = TOOL_REGISTRY[EXTRACT_INTENT]

    async def extract_node(state: AgentState) -> dict:
        envelope = state["envelope"]
        steps = state.get("steps", 0)
        if steps >= settings.max_steps:
            logger.warning(
                "[%s] Step budget (%d) exhausted before extraction",
                envelope.correlation_id, settings.max_steps,
            )
            return {"outcome": "budget_exhausted"}

        result = await model.invoke_tool(
            spec,
            build_extraction_instructions(state["knowledge_block"]),
            envelope.message_text,
        )
        if not result.ok:
            outcome = "no_tool_call" if result.status == "empty" else "malformed_tool_call"
            return {"steps": steps + 1, "outcome": outcome}
        return {"steps": steps + 1, "extracted": result.value}

    return extract_node


def _make_gate_node(settings: OrchestratorSettings):
    """Create the confidence gate between the two model calls."""

    def gate_node(state: AgentState) -> dict:
        extracted = state.get("extracted")
        if extracted is not None and extracted.confidence < settings.confidence_threshold:
            logger.info(
                "[%s] Extraction confidence %.2f below %.2f; asking to clarify",
                state["envelope"].correlation_id,
                extracted.confidence,
                settings.confidence_threshold,
            )
            return {"outcome": "low_confidence"}
        return {"outcome": state.get("outcome")}

    return gate_node


def _make_decide_node(model: ToolCallingModel, settings: OrchestratorSettings):
    """Create the node that forces the ``decide_next_action`` tool."""
    spec = TOOL_REGISTRY[DECIDE_NEXT_ACTION]

    async def decide_node(state: AgentState) -> dict:
        envelope = state["envelope"]
        steps = state.get("steps", 0)
        if steps >= settings.max_steps:
            logger.warning(
                "[%s] Step budget (%d) exhausted before decision; using safe default",
                envelope.correlation_id, settings.max_steps,
            )
            return {"decision": safe_default_decision()}

        result = await model.invoke_tool(
            spec,
            build_decision_instructions(state["rules"], state["knowledge_block"]),
            state["extracted"].model_dump_json(),
        )
        decision = result.value if result.ok else safe_default_decision()
        return {"steps": steps + 1, "decision": decision}

    return decide_node


def policy_node(state: AgentState) -> dict:
    """Apply the deterministic policy rules to the model's decision."""
    decision = apply_policies(state["extracted"], state["rules"], state["decision"])
    return {"decision": decision, "outcome": "decided"}


# ── Conditional edges ────────────────────────────────────────────────


def route_after_gate(state: AgentState) -> str:
    """Continue to the decision step only if nothing short-circuited."""
    if state.get("outcome") is None and state.get("extracted") is not None:
        return "decide_next_action"
    return END


# ── Graph assembly ───────────────────────────────────────────────────


def create_agent_graph(model: ToolCallingModel, settings: OrchestratorSettings):
    """Build and compile the orchestration graph."""
    graph = StateGraph(AgentState)

    graph.add_node("extract_intent", _make_extract_node(model, settings))
    graph.add_node("gate_check", _make_gate_node(settings))
    graph.add_node("decide_next_action", _make_decide_node(model, settings))
    graph.add_node("policy_override", policy_node)

    graph.set_entry_point("extract_intent")
    graph.add_edge("extract_intent", "gate_check")
    graph.add_conditional_edges(
        "gate_check",
        route_after_gate,
        {"decide_next_action": "decide_next_action", END: END},
    )
    graph.add_edge("decide_next_action", "policy_override")
    graph.add_edge("policy_override", END)

    return graph.compile()


# ── Orchestrator ─────────────────────────────────────────────────────


class AgentOrchestrator:
    """Runs one envelope through context loading, the graph and the composer.

    Dependencies are constructed once and injected, so tests can pass
    doubles for the model and the store.
    """

    def __init__(
        self,
        model: ToolCallingModel,
        store,
        outcome_logger: OutcomeLogger | None = None,
        settings: OrchestratorSettings | None = None,
    ):
        self._model = model
        self._store = store
        self._outcome_logger = outcome_logger or OutcomeLogger(store)
        self._settings = settings or OrchestratorSettings()
        self._graph = create_agent_graph(model, self._settings)

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    @property
    def outcome_logger(self) -> OutcomeLogger:
        return self._outcome_logger

    async def process(self, envelope: Envelope) -> ProcessResponse:
        """Answer *envelope*.  Never raises: failures become an apology."""
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self._settings.timeout_ms / 1000):
                rules, snippets = await load_clinic_context(
                    self._store, envelope.clinic_id, self._settings.knowledge_limit,
                )
                final_state: AgentState = await self._graph.ainvoke(
                    {
                        "envelope": envelope,
                        "rules": rules,
                        "knowledge_block": build_knowledge_block(snippets),
                        "steps": 0,
                        "extracted": None,
                        "decision": None,
                        "outcome": None,
                    }
                )
        except Exception as exc:
            latency_ms = _elapsed_ms(started)
            outcome = "timeout" if is_abort(exc) else "error"
            if outcome == "timeout":
                logger.warning(
                    "[%s] Agent run aborted after %dms (%s)",
                    envelope.correlation_id, latency_ms, type(exc).__name__,
                )
            else:
                logger.exception("[%s] Agent run failed", envelope.correlation_id)
            self._log_outcome(envelope, outcome, None, None, latency_ms)
            debug = None
            if self._settings.debug:
                debug = {"note": outcome, "error": str(exc), "latency_ms": latency_ms}
            return compose_fallback(envelope, exc, debug=debug)

        latency_ms = _elapsed_ms(started)
        extracted = final_state.get("extracted")
        decision = final_state.get("decision") if final_state.get("outcome") == "decided" else None
        outcome = final_state.get("outcome") or "error"
        self._log_outcome(envelope, outcome, extracted, decision, latency_ms)

        debug = None
        if self._settings.debug:
            debug = _debug_payload(final_state, outcome, latency_ms)
        return compose_response(envelope, decision, debug=debug)

    def _log_outcome(
        self,
        envelope: Envelope,
        outcome: str,
        extracted: ExtractedIntent | None,
        decision: Decision | None,
        latency_ms: int,
    ) -> None:
        record = OutcomeRecord(
            clinic_id=envelope.clinic_id,
            correlation_id=envelope.correlation_id,
            outcome=outcome,
            intent_group=extracted.intent_group if extracted else None,
            intent=extracted.intent if extracted else None,
            confidence=extracted.confidence if extracted else None,
            decision_type=decision.decision_type if decision else None,
            latency_ms=latency_ms,
        )
        try:
            self._outcome_logger.submit(record)
        except Exception:
            logger.warning(
                "[%s] Could not schedule outcome log", envelope.correlation_id, exc_info=True,
            )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _debug_payload(state: AgentState, outcome: str, latency_ms: int) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "note": outcome,
        "steps": state.get("steps", 0),
        "latency_ms": latency_ms,
    }
    if state.get("extracted") is not None:
        payload["extracted"] = state["extracted"].model_dump(mode="json", exclude_none=True)
    if state.get("decision") is not None:
        payload["decision"] = state["decision"].model_dump(mode="json", exclude_none=True)
    return payload


def build_orchestrator(settings: OrchestratorSettings | None = None) -> AgentOrchestrator:
    """Wire the production dependencies (Anthropic model, Supabase store)."""
    store = ClinicStore()
    orchestrator = AgentOrchestrator(
        model=ToolCallingModel(),
        store=store,
        outcome_logger=OutcomeLogger(store),
        settings=settings or OrchestratorSettings.from_config(),
    )
    logger.debug(
        "Agent orchestrator ready — model: %s, settings: %s",
        config.MODEL_NAME, orchestrator.settings,
    )
    return orchestrator
