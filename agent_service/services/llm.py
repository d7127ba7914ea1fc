"""Forced tool-call gateway to the language model.

Every call binds exactly one tool and forces it with ``tool_choice``, so the
model cannot answer in free text or chain extra tools.  What comes back is
still untrusted: the result is tagged ``ok`` (arguments validated against
the tool's schema), ``empty`` (no tool call at all) or ``malformed``
(unparseable arguments, wrong tool, or schema violations), and the caller
maps each tag to its own fallback.

Transport failures and cancellation are *not* tagged; they propagate so the
orchestrator can tell an aborted call from a non-compliant one.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel

from agent_service.config import ANTHROPIC_API_KEY, MODEL_MAX_TOKENS, MODEL_NAME
from agent_service.services.metrics import metrics
from agent_service.tools.schemas import ToolSpec, parse_tool_arguments

logger = logging.getLogger(__name__)

ToolCallStatus = Literal["ok", "empty", "malformed"]


@dataclass(frozen=True)
class ToolCallResult:
    """Tagged outcome of one forced tool call."""

    status: ToolCallStatus
    value: BaseModel | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _build_llm() -> ChatAnthropic:
    """Build the chat model shared by both steps."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,  # Deterministic extraction and decisions
        max_tokens=MODEL_MAX_TOKENS,
        max_retries=1,
    )


def _coerce_arguments(args: Any) -> dict[str, Any] | None:
    """Return tool arguments as a dict, decoding a JSON string if needed."""
    if isinstance(args, dict):
        return args
    if isinstance(args, str):
        try:
            decoded = json.loads(args)
        except (json.JSONDecodeError, ValueError):
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def read_tool_call(message: Any, spec: ToolSpec) -> ToolCallResult:
    """Classify the model's reply for the forced tool *spec*."""
    tool_calls = getattr(message, "tool_calls", None) or []
    invalid_calls = getattr(message, "invalid_tool_calls", None) or []

    for call in tool_calls:
        if call.get("name") != spec.name:
            continue
        arguments = _coerce_arguments(call.get("args"))
        if arguments is None:
            return ToolCallResult("malformed", detail="arguments are not a JSON object")
        value = parse_tool_arguments(spec, arguments)
        if value is None:
            return ToolCallResult("malformed", detail="arguments violate the tool schema")
        return ToolCallResult("ok", value=value)

    if tool_calls:
        names = ", ".join(str(call.get("name")) for call in tool_calls)
        return ToolCallResult("malformed", detail=f"unexpected tool call(s): {names}")
    if invalid_calls:
        return ToolCallResult("malformed", detail="tool call arguments could not be parsed")
    return ToolCallResult("empty", detail="no tool call")


class ToolCallingModel:
    """Invokes the chat model with one forced tool per call.

    The chat model is injectable so tests can substitute a double; bound
    runnables are built once per tool and reused across requests.
    """

    def __init__(self, llm: Any | None = None):
        self._llm = llm if llm is not None else _build_llm()
        self._bound: dict[str, Any] = {}

    def _bind(self, spec: ToolSpec):
        bound = self._bound.get(spec.name)
        if bound is None:
            bound = self._llm.bind_tools([spec.definition], tool_choice=spec.name)
            self._bound[spec.name] = bound
        return bound

    async def invoke_tool(
        self,
        spec: ToolSpec,
        instructions: str,
        user_input: str,
    ) -> ToolCallResult:
        """Call the model with *spec* forced and return the tagged result."""
        messages = [SystemMessage(content=instructions), HumanMessage(content=user_input)]
        t0 = time.perf_counter()
        try:
            response = await self._bind(spec).ainvoke(messages)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", spec.name,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", spec.name, latency_ms=elapsed)

        result = read_tool_call(response, spec)
        if not result.ok:
            logger.warning(
                "Model returned %s result for %s: %s", result.status, spec.name, result.detail,
            )
        return result
