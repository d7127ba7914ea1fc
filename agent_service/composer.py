"""Maps orchestrator results to the ``POST /process`` wire response.

Every path (decision, clarifying short-circuit, policy block, error
fallback) yields the same shape, so the relay in front of this service
never has to special-case failures.
"""

from __future__ import annotations

from typing import Any

import httpx
from anthropic import APITimeoutError

from agent_service.api.schemas import Action, Envelope, ProcessResponse
from agent_service.prompts import CLARIFY_MESSAGE, ERROR_MESSAGE, TIMEOUT_MESSAGE
from agent_service.tools.schemas import Decision


def is_abort(exc: BaseException) -> bool:
    """True when *exc* means the request ran out of time (deadline or client timeout)."""
    return isinstance(exc, (TimeoutError, APITimeoutError, httpx.TimeoutException))


def compose_response(
    envelope: Envelope,
    decision: Decision | None,
    debug: dict[str, Any] | None = None,
) -> ProcessResponse:
    """Build the response for a finished run.

    ``decision`` is ``None`` when the run short-circuited before deciding;
    the patient then gets the clarifying question and no actions.
    """
    if decision is None:
        return ProcessResponse(
            correlation_id=envelope.correlation_id,
            final_message=CLARIFY_MESSAGE,
            actions=[],
            debug=debug,
        )
    return ProcessResponse(
        correlation_id=envelope.correlation_id,
        final_message=decision.message,
        actions=[action.model_copy() for action in decision.actions],
        debug=debug,
    )


def compose_fallback(
    envelope: Envelope,
    exc: BaseException,
    debug: dict[str, Any] | None = None,
) -> ProcessResponse:
    """Build the apologetic reply for a failed run (returned with HTTP 200)."""
    message = TIMEOUT_MESSAGE if is_abort(exc) else ERROR_MESSAGE
    return ProcessResponse(
        correlation_id=envelope.correlation_id,
        final_message=message,
        actions=[
            Action(
                type="log",
                payload={"event": "agent_error", "error": type(exc).__name__},
            ),
        ],
        debug=debug,
    )
