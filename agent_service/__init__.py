"""agent-service — conversational agent proxy for a clinic messaging pipeline.

Architecture Overview
=====================

An upstream worker posts one normalized inbound message (the *envelope*) to
``POST /process``.  The service answers with the reply to send back to the
patient plus a list of side-effect *actions* for the worker to execute.

1. **Validation** — the envelope is checked field by field; a bad payload is
   the only case answered with a non-200 status (``400 invalid_envelope``).
2. **Clinic context** — the clinic's rules (price policy, hours, policy text)
   and up to eight knowledge snippets are read from Supabase.  A clinic
   without rules gets documented defaults.
3. **Orchestration** — a LangGraph ``StateGraph`` forces two tool calls on
   Claude: ``extract_intent`` then ``decide_next_action``, with a confidence
   gate in between.  Model output is validated against the tool schemas and
   every non-compliant result maps to a fixed fallback.
4. **Policy guard** — deterministic rules re-check the decision; billing
   questions for clinics that do not share prices always end in
   ``block_price``.
5. **Outcome log** — an audit row is written fire-and-forget.

Key Design Decisions
--------------------
- **Bounded steps**: at most ``AGENT_MAX_STEPS`` model calls per request,
  each hard-wired to one tool.
- **Single deadline**: ``AGENT_TIMEOUT_MS`` covers context loading and both
  model calls; expiry yields a timeout-specific apology.
- **Errors never reach the patient**: past validation, every failure becomes
  an HTTP 200 with an apologetic ``final_message``.
- **Injected dependencies**: the model gateway, the store and the outcome
  logger are built once in the FastAPI lifespan and passed to the
  orchestrator, so tests can substitute doubles.

Package Structure
-----------------
- ``agent_service/agent.py`` — orchestrator and LangGraph definition
- ``agent_service/policy.py`` — deterministic policy rules
- ``agent_service/composer.py`` — wire response and error fallback
- ``agent_service/prompts.py`` — instructions, few-shot examples, canned replies
- ``agent_service/config.py`` — configuration from environment variables
- ``agent_service/server.py`` — FastAPI application
- ``agent_service/main.py`` — CLI chat interface
- ``agent_service/services/`` — Supabase store, context loader, model gateway,
  outcome logger, metrics
- ``agent_service/tools/`` — tool schema registry
- ``agent_service/api/`` — FastAPI routes and Pydantic schemas
"""
