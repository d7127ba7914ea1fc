"""FastAPI route definitions for the clinic agent service."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from agent_service.api.schemas import (
    Envelope,
    HealthResponse,
    ProcessResponse,
    flatten_validation_error,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_orchestrator(request: Request):
    """Retrieve the orchestrator built during the FastAPI lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return orchestrator


def _invalid_envelope(details: dict) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_envelope", "details": details},
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post(
    "/process",
    response_model=ProcessResponse,
    response_model_exclude_none=True,
)
async def process(http_request: Request):
    """Run one inbound message through the agent and return the reply.

    The body is validated here rather than by FastAPI so that a bad
    envelope yields ``400 invalid_envelope`` with every field error.  Past
    validation, the orchestrator absorbs all failures and the response is
    always ``200``.
    """
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        body = await http_request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.info("[%s] Rejected request with a non-JSON body", request_id)
        return _invalid_envelope({"form_errors": ["Body must be valid JSON"], "field_errors": {}})

    try:
        envelope = Envelope.model_validate(body)
    except ValidationError as exc:
        details = flatten_validation_error(exc)
        logger.info(
            "[%s] Rejected envelope: %s", request_id, sorted(details["field_errors"]),
        )
        return _invalid_envelope(details)

    orchestrator = _get_orchestrator(http_request)
    logger.info(
        "[%s] Processing message %s for clinic %s",
        request_id, envelope.correlation_id, envelope.clinic_id,
    )
    return await orchestrator.process(envelope)
