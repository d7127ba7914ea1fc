"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class Envelope(BaseModel):
    """Normalized inbound message handed over by the upstream worker.

    ``from`` is a Python keyword, so the sender lives on ``sender`` and is
    read from / written to the ``from`` key on the wire.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        strict=True,
    )

    correlation_id: str = Field(..., min_length=6, description="Opaque tracing token")
    clinic_id: str = Field(..., min_length=1, description="Tenant identifier")
    sender: str = Field(..., alias="from", min_length=5, description="Sender address")
    message_text: str = Field(..., min_length=1, description="The patient's message")
    phone_number_id: str | None = Field(None, description="Channel identifier")
    received_at_iso: str | None = Field(None, description="Upstream receive timestamp")


class Action(BaseModel):
    """A side effect for the caller to execute after replying."""

    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., min_length=1)
    payload: dict[str, Any] | None = None


class ProcessResponse(BaseModel):
    """Response of ``POST /process`` on every non-validation path."""

    correlation_id: str
    final_message: str = Field(..., min_length=1)
    actions: list[Action] = Field(default_factory=list)
    debug: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool = True
    service: str = "agent-service"


def flatten_validation_error(exc: ValidationError) -> dict[str, Any]:
    """Group pydantic errors per top-level field.

    Returns ``{"form_errors": [...], "field_errors": {field: [msg, ...]}}``
    so the worker sees every violated constraint, not only the first one.
    """
    form_errors: list[str] = []
    field_errors: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = error.get("loc") or ()
        if loc:
            field_errors.setdefault(str(loc[0]), []).append(error["msg"])
        else:
            form_errors.append(error["msg"])
    return {"form_errors": form_errors, "field_errors": field_errors}
