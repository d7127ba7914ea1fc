"""Domain records shared by the context loader, orchestrator and logger."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Outcome = Literal[
    "decided",
    "low_confidence",
    "no_tool_call",
    "malformed_tool_call",
    "budget_exhausted",
    "timeout",
    "error",
]


class ClinicRules(BaseModel):
    """Per-clinic configuration, one row of ``clinic_settings``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    clinic_id: str
    allow_prices: bool = False
    timezone: str = "America/Cuiaba"
    business_hours: dict[str, Any] = Field(default_factory=dict)
    policies_text: str = ""


class KnowledgeSnippet(BaseModel):
    """A short ``{title, content}`` fact injected into model context."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    title: str = ""
    content: str = ""


class OutcomeRecord(BaseModel):
    """Audit row appended to ``agent_outcomes`` after every request."""

    model_config = ConfigDict(frozen=True)

    clinic_id: str
    correlation_id: str
    outcome: Outcome
    intent_group: str | None = None
    intent: str | None = None
    confidence: float | None = None
    decision_type: str | None = None
    latency_ms: int = 0

    def to_row(self) -> dict[str, Any]:
        """Return the JSON-serialisable row for the store."""
        return self.model_dump(mode="json")
