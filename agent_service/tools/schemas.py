"""Tool schema registry: the two structured-output contracts of the agent.

Both contracts are pydantic models with ``extra="forbid"`` so that the JSON
schema handed to the model carries ``additionalProperties: false`` and the
same model validates whatever arguments come back.  The model is untrusted:
arguments are validated here even though the tool is declared strict.

The registry is read-only and shared across requests.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agent_service.api.schemas import Action

EXTRACT_INTENT = "extract_intent"
DECIDE_NEXT_ACTION = "decide_next_action"

IntentGroup = Literal[
    "scheduling",
    "billing",
    "procedures",
    "clinical",
    "test_results",
    "general_info",
    "other",
]

DecisionType = Literal["ask_missing", "block_price", "handoff", "proceed"]


class Slots(BaseModel):
    """Named optional fields the extractor may fill from the message."""

    model_config = ConfigDict(extra="forbid")

    # Patient identity
    patient_name: str | None = None
    patient_birth_date: str | None = None
    patient_document: str | None = None
    # Scheduling preferences
    specialty: str | None = None
    doctor_name: str | None = None
    preferred_date: str | None = None
    preferred_time: str | None = None
    # Procedure / clinical
    procedure_name: str | None = None
    symptoms: str | None = None
    urgency: str | None = None
    # Billing
    insurance_plan: str | None = None
    payment_method: str | None = None
    # Test results
    test_name: str | None = None
    test_date: str | None = None


class ExtractedIntent(BaseModel):
    """Output of ``extract_intent``."""

    model_config = ConfigDict(extra="forbid")

    intent_group: IntentGroup
    intent: str = Field(..., min_length=1, description="Short snake_case intent label")
    slots: Slots = Field(default_factory=Slots)
    missing_fields: list[str] = Field(
        default_factory=list,
        description="Slot names needed for this intent that the message does not provide",
    )
    confidence: float = Field(..., ge=0, le=1)


class Decision(BaseModel):
    """Output of ``decide_next_action``; may be replaced by a policy rule."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    decision_type: DecisionType
    message: str = Field(..., min_length=1, description="Short reply shown to the patient")
    actions: list[Action] = Field(default_factory=list)
    confidence: float | None = Field(None, ge=0, le=1)


@dataclass(frozen=True)
class ToolSpec:
    """A forced tool: its Anthropic definition and the model that validates it."""

    name: str
    description: str
    model: type[BaseModel]

    @property
    def definition(self) -> dict[str, Any]:
        """Tool definition in the shape ``ChatAnthropic.bind_tools`` accepts."""
        schema = self.model.model_json_schema()
        schema.pop("title", None)
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": schema,
        }


TOOL_REGISTRY: MappingProxyType[str, ToolSpec] = MappingProxyType(
    {
        EXTRACT_INTENT: ToolSpec(
            name=EXTRACT_INTENT,
            description=(
                "Extract the intent and structured data from a patient's message "
                "to a clinic receptionist."
            ),
            model=ExtractedIntent,
        ),
        DECIDE_NEXT_ACTION: ToolSpec(
            name=DECIDE_NEXT_ACTION,
            description=(
                "Decide the receptionist's next step for an extracted intent and "
                "write the short reply to send to the patient."
            ),
            model=Decision,
        ),
    }
)


def parse_tool_arguments(spec: ToolSpec, arguments: Any) -> BaseModel | None:
    """Validate raw tool arguments against *spec*; ``None`` if they do not fit."""
    if not isinstance(arguments, dict):
        return None
    try:
        return spec.model.model_validate(arguments)
    except ValidationError:
        return None
