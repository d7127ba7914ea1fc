"""Tests for the envelope schema and the tool schema registry."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from agent_service.api.schemas import Envelope, flatten_validation_error
from agent_service.tools.schemas import (
    DECIDE_NEXT_ACTION,
    EXTRACT_INTENT,
    TOOL_REGISTRY,
    Decision,
    ExtractedIntent,
    parse_tool_arguments,
)


class TestEnvelope:
    def test_reads_sender_from_wire_key(self, envelope_body):
        envelope = Envelope.model_validate(envelope_body)
        assert envelope.sender == "5565999990000"
        assert envelope.model_dump(by_alias=True)["from"] == "5565999990000"

    def test_optional_fields_may_be_omitted(self, envelope_body):
        del envelope_body["phone_number_id"]
        del envelope_body["received_at_iso"]
        envelope = Envelope.model_validate(envelope_body)
        assert envelope.phone_number_id is None
        assert envelope.received_at_iso is None

    def test_empty_message_is_rejected(self, envelope_body):
        envelope_body["message_text"] = ""
        with pytest.raises(ValidationError):
            Envelope.model_validate(envelope_body)

    def test_padded_values_are_kept_as_sent(self, envelope_body):
        envelope_body["correlation_id"] = " abc12 "
        envelope = Envelope.model_validate(envelope_body)
        assert envelope.correlation_id == " abc12 "

    def test_unknown_keys_are_ignored(self, envelope_body):
        envelope_body["extra"] = "ignored"
        envelope = Envelope.model_validate(envelope_body)
        assert not hasattr(envelope, "extra")

    def test_envelope_is_immutable(self, envelope_body):
        envelope = Envelope.model_validate(envelope_body)
        with pytest.raises(ValidationError):
            envelope.message_text = "changed"

    def test_flatten_groups_errors_per_field(self):
        with pytest.raises(ValidationError) as exc_info:
            Envelope.model_validate({"correlation_id": "x", "from": "1"})
        details = flatten_validation_error(exc_info.value)

        assert details["form_errors"] == []
        assert set(details["field_errors"]) == {
            "correlation_id", "clinic_id", "from", "message_text",
        }
        assert all(details["field_errors"][f] for f in details["field_errors"])


class TestToolRegistry:
    def test_registry_holds_both_tools(self):
        assert set(TOOL_REGISTRY) == {EXTRACT_INTENT, DECIDE_NEXT_ACTION}

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            TOOL_REGISTRY["new_tool"] = TOOL_REGISTRY[EXTRACT_INTENT]

    def test_extract_intent_schema(self):
        definition = TOOL_REGISTRY[EXTRACT_INTENT].definition
        schema = definition["input_schema"]

        assert definition["name"] == "extract_intent"
        assert schema["additionalProperties"] is False
        assert set(schema["required"]) == {"intent_group", "intent", "confidence"}
        assert schema["properties"]["confidence"]["minimum"] == 0
        assert schema["properties"]["confidence"]["maximum"] == 1
        assert "billing" in schema["properties"]["intent_group"]["enum"]

    def test_decide_next_action_schema(self):
        schema = TOOL_REGISTRY[DECIDE_NEXT_ACTION].definition["input_schema"]

        assert schema["additionalProperties"] is False
        assert set(schema["required"]) == {"decision_type", "message"}
        assert set(schema["properties"]["decision_type"]["enum"]) == {
            "ask_missing", "block_price", "handoff", "proceed",
        }

    def test_nested_slots_forbid_extra_fields(self):
        schema = TOOL_REGISTRY[EXTRACT_INTENT].definition["input_schema"]
        assert schema["$defs"]["Slots"]["additionalProperties"] is False

    def test_definition_is_rebuilt_per_access(self):
        spec = TOOL_REGISTRY[EXTRACT_INTENT]
        spec.definition["input_schema"]["properties"].clear()
        assert spec.definition["input_schema"]["properties"]


class TestParseToolArguments:
    def test_valid_extraction(self):
        value = parse_tool_arguments(
            TOOL_REGISTRY[EXTRACT_INTENT],
            {"intent_group": "billing", "intent": "price_inquiry", "confidence": 0.8},
        )
        assert isinstance(value, ExtractedIntent)
        assert value.slots.patient_name is None
        assert value.missing_fields == []

    def test_valid_decision(self):
        value = parse_tool_arguments(
            TOOL_REGISTRY[DECIDE_NEXT_ACTION],
            {
                "decision_type": "handoff",
                "message": "A colleague will reply shortly.",
                "actions": [{"type": "notify_staff"}],
            },
        )
        assert isinstance(value, Decision)
        assert value.actions[0].type == "notify_staff"
        assert value.confidence is None

    @pytest.mark.parametrize(
        "arguments",
        [
            None,
            "not a dict",
            {"intent_group": "billing", "intent": "x"},
            {"intent_group": "billing", "intent": "x", "confidence": 2},
            {"intent_group": "billing", "intent": "", "confidence": 0.5},
        ],
    )
    def test_invalid_extraction_returns_none(self, arguments):
        assert parse_tool_arguments(TOOL_REGISTRY[EXTRACT_INTENT], arguments) is None

    def test_blank_decision_message_is_rejected(self):
        value = parse_tool_arguments(
            TOOL_REGISTRY[DECIDE_NEXT_ACTION],
            {"decision_type": "proceed", "message": "   ", "actions": [{"type": "upsert_patient"}]},
        )
        assert value is None

    def test_action_without_type_is_rejected(self):
        value = parse_tool_arguments(
            TOOL_REGISTRY[DECIDE_NEXT_ACTION],
            {"decision_type": "proceed", "message": "ok", "actions": [{"payload": {}}]},
        )
        assert value is None
