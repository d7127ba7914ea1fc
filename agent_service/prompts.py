"""Instructions, few-shot examples and canned replies for the clinic agent."""

from __future__ import annotations

import json

from agent_service.models import ClinicRules

# ── Canned replies ───────────────────────────────────────────────────

CLARIFY_MESSAGE = (
    "Got it. So I can help you properly, could you tell me your name and "
    "whether you'd like to book, reschedule or cancel an appointment?"
)

SAFE_DEFAULT_MESSAGE = (
    "Sure! Just tell me your name and the best day and time for you, "
    "and I'll take it from there."
)

PRICE_BLOCKED_MESSAGE = (
    "About prices: we don't share values over this channel. But I can help "
    "you book an evaluation. Just tell me your name and the best day and time. 🙂"
)

TIMEOUT_MESSAGE = (
    "Sorry, this is taking longer than it should. Could you send your "
    "message again in a moment, please? 🙏"
)

ERROR_MESSAGE = (
    "I ran into a hiccup on my side. Could you repeat your message in a "
    "minute, please? 🙏"
)


# ── Step 1: extract_intent ───────────────────────────────────────────

EXTRACTION_EXAMPLES = [
    (
        "Hi, I'm Ana Souza, I'd like to book a dermatologist for next Tuesday morning",
        {
            "intent_group": "scheduling",
            "intent": "book_appointment",
            "slots": {
                "patient_name": "Ana Souza",
                "specialty": "dermatology",
                "preferred_date": "next Tuesday",
                "preferred_time": "morning",
            },
            "missing_fields": [],
            "confidence": 0.93,
        },
    ),
    (
        "how much is a cleaning?",
        {
            "intent_group": "billing",
            "intent": "price_inquiry",
            "slots": {"procedure_name": "dental cleaning"},
            "missing_fields": ["patient_name"],
            "confidence": 0.9,
        },
    ),
    (
        "are my blood test results ready?",
        {
            "intent_group": "test_results",
            "intent": "result_status",
            "slots": {"test_name": "blood test"},
            "missing_fields": ["patient_name", "test_date"],
            "confidence": 0.85,
        },
    ),
    (
        "ok",
        {
            "intent_group": "other",
            "intent": "unclear",
            "slots": {},
            "missing_fields": [],
            "confidence": 0.2,
        },
    ),
]

EXTRACTION_TEMPLATE = """You are the WhatsApp receptionist of a medical clinic. Your only job in this step is to call `extract_intent` for the patient's latest message.

## Rules
- Fill a slot ONLY with information the patient actually wrote. Never guess names, dates, times, doctors or procedures.
- List in `missing_fields` the slot names this intent still needs and the message does not give.
- `confidence` is how sure you are about `intent_group` and `intent`, from 0 to 1. Use a low value for vague, off-topic or ambiguous messages.
- There is no scheduling system: never assume a time slot is available.
- Use the clinic knowledge below only to understand the message, not to add facts.

## Clinic knowledge
{knowledge}

## Examples
{examples}"""


def _format_examples() -> str:
    lines = []
    for message, arguments in EXTRACTION_EXAMPLES:
        lines.append(f"Patient: {message}")
        lines.append(f"extract_intent: {json.dumps(arguments, ensure_ascii=False)}")
        lines.append("")
    return "\n".join(lines).strip()


def build_extraction_instructions(knowledge_block: str) -> str:
    """System instructions for the forced ``extract_intent`` call."""
    return EXTRACTION_TEMPLATE.format(knowledge=knowledge_block, examples=_format_examples())


# ── Step 2: decide_next_action ───────────────────────────────────────

DECISION_TEMPLATE = """You are the WhatsApp receptionist of a medical clinic. Be human, objective and efficient; avoid unnecessary questions. Call `decide_next_action` with the next step and a short reply for the patient.

## Decision types
- ask_missing: ask, in one short message, for the missing information needed to move on.
- block_price: the patient asked about prices and prices may not be shared.
- handoff: a human must take over (emergencies, complaints, clinical questions you cannot answer from the knowledge below).
- proceed: nothing is missing; confirm what happens next.

## Clinic rules
- allow_prices={allow_prices}
- timezone={timezone}
- business_hours={business_hours}
- If the patient asks about prices and allow_prices=false, you MUST return decision_type=block_price, politely decline and offer to book an evaluation.
- There is no scheduling system: never promise a specific free slot.
- Reply in the patient's language.

## Clinic policies
{policies}

## Clinic knowledge
{knowledge}"""


def build_decision_instructions(rules: ClinicRules, knowledge_block: str) -> str:
    """System instructions for the forced ``decide_next_action`` call."""
    return DECISION_TEMPLATE.format(
        allow_prices=str(rules.allow_prices).lower(),
        timezone=rules.timezone,
        business_hours=json.dumps(rules.business_hours, ensure_ascii=False, sort_keys=True),
        policies=rules.policies_text or "(none)",
        knowledge=knowledge_block,
    )
