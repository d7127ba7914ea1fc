"""Deterministic policy guard applied after the decision step.

Prompt instructions are not trusted for business-critical rules, so every
rule here re-checks the extracted intent against the clinic rules and may
replace the model's decision outright.  Rules run in order; each returns a
replacement ``Decision`` or ``None`` to leave the current one untouched.
Adding a rule means appending a function to ``POLICY_RULES``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from agent_service.api.schemas import Action
from agent_service.models import ClinicRules
from agent_service.prompts import PRICE_BLOCKED_MESSAGE
from agent_service.tools.schemas import Decision, ExtractedIntent

logger = logging.getLogger(__name__)

PolicyRule = Callable[[ExtractedIntent, ClinicRules, Decision], Decision | None]


def price_disclosure_rule(
    intent: ExtractedIntent,
    rules: ClinicRules,
    decision: Decision,
) -> Decision | None:
    """Block billing conversations for clinics that do not share prices."""
    if intent.intent_group != "billing" or rules.allow_prices:
        return None
    if decision.decision_type != "block_price":
        logger.warning(
            "Overriding model decision %r with block_price for clinic %s",
            decision.decision_type, rules.clinic_id,
        )
    return Decision(
        decision_type="block_price",
        message=PRICE_BLOCKED_MESSAGE,
        actions=[
            Action(type="log", payload={"event": "prices_blocked", "intent": intent.intent}),
        ],
        confidence=1.0,
    )


POLICY_RULES: tuple[PolicyRule, ...] = (price_disclosure_rule,)


def apply_policies(
    intent: ExtractedIntent,
    rules: ClinicRules,
    decision: Decision,
) -> Decision:
    """Run every policy rule over *decision* and return the final one."""
    for rule in POLICY_RULES:
        replacement = rule(intent, rules, decision)
        if replacement is not None:
            decision = replacement
    return decision
