"""Clinic context loader: rules and knowledge for one request."""

from __future__ import annotations

import logging

from agent_service.models import ClinicRules, KnowledgeSnippet

logger = logging.getLogger(__name__)

DEFAULT_KNOWLEDGE_LIMIT = 8

NO_KNOWLEDGE_MARKER = "No clinic knowledge available."

# Substituted (never persisted) when a clinic has no settings row.
DEFAULT_BUSINESS_HOURS = {
    "mon_fri": "08:00-12:00,13:00-18:00",
    "sat": "08:00-12:00",
    "sun": "closed",
}
DEFAULT_POLICIES_TEXT = (
    "If allow_prices=false, never share prices. "
    "Focus on triage and on collecting the data needed to book an appointment."
)


def default_clinic_rules(clinic_id: str) -> ClinicRules:
    """Return the fallback rules used for clinics without a settings row."""
    return ClinicRules(
        clinic_id=clinic_id,
        allow_prices=False,
        timezone="America/Cuiaba",
        business_hours=dict(DEFAULT_BUSINESS_HOURS),
        policies_text=DEFAULT_POLICIES_TEXT,
    )


async def load_clinic_context(
    store,
    clinic_id: str,
    knowledge_limit: int = DEFAULT_KNOWLEDGE_LIMIT,
) -> tuple[ClinicRules, list[KnowledgeSnippet]]:
    """Fetch the clinic's rules and knowledge snippets.

    Store errors propagate: the price policy depends on the rules, so the
    request cannot be answered correctly without them.  A missing rules row
    is a tenant misconfiguration, not an error.
    """
    rules = await store.get_clinic_rules(clinic_id)
    if rules is None:
        logger.warning(
            "No clinic_settings row for clinic %s; using default rules", clinic_id,
        )
        rules = default_clinic_rules(clinic_id)

    snippets = await store.get_knowledge(clinic_id, knowledge_limit)
    return rules, list(snippets)[:knowledge_limit]


def build_knowledge_block(snippets: list[KnowledgeSnippet]) -> str:
    """Concatenate snippets into one prompt block (marker string when empty)."""
    blocks = []
    for snippet in snippets:
        title = snippet.title.strip()
        content = snippet.content.strip()
        if not title and not content:
            continue
        blocks.append(f"### {title}\n{content}" if title else content)
    if not blocks:
        return NO_KNOWLEDGE_MARKER
    return "\n\n".join(blocks)
