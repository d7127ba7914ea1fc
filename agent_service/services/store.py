"""Supabase client for clinic settings, knowledge snippets and outcome rows.

The supabase-py client is synchronous, so every query is offloaded to the
default thread pool with ``asyncio.to_thread`` to keep the event loop free.
Failures are wrapped in ``StoreError``; whether they are fatal is decided by
the caller (rules and knowledge reads are, outcome writes are not).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from agent_service.config import SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL
from agent_service.models import ClinicRules, KnowledgeSnippet
from agent_service.services.metrics import metrics

logger = logging.getLogger(__name__)

SETTINGS_TABLE = "clinic_settings"
KNOWLEDGE_TABLE = "clinic_knowledge"
OUTCOMES_TABLE = "agent_outcomes"


class StoreError(Exception):
    """Raised when a store query fails."""

    def __init__(self, message: str, operation: str):
        self.operation = operation
        super().__init__(message)


class ClinicStore:
    """Thin async wrapper around the Supabase tables the agent reads and writes."""

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        *,
        client: Any | None = None,
    ):
        self._url = url or SUPABASE_URL
        self._key = key or SUPABASE_SERVICE_ROLE_KEY
        self._client = client  # lazy-init unless injected

    def _get_client(self):
        """Create the Supabase client on first use."""
        if self._client is None:
            from supabase import create_client

            self._client = create_client(self._url, self._key)
        return self._client

    async def _run(self, operation: str, query) -> Any:
        """Execute *query* (a zero-arg callable) in a worker thread."""
        t0 = time.perf_counter()
        try:
            result = await asyncio.to_thread(query)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "supabase", operation,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise StoreError(f"{operation} failed: {exc}", operation) from exc
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("supabase", operation, latency_ms=elapsed)
        return result

    # ── Public API ────────────────────────────────────────────────────

    async def get_clinic_rules(self, clinic_id: str) -> ClinicRules | None:
        """Return the clinic's settings row, or ``None`` when there is none."""
        client = self._get_client()
        response = await self._run(
            "get_clinic_rules",
            lambda: client.table(SETTINGS_TABLE)
            .select("*")
            .eq("clinic_id", clinic_id)
            .limit(1)
            .execute(),
        )
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        row = rows[0]
        return ClinicRules.model_validate({k: v for k, v in row.items() if v is not None})

    async def get_knowledge(self, clinic_id: str, limit: int) -> list[KnowledgeSnippet]:
        """Return up to *limit* snippets for the clinic, most recent first."""
        client = self._get_client()
        response = await self._run(
            "get_knowledge",
            lambda: client.table(KNOWLEDGE_TABLE)
            .select("title,content")
            .eq("clinic_id", clinic_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute(),
        )
        rows = getattr(response, "data", None) or []
        return [
            KnowledgeSnippet.model_validate({k: v for k, v in row.items() if v is not None})
            for row in rows[:limit]
        ]

    async def append_log(self, record: dict[str, Any]) -> None:
        """Insert one outcome row."""
        client = self._get_client()
        await self._run(
            "append_log",
            lambda: client.table(OUTCOMES_TABLE).insert(record).execute(),
        )
