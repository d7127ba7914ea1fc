"""Shared test fixtures for the agent-service test suite."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
    os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key-456")


class FakeStore:
    """In-memory stand-in for ``ClinicStore``."""

    def __init__(self, rules=None, snippets=None):
        self.rules = rules
        self.snippets = list(snippets or [])
        self.logged: list[dict] = []
        self.rules_error: Exception | None = None
        self.knowledge_error: Exception | None = None
        self.log_error: Exception | None = None
        self.knowledge_limits: list[int] = []

    async def get_clinic_rules(self, clinic_id):
        if self.rules_error:
            raise self.rules_error
        return self.rules

    async def get_knowledge(self, clinic_id, limit):
        self.knowledge_limits.append(limit)
        if self.knowledge_error:
            raise self.knowledge_error
        return self.snippets[:limit]

    async def append_log(self, record):
        if self.log_error:
            raise self.log_error
        self.logged.append(record)


@pytest.fixture
def make_store():
    """Factory for ``FakeStore`` instances."""
    return FakeStore


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def envelope_body():
    """A valid ``POST /process`` body."""
    return {
        "correlation_id": "corr-123456",
        "clinic_id": "clinic-1",
        "from": "5565999990000",
        "message_text": "Hi, I'd like to book a cleaning",
        "phone_number_id": "phone-1",
        "received_at_iso": "2026-10-18T09:00:00Z",
    }


@pytest.fixture
def make_chat_model():
    """Factory for a chat-model double whose bound tools return *messages* in order.

    ``bind_tools`` returns a runnable whose ``ainvoke`` is an ``AsyncMock``
    with ``side_effect`` set to the given messages (or exceptions).
    """

    def _make(*messages):
        llm = MagicMock()
        bound = MagicMock()
        bound.ainvoke = AsyncMock(side_effect=list(messages))
        llm.bind_tools.return_value = bound
        llm.bound = bound
        return llm

    return _make
