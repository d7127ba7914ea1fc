"""Best-effort, non-blocking audit of request outcomes.

Each record is written by a detached ``asyncio`` task.  The task never
joins the response path: write failures are logged at WARNING and dropped
(no retry).
"""

from __future__ import annotations

import asyncio
import logging

from agent_service.models import OutcomeRecord
from agent_service.services.metrics import metrics

logger = logging.getLogger(__name__)


class OutcomeLogger:
    """Schedules outcome writes against the store without awaiting them."""

    def __init__(self, store) -> None:
        self._store = store
        # Strong references so pending tasks are not garbage-collected
        self._pending: set[asyncio.Task] = set()

    def submit(self, record: OutcomeRecord) -> None:
        """Schedule *record* for writing and return immediately."""
        metrics.record_outcome(record.outcome)
        task = asyncio.create_task(
            self._write(record), name=f"outcome-log-{record.correlation_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, record: OutcomeRecord) -> None:
        try:
            await self._store.append_log(record.to_row())
        except Exception as exc:
            logger.warning(
                "[%s] Outcome log write failed: %s", record.correlation_id, exc,
            )

    @property
    def pending(self) -> int:
        """Number of writes still in flight."""
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight writes (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
