"""CloudWatch custom metrics for the agent's dependencies and outcomes.

Two families of data points are published under the ``AgentService``
namespace:

* ``Dependency/*``: one count per Anthropic or Supabase call (by status),
  error counts by exception class, and call latency by operation.
* ``Agent/Outcome``: one count per finished request, by outcome
  (``decided``, ``low_confidence``, ``timeout``, ...).

Data points are buffered in memory and shipped by a daemon thread every
``FLUSH_INTERVAL_SECONDS``.  Unless ``METRICS_ENABLED=true`` nothing leaves
the process; the buffer is still filled and emptied so tests can inspect it.

>>> from agent_service.services.metrics import metrics
>>> metrics.record_success("anthropic", "extract_intent", latency_ms=812.0)
>>> metrics.record_outcome("low_confidence")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "AgentService"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit per call


def _datum(
    name: str,
    dimensions: dict[str, str],
    value: float,
    unit: str,
    timestamp: datetime,
) -> dict[str, Any]:
    """Build one ``MetricData`` entry."""
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": timestamp,
        "Value": value,
        "Unit": unit,
    }


class MetricsClient:
    """Buffers metric data points and publishes them in batches."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ─────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Count a successful call to *service* and record its latency."""
        now = datetime.now(UTC)
        self._extend(
            _datum("Dependency/RequestCount", {"Service": service, "Status": "success"}, 1, "Count", now),
            _datum("Dependency/Latency", {"Service": service, "Operation": operation}, latency_ms, "Milliseconds", now),
        )
        logger.debug("Metric: %s.%s ok in %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Count a failed call; latency is only recorded when known."""
        now = datetime.now(UTC)
        points = [
            _datum("Dependency/RequestCount", {"Service": service, "Status": "failure"}, 1, "Count", now),
            _datum("Dependency/ErrorCount", {"Service": service, "ErrorType": error_type}, 1, "Count", now),
        ]
        if latency_ms > 0:
            points.append(
                _datum("Dependency/Latency", {"Service": service, "Operation": operation}, latency_ms, "Milliseconds", now),
            )
        self._extend(*points)
        logger.debug(
            "Metric: %s.%s failed (%s) after %.1fms", service, operation, error_type, latency_ms,
        )

    def record_outcome(self, outcome: str) -> None:
        """Count one finished request by its outcome."""
        self._extend(_datum("Agent/Outcome", {"Outcome": outcome}, 1, "Count", datetime.now(UTC)))
        logger.debug("Metric: outcome=%s", outcome)

    # ── Publishing ────────────────────────────────────────────────────

    def flush(self) -> int:
        """Empty the buffer and publish it.  Returns the number of points sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []

        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Metrics disabled; dropped %d data points", len(batch))
            return 0
        return self._publish(batch)

    def _publish(self, batch: list[dict[str, Any]]) -> int:
        sent = 0
        try:
            cw = self._get_cw_client()
            for start in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[start : start + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
        except Exception:
            logger.exception("Failed to publish %d metric data points", len(batch) - sent)
            return sent
        logger.info("Published %d metric data points", sent)
        return sent

    def _extend(self, *points: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(points)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (every %ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
