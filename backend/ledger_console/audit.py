"""Audit recorder: hands audit events to the sink in the background.

Writes run as tracked asyncio tasks detached from the request, so neither a
slow sink nor a client disconnect affects the response, and the write is not
cancelled with the request. Delivery is retried with exponential backoff up
to ``max_attempts``; sinks are idempotent on the event id so a retry after an
ambiguous failure cannot duplicate a record. A final failure is logged and
dropped.
"""

import asyncio
import logging

from backend.ledger_console.db.repositories import AuditEvent, AuditSink
from backend.ledger_console.utils.metrics import PrometheusPipelineMetrics

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Fire-and-forget audit writer."""

    def __init__(
        self,
        sink: AuditSink,
        *,
        max_attempts: int = 3,
        backoff_ms: int = 200,
        metrics: PrometheusPipelineMetrics | None = None,
    ) -> None:
        """Initialize recorder.

        Args:
            sink: Durable audit sink
            max_attempts: Delivery attempts per event (at least 1)
            backoff_ms: Delay before the first retry, doubled per retry
            metrics: Metrics recorder
        """
        self._sink = sink
        self._max_attempts = max(1, max_attempts)
        self._backoff_ms = backoff_ms
        self._metrics = metrics or PrometheusPipelineMetrics()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of writes still in flight."""
        return len(self._tasks)

    def emit(self, event: AuditEvent) -> asyncio.Task[None]:
        """Schedule delivery of ``event`` and return immediately."""
        task = asyncio.create_task(self._deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight write to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _deliver(self, event: AuditEvent) -> None:
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._sink.append(event)
            except Exception as e:
                logger.warning(
                    "Audit write failed (attempt %d/%d) for %s on ledger %s: %s",
                    attempt,
                    self._max_attempts,
                    event.action,
                    event.ledger_id,
                    e,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff_ms * 2 ** (attempt - 1) / 1000)
                continue

            self._metrics.inc_audit_write("ok")
            return

        self._metrics.inc_audit_write("dropped")
        logger.error(
            "Audit event %s dropped after %d attempts (request %s)",
            event.event_id,
            self._max_attempts,
            event.request_id,
        )
