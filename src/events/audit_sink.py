"""Fire-and-forget audit sink backed by the event store.

Recording never blocks or fails the caller: each event is appended in a
background task with tenacity retries for transient failures, and a
failure after the last attempt is logged and dropped.
"""

import asyncio

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.events.store import EventStore
from src.events.types import AuditEvent

logger = structlog.get_logger()

# Exceptions worth retrying (transient failures)
RETRIABLE_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
)


class EventAuditSink:
    """AuditSink that persists AuditEvents to the EventStore."""

    def __init__(self, store: EventStore, max_attempts: int = 3):
        """Initialize sink.

        Args:
            store: Append-only event store
            max_attempts: Attempts per event before giving up
        """
        self._store = store
        self._max_attempts = max_attempts
        self._pending: set[asyncio.Task] = set()

    def record(self, event: AuditEvent) -> None:
        """Schedule an event to be persisted and return immediately."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("audit event dropped, no running loop", action=event.action.value)
            return
        task = loop.create_task(self._persist(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, event: AuditEvent) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
                retry=retry_if_exception_type(RETRIABLE_EXCEPTIONS),
                reraise=False,
            ):
                with attempt:
                    await self._store.append(event)
        except RetryError as e:
            last_err = e.last_attempt.exception() if e.last_attempt else None
            logger.error(
                "audit write retry exhausted",
                tenant_id=event.tenant_id,
                action=event.action.value,
                attempts=self._max_attempts,
                last_error=str(last_err) if last_err else None,
            )
        except Exception as e:
            logger.error(
                "audit write failed",
                tenant_id=event.tenant_id,
                action=event.action.value,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for in-flight writes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def __len__(self) -> int:
        """Number of writes still in flight."""
        return len(self._pending)
