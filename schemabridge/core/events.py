"""
schemabridge/core/events.py
---------------------------
Per-job progress channels and the cooperative stop token.

Every consumer gets its own queue, so a slow consumer never delays
another one or the orchestrator. A job's events are kept and replayed to
late subscribers; iteration ends after the terminal event
(``migration:completed`` or ``migration:failed``). Once a job reaches
its terminal event, its ``migration:progress`` entries are dropped from
the replay history.

Example::

    async for event in bus.subscribe(job_id):
        print(event.kind.value, event.table)
"""
from __future__ import annotations

import asyncio
from collections import defaultdict

from schemabridge.logger import get_logger
from schemabridge.models.progress import EventKind, ProgressEvent

log = get_logger(__name__)


class CancellationToken:
    """
    Cooperative stop request.

    Long-running calls receive the token explicitly and poll
    :attr:`cancelled` at safe points; nothing is interrupted mid-call.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason
            log.info("Cancellation requested%s.", f": {reason}" if reason else "")

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class Subscription:
    """Async iterator over one job's events, for one consumer."""

    def __init__(self, bus: "EventBus", job_id: str, queue: asyncio.Queue[ProgressEvent]) -> None:
        self._bus = bus
        self.job_id = job_id
        self._queue = queue
        self._finished = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.kind.is_terminal:
            self.close()
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if not self._finished:
            self._finished = True
            self._bus._detach(self.job_id, self._queue)


class EventBus:
    """Fan-out of :class:`ProgressEvent` records keyed by job id."""

    def __init__(self) -> None:
        self._history: dict[str, list[ProgressEvent]] = defaultdict(list)
        self._queues: dict[str, set[asyncio.Queue[ProgressEvent]]] = defaultdict(set)

    def publish(self, event: ProgressEvent) -> None:
        history = self._history[event.job_id]
        history.append(event)
        for queue in list(self._queues.get(event.job_id, ())):
            queue.put_nowait(event)
        if event.kind.is_terminal:
            # replay history keeps milestones only
            history[:] = [e for e in history if e.kind != EventKind.MIGRATION_PROGRESS]

    def subscribe(self, job_id: str) -> Subscription:
        """Attach a new consumer; events already published are replayed first."""
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        for event in self._history.get(job_id, ()):
            queue.put_nowait(event)
        self._queues[job_id].add(queue)
        log.debug("Subscriber attached to job %s (%d total).", job_id, len(self._queues[job_id]))
        return Subscription(self, job_id, queue)

    def history(self, job_id: str) -> list[ProgressEvent]:
        return list(self._history.get(job_id, ()))

    def subscriber_count(self, job_id: str) -> int:
        return len(self._queues.get(job_id, ()))

    def forget(self, job_id: str) -> None:
        """Drop a finished job's history."""
        self._history.pop(job_id, None)
        self._queues.pop(job_id, None)

    def _detach(self, job_id: str, queue: asyncio.Queue[ProgressEvent]) -> None:
        queues = self._queues.get(job_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._queues.pop(job_id, None)
