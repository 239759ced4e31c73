"""
schemabridge/core/jobs.py
-------------------------
Registry of running and finished migrations, keyed by job id.

Presentation layers start a job, keep only its id, and later look it up
to read status, stop it, wait for it or subscribe to its events. Each
job owns its orchestrator, cancellation token and asyncio task; nothing
is shared between jobs except the event bus.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from schemabridge.core.events import CancellationToken, EventBus, Subscription
from schemabridge.core.mapping_store import MappingRepository
from schemabridge.core.orchestrator import MigrationOrchestrator
from schemabridge.errors import UnknownJobError
from schemabridge.logger import get_logger
from schemabridge.models.mapping import TableMapping
from schemabridge.models.options import MigrationOptions
from schemabridge.models.progress import MigrationProgress, MigrationStatistics

log = get_logger(__name__)


@dataclass
class Job:
    job_id: str
    orchestrator: MigrationOrchestrator
    token: CancellationToken
    task: asyncio.Task
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def done(self) -> bool:
        return self.task.done()


class JobRegistry:
    """
    Explicit map of job id → job context.

    Must be used from inside a running event loop; :meth:`start`
    schedules the migration as a task and returns immediately.
    """

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self._jobs: dict[str, Job] = {}

    def start(
        self,
        options: MigrationOptions,
        mappings: MappingRepository | Iterable[TableMapping] | None = None,
        job_id: str | None = None,
    ) -> str:
        job_id = job_id or uuid.uuid4().hex
        if job_id in self._jobs:
            raise ValueError(f"Job id already in use: {job_id}")
        orchestrator = MigrationOrchestrator(options, mappings, event_bus=self.event_bus)
        token = CancellationToken()
        task = asyncio.create_task(
            orchestrator.start_migration(job_id=job_id, token=token),
            name=f"migration-{job_id}",
        )
        task.add_done_callback(self._on_done)
        self._jobs[job_id] = Job(job_id, orchestrator, token, task)
        log.info("Job %s started.", job_id)
        return job_id

    def get(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise UnknownJobError(f"Unknown migration job: {job_id}") from None

    def status(self, job_id: str) -> MigrationProgress:
        return self.get(job_id).orchestrator.status()

    def stop(self, job_id: str, reason: str | None = None) -> None:
        self.get(job_id).token.cancel(reason or "stop requested")

    async def wait(self, job_id: str) -> MigrationStatistics:
        """Await the job; re-raises the exception a failed job ended with."""
        return await self.get(job_id).task

    def subscribe(self, job_id: str) -> Subscription:
        self.get(job_id)
        return self.event_bus.subscribe(job_id)

    def jobs(self) -> list[str]:
        return list(self._jobs)

    def remove(self, job_id: str) -> None:
        """Forget a finished job and its event history."""
        job = self.get(job_id)
        if not job.done:
            raise ValueError(f"Job {job_id} is still running; stop it first.")
        del self._jobs[job_id]
        self.event_bus.forget(job_id)

    @staticmethod
    def _on_done(task: asyncio.Task) -> None:
        if task.cancelled():
            log.warning("Task %s was cancelled.", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            log.error("Task %s failed: %s", task.get_name(), exc)
