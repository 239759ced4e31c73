"""
schemabridge/models/progress.py
-------------------------------
Progress, statistics and event records produced by the orchestrator.

``MigrationProgress`` is mutated only by the orchestrator; observers get
copies via :meth:`MigrationProgress.snapshot`.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class MigrationPhase(str, Enum):
    CONNECTING = "connecting"
    ANALYZING = "analyzing"
    CREATING = "creating"
    MIGRATING = "migrating"
    INDEXING = "indexing"
    VALIDATING = "validating"
    COMPLETE = "complete"
    ERROR = "error"


# Forward-only order; ERROR is reachable from any phase.
PHASE_ORDER: tuple[MigrationPhase, ...] = (
    MigrationPhase.CONNECTING,
    MigrationPhase.ANALYZING,
    MigrationPhase.CREATING,
    MigrationPhase.MIGRATING,
    MigrationPhase.INDEXING,
    MigrationPhase.VALIDATING,
    MigrationPhase.COMPLETE,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MigrationProgress:
    """Live counters for one ``start_migration`` call."""
    phase: MigrationPhase = MigrationPhase.CONNECTING
    current_table: str | None = None
    tables_completed: int = 0
    total_tables: int = 0
    records_processed: int = 0
    total_records: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    table_records: dict[str, int] = field(default_factory=dict)
    started_at: datetime = field(default_factory=_utcnow)
    throughput: float = 0.0  # records per second
    estimated_completion: datetime | None = None

    @property
    def percent(self) -> float:
        if self.total_records <= 0:
            return 0.0
        return round(min(self.records_processed / self.total_records, 1.0) * 100, 2)

    def advance_phase(self, phase: MigrationPhase) -> None:
        """
        Move the state machine forward.

        Raises:
            ValueError: On a backwards transition, or when leaving a
                        terminal phase.
        """
        if self.phase in (MigrationPhase.COMPLETE, MigrationPhase.ERROR):
            raise ValueError(f"Migration already finished in phase '{self.phase.value}'.")
        if phase == MigrationPhase.ERROR:
            self.phase = phase
            return
        if PHASE_ORDER.index(phase) < PHASE_ORDER.index(self.phase):
            raise ValueError(
                f"Illegal phase transition {self.phase.value} -> {phase.value}."
            )
        self.phase = phase

    def recompute_rates(self, now: datetime | None = None) -> None:
        """Derive throughput and ETA from elapsed time and remaining records."""
        now = now or _utcnow()
        elapsed = (now - self.started_at).total_seconds()
        if elapsed <= 0:
            self.throughput = 0.0
            self.estimated_completion = None
            return
        self.throughput = round(self.records_processed / elapsed, 2)
        if self.throughput > 0:
            remaining = max(self.total_records - self.records_processed, 0)
            self.estimated_completion = now + timedelta(seconds=remaining / self.throughput)
        else:
            self.estimated_completion = None

    def snapshot(self) -> "MigrationProgress":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "currentTable": self.current_table,
            "tablesCompleted": self.tables_completed,
            "totalTables": self.total_tables,
            "recordsProcessed": self.records_processed,
            "totalRecords": self.total_records,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "startTime": self.started_at.isoformat(),
            "estimatedCompletion": (
                self.estimated_completion.isoformat() if self.estimated_completion else None
            ),
            "throughput": self.throughput,
            "percent": self.percent,
        }


@dataclass
class MigrationStatistics:
    """Terminal summary, computed once at completion, stop or failure."""
    total_tables: int = 0
    tables_processed: int = 0
    total_records: int = 0
    records_processed: int = 0
    errors: int = 0
    warnings: int = 0
    duration_seconds: float = 0.0
    average_throughput: float = 0.0
    largest_table: tuple[str, int] = ("", 0)
    problematic_tables: list[str] = field(default_factory=list)
    conversion_errors: int = 0
    validation_warnings: list[Any] = field(default_factory=list)
    error_messages: list[str] = field(default_factory=list)
    warning_messages: list[str] = field(default_factory=list)
    stopped: bool = False
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTables": self.total_tables,
            "tablesProcessed": self.tables_processed,
            "totalRecords": self.total_records,
            "recordsProcessed": self.records_processed,
            "errors": self.errors,
            "warnings": self.warnings,
            "duration": self.duration_seconds,
            "averageThroughput": self.average_throughput,
            "largestTable": {"name": self.largest_table[0], "records": self.largest_table[1]},
            "problematicTables": list(self.problematic_tables),
            "conversionErrors": self.conversion_errors,
            "stopped": self.stopped,
            "dryRun": self.dry_run,
        }


class EventKind(str, Enum):
    MIGRATION_STARTED = "migration:started"
    MIGRATION_PROGRESS = "migration:progress"
    TABLE_STARTED = "table:started"
    TABLE_COMPLETED = "table:completed"
    TABLE_FAILED = "table:failed"
    MIGRATION_COMPLETED = "migration:completed"
    MIGRATION_FAILED = "migration:failed"

    @property
    def is_terminal(self) -> bool:
        return self in (EventKind.MIGRATION_COMPLETED, EventKind.MIGRATION_FAILED)


@dataclass(frozen=True)
class ProgressEvent:
    """One message on a job's event stream."""
    kind: EventKind
    job_id: str
    table: str | None = None
    row_count: int | None = None
    progress: MigrationProgress | None = None
    error: BaseException | None = None
    statistics: MigrationStatistics | None = None
    emitted_at: datetime = field(default_factory=_utcnow)
