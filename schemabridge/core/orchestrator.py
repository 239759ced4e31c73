"""
schemabridge/core/orchestrator.py
---------------------------------
Migration orchestrator: drives one batched, partially parallel,
retryable transfer from a source adapter to a target adapter.

Phases (strictly forward; any phase may fall to ``error``)::

    connecting → analyzing → creating → migrating → indexing → validating → complete

Design Decisions:
    * The orchestrator is a plain class with injected dependencies
      (options with both adapters, optional mappings, an event bus). No
      global state; one instance runs at most one migration at a time.
    * Progress is published as :class:`ProgressEvent` records on an
      :class:`EventBus`, so CLI and web callers observe the same job
      without registering callbacks on the orchestrator.
    * Parallel tables run in fixed chunks awaited as a group. A slow
      table holds up the rest of its chunk; there is no work stealing.
    * Stopping is cooperative through a :class:`CancellationToken`,
      polled between tables and between batches. A stopped run is not
      an error.
    * Adapters are always disconnected, whatever the outcome.
"""
from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable

from schemabridge.adapters.base import DatabaseAdapter, Row, StreamOptions
from schemabridge.core.converter import apply_transform_rules, convert_row
from schemabridge.core.events import CancellationToken, EventBus
from schemabridge.core.mapping_store import MappingRepository
from schemabridge.errors import (
    DatabaseConnectionError,
    InsertError,
    MigrationAbortedError,
    MigrationAlreadyRunningError,
    ReadOnlyAdapterError,
    ValidationWarning,
)
from schemabridge.logger import bind_context, get_logger
from schemabridge.models.mapping import (
    ColumnMapping,
    MappingKind,
    TableMapping,
    split_qualified,
)
from schemabridge.models.options import MigrationOptions
from schemabridge.models.progress import (
    EventKind,
    MigrationPhase,
    MigrationProgress,
    MigrationStatistics,
    ProgressEvent,
)
from schemabridge.models.schema import ColumnInfo, TableInfo

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Transfer units
# ---------------------------------------------------------------------------

@dataclass
class TransferUnit:
    """
    One stream from a source table into a target table.

    An unmapped table copies itself under its own name. A one-to-one
    mapping renames and converts columns. Each branch of a one-to-many
    split is its own unit carrying the branch's row predicate.
    """
    source: TableInfo
    target_table: str
    column_mappings: list[ColumnMapping] = field(default_factory=list)
    where: str | None = None
    order_by: str | None = None
    limit: int | None = None
    mapping_id: str | None = None
    primary_keys: tuple[str, ...] = ()

    @property
    def source_table(self) -> str:
        return self.source.name

    @property
    def label(self) -> str:
        if self.mapping_id is None and self.target_table == self.source.name:
            return self.source.name
        return f"{self.source.name}->{self.target_table}"


def _combine_where(*clauses: str | None) -> str | None:
    present = [c for c in clauses if c]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return " AND ".join(f"({c})" for c in present)


def _chunks(items: list[TransferUnit], size: int) -> Iterable[list[TransferUnit]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class MigrationOrchestrator:
    """
    Runs migrations described by :class:`MigrationOptions`.

    Args:
        options:   Endpoints and run options.
        mappings:  Accepted table mappings (a list or a repository). Without
                   mappings every selected table is copied as-is.
        event_bus: Where progress events are published. A private bus is
                   created when omitted.

    Example::

        orchestrator = MigrationOrchestrator(options, mappings=repo)
        stats = await orchestrator.start_migration()
        print(stats.records_processed, stats.problematic_tables)
    """

    def __init__(
        self,
        options: MigrationOptions,
        mappings: MappingRepository | Iterable[TableMapping] | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.options = options
        if isinstance(mappings, MappingRepository):
            self._mappings = mappings.all()
        else:
            self._mappings = list(mappings or [])
        self.event_bus = event_bus if event_bus is not None else EventBus()

        self.job_id: str | None = None
        self.progress = MigrationProgress()
        self.statistics: MigrationStatistics | None = None
        self._running = False
        self._token = CancellationToken()
        self._stats = MigrationStatistics()
        self._unit_totals: dict[str, int] = {}
        self._failed_units: set[str] = set()
        self._log = bind_context(log)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def source(self) -> DatabaseAdapter:
        return self.options.source.adapter

    @property
    def target(self) -> DatabaseAdapter:
        return self.options.target.adapter

    def status(self) -> MigrationProgress:
        return self.progress.snapshot()

    def stop(self, reason: str | None = None) -> None:
        """Request a cooperative stop of the running migration."""
        self._token.cancel(reason)

    async def start_migration(
        self, job_id: str | None = None, token: CancellationToken | None = None
    ) -> MigrationStatistics:
        """
        Run the whole migration.

        Returns:
            Final statistics (also published with ``migration:completed``).

        Raises:
            MigrationAlreadyRunningError: This instance is already migrating.
            DatabaseConnectionError:      Either adapter could not connect.
            MigrationAbortedError:        A table failed and ``skip_errors`` is off.
        """
        if self._running:
            raise MigrationAlreadyRunningError("Migration is already running")
        self._running = True
        self._reset(job_id, token)
        self._log.info(
            "Migration started: %s → %s%s.",
            self.source.type, self.target.type, " (dry run)" if self.options.dry_run else "",
        )
        self._emit(EventKind.MIGRATION_STARTED)

        try:
            try:
                await self._run()
            finally:
                await self._disconnect_all()
        except (Exception, asyncio.CancelledError) as exc:
            self._fail(exc)
            raise
        else:
            return self._complete()
        finally:
            self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _reset(self, job_id: str | None, token: CancellationToken | None) -> None:
        self.job_id = job_id or uuid.uuid4().hex
        self._token = token if token is not None else CancellationToken()
        self.progress = MigrationProgress()
        self.statistics = None
        self._stats = MigrationStatistics(dry_run=self.options.dry_run)
        self._unit_totals = {}
        self._failed_units = set()
        self._log = bind_context(log, job=self.job_id)

    @property
    def _stopped(self) -> bool:
        return self._token.cancelled

    async def _run(self) -> None:
        self._set_phase(MigrationPhase.CONNECTING)
        await self._connect(self.source, self.options.source.config, "source")
        await self._connect(self.target, self.options.target.config, "target")

        self._set_phase(MigrationPhase.ANALYZING)
        units = await self._analyze()
        if self._stopped:
            return

        self._set_phase(MigrationPhase.CREATING)
        units = await self._create_structures(units)
        if self._stopped:
            return

        self._set_phase(MigrationPhase.MIGRATING)
        await self._migrate(units)
        if self._stopped:
            return

        remaining = [u for u in units if u.label not in self._failed_units]
        if self.options.create_indexes:
            self._set_phase(MigrationPhase.INDEXING)
            await self._create_indexes(remaining)
        if self.options.validate_data:
            self._set_phase(MigrationPhase.VALIDATING)
            await self._validate(remaining)

    def _complete(self) -> MigrationStatistics:
        self._set_phase(MigrationPhase.COMPLETE)
        stats = self._finalize_statistics()
        if stats.stopped:
            self._log.warning(
                "Migration stopped after %d record(s)%s.",
                stats.records_processed,
                f": {self._token.reason}" if self._token.reason else "",
            )
        else:
            self._log.info(
                "Migration complete: %d table(s), %d record(s) in %.2fs (%d error(s), %d warning(s)).",
                stats.tables_processed, stats.records_processed, stats.duration_seconds,
                stats.errors, stats.warnings,
            )
        self._emit(EventKind.MIGRATION_COMPLETED, statistics=stats)
        return stats

    def _fail(self, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        if message not in self.progress.errors:
            self.progress.errors.append(message)
        if self.progress.phase not in (MigrationPhase.COMPLETE, MigrationPhase.ERROR):
            self.progress.advance_phase(MigrationPhase.ERROR)
        stats = self._finalize_statistics()
        self._log.error("Migration failed: %s", message)
        self._emit(EventKind.MIGRATION_FAILED, error=exc, statistics=stats)

    def _finalize_statistics(self) -> MigrationStatistics:
        now = datetime.now(timezone.utc)
        duration = max((now - self.progress.started_at).total_seconds(), 0.0)
        stats = self._stats
        stats.total_tables = self.progress.total_tables
        stats.tables_processed = self.progress.tables_completed
        stats.total_records = self.progress.total_records
        stats.records_processed = self.progress.records_processed
        stats.errors = len(self.progress.errors)
        stats.warnings = len(self.progress.warnings)
        stats.error_messages = list(self.progress.errors)
        stats.warning_messages = list(self.progress.warnings)
        stats.duration_seconds = round(duration, 3)
        stats.average_throughput = (
            round(self.progress.records_processed / duration, 2) if duration > 0 else 0.0
        )
        if self._unit_totals:
            stats.largest_table = max(self._unit_totals.items(), key=lambda kv: kv[1])
        stats.stopped = self._stopped
        self.statistics = stats
        return stats

    # ------------------------------------------------------------------
    # Events and bookkeeping
    # ------------------------------------------------------------------

    def _emit(self, kind: EventKind, **fields: Any) -> None:
        self.event_bus.publish(ProgressEvent(
            kind=kind,
            job_id=self.job_id or "",
            progress=self.progress.snapshot(),
            **fields,
        ))

    def _set_phase(self, phase: MigrationPhase) -> None:
        self.progress.advance_phase(phase)
        self._log = bind_context(self._log, phase=phase.value)
        self._log.debug("Entering phase '%s'.", phase.value)
        self._emit(EventKind.MIGRATION_PROGRESS)

    def _warn(self, message: str, logger: Any = None) -> None:
        self.progress.warnings.append(message)
        (logger or self._log).warning(message)

    def _table_failure(self, unit: TransferUnit, exc: Exception, stage: str) -> None:
        """
        Apply the skip/abort policy to a table-level failure.

        Raises:
            MigrationAbortedError: When ``skip_errors`` is off.
        """
        message = f"{stage} failed for '{unit.label}': {exc}"
        self.progress.errors.append(message)
        self._failed_units.add(unit.label)
        if unit.label not in self._stats.problematic_tables:
            self._stats.problematic_tables.append(unit.label)
        self._emit(EventKind.TABLE_FAILED, table=unit.label, error=exc)
        table_log = bind_context(self._log, table=unit.label)
        if not self.options.skip_errors:
            table_log.error(message)
            raise MigrationAbortedError(message, table=unit.label) from exc
        table_log.warning("%s (skipped)", message)

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    async def _connect(self, adapter: DatabaseAdapter, config: dict, role: str) -> None:
        try:
            await adapter.connect(config)
        except DatabaseConnectionError:
            raise
        except Exception as exc:
            raise DatabaseConnectionError(
                f"Could not connect to {role} database ({adapter.type}): {exc}"
            ) from exc
        self._log.info("Connected to %s (%s).", role, adapter.type)

    async def _disconnect_all(self) -> None:
        for role, adapter in (("source", self.source), ("target", self.target)):
            try:
                await adapter.disconnect()
            except Exception as exc:
                self._log.warning("Error disconnecting %s (%s): %s", role, adapter.type, exc)

    # ------------------------------------------------------------------
    # Analyzing
    # ------------------------------------------------------------------

    async def _analyze(self) -> list[TransferUnit]:
        schema = await self.source.get_schema()
        selected = [t for t in schema.tables if self.options.selects(t.name)]
        if self.options.tables != "all":
            known = set(schema.table_names)
            for name in self.options.tables:
                if name not in known:
                    self._warn(f"Table '{name}' not found in source schema.")

        units = self._plan_units(selected)
        total = 0
        for unit in units:
            count = await self._count_source(unit)
            self._unit_totals[unit.label] = count
            total += count

        self.progress.total_tables = len(units)
        self.progress.total_records = total
        self._log.info("%d table(s) selected, %d record(s) to migrate.", len(units), total)
        return units

    def _plan_units(self, selected: list[TableInfo]) -> list[TransferUnit]:
        enabled = [m for m in self._mappings if m.enabled]
        for mapping in enabled:
            if mapping.kind == MappingKind.MANY_TO_ONE:
                self._warn(
                    f"Many-to-one mapping '{mapping.id}' is exported as DML only; "
                    "it is not executed by the orchestrator."
                )

        units: list[TransferUnit] = []
        for table in selected:
            table_filter = self.options.filter_for(table.name)
            mapped = [
                m for m in enabled
                if m.kind != MappingKind.MANY_TO_ONE and m.source_table == table.name
            ]
            if not mapped:
                units.append(TransferUnit(
                    source=table,
                    target_table=table.name,
                    where=table_filter.where,
                    order_by=table_filter.order_by,
                    limit=table_filter.limit,
                    primary_keys=table.primary_keys,
                ))
                continue
            for mapping in mapped:
                units.append(self._unit_for_mapping(table, mapping, table_filter))
        return units

    @staticmethod
    def _unit_for_mapping(table: TableInfo, mapping: TableMapping, table_filter: Any) -> TransferUnit:
        columns = list(mapping.column_mappings)
        where = table_filter.where
        if mapping.kind == MappingKind.ONE_TO_MANY and mapping.split_rule is not None:
            if not columns:
                columns = [
                    ColumnMapping(
                        source_column=c.name,
                        source_type=c.type,
                        target_column=c.name,
                        target_type=c.type,
                    )
                    for c in table.columns if c.name in mapping.split_rule.columns
                ]
            where = _combine_where(where, mapping.split_rule.where)

        renamed = {split_qualified(cm.source_column)[1]: cm.target_column for cm in columns}
        if columns:
            pks = tuple(renamed[pk] for pk in table.primary_keys if pk in renamed)
        else:
            pks = table.primary_keys
        return TransferUnit(
            source=table,
            target_table=mapping.target_table,
            column_mappings=columns,
            where=where,
            order_by=table_filter.order_by,
            limit=table_filter.limit,
            mapping_id=mapping.id,
            primary_keys=pks,
        )

    async def _count_source(self, unit: TransferUnit) -> int:
        try:
            count = await self.source.count_rows(unit.source_table, unit.where)
        except Exception as exc:
            self._warn(f"Could not count rows of '{unit.label}': {exc}")
            return 0
        if unit.limit is not None:
            count = min(count, unit.limit)
        return count

    # ------------------------------------------------------------------
    # Creating
    # ------------------------------------------------------------------

    def _translate(self, unit: TransferUnit) -> TableInfo:
        """Target structure for *unit*, with types from the target's type mapper."""
        if not unit.column_mappings:
            columns = [
                replace(c, type=self.target.map_data_type(c.original_type or c.type))
                for c in unit.source.columns
            ]
            return unit.source.renamed(unit.target_table, columns)

        columns: list[ColumnInfo] = []
        seen: set[str] = set()
        for cm in unit.column_mappings:
            if cm.target_column in seen:
                continue
            seen.add(cm.target_column)
            source_col = unit.source.get_column(split_qualified(cm.source_column)[1])
            original = (source_col.original_type or source_col.type) if source_col else cm.target_type
            columns.append(ColumnInfo(
                name=cm.target_column,
                type=self.target.map_data_type(original),
                original_type=original,
                nullable=cm.nullable,
                default_value=cm.default_value,
                max_length=source_col.max_length if source_col else None,
                precision=source_col.precision if source_col else None,
                scale=source_col.scale if source_col else None,
                auto_increment=source_col.auto_increment if source_col else False,
            ))
        return TableInfo(
            name=unit.target_table,
            columns=columns,
            primary_keys=unit.primary_keys,
        )

    async def _create_structures(self, units: list[TransferUnit]) -> list[TransferUnit]:
        existing = {name.lower() for name in await self.target.list_tables()}
        kept: list[TransferUnit] = []
        for unit in units:
            if self._stopped:
                break
            if unit.target_table.lower() in existing:
                kept.append(unit)
                continue
            table_info = self._translate(unit)
            if self.options.dry_run:
                self._log.info("Dry run: would create table '%s'.", unit.target_table)
            else:
                try:
                    await self.target.create_table(table_info)
                except Exception as exc:
                    self._table_failure(unit, exc, "Table creation")
                    continue
                self._log.info("Created table '%s'.", unit.target_table)
            existing.add(unit.target_table.lower())
            kept.append(unit)
        return kept

    # ------------------------------------------------------------------
    # Migrating
    # ------------------------------------------------------------------

    async def _migrate(self, units: list[TransferUnit]) -> None:
        size = self.options.parallel_tables
        if size <= 1:
            for unit in units:
                if self._stopped:
                    return
                await self._migrate_guarded(unit)
            return

        for chunk in _chunks(units, size):
            if self._stopped:
                return
            self._log.debug("Migrating chunk: %s", ", ".join(u.label for u in chunk))
            results = await asyncio.gather(
                *(self._migrate_guarded(u) for u in chunk), return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result

    async def _migrate_guarded(self, unit: TransferUnit) -> None:
        try:
            await self._migrate_unit(unit)
        except MigrationAbortedError:
            raise
        except Exception as exc:
            self._table_failure(unit, exc, "Migration")

    async def _migrate_unit(self, unit: TransferUnit) -> None:
        table_log = bind_context(self._log, table=unit.label)
        self.progress.current_table = unit.label
        self.progress.table_records.setdefault(unit.label, 0)
        self._emit(EventKind.TABLE_STARTED, table=unit.label)
        table_log.info("Migrating into '%s'.", unit.target_table)

        batch_size = self.options.batch_size
        processed = 0
        failures = 0
        batch: list[Row] = []
        stream = self.source.stream_rows(StreamOptions(
            table_name=unit.source_table,
            batch_size=batch_size,
            where=unit.where,
            order_by=unit.order_by,
            limit=unit.limit,
        ))
        try:
            async for row in stream:
                batch.append(row)
                if len(batch) < batch_size:
                    continue
                written, failed = await self._process_batch(unit, batch, table_log)
                processed += written
                failures += failed
                batch = []
                if self._stopped:
                    break
            if batch and not self._stopped:
                written, failed = await self._process_batch(unit, batch, table_log)
                processed += written
                failures += failed
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if failures:
            self._warn(
                f"{failures} value(s) in '{unit.label}' could not be converted "
                "and were written unchanged.",
                table_log,
            )
        if self._stopped:
            table_log.info("Stopped after %d record(s).", processed)
            return
        self.progress.tables_completed += 1
        table_log.info("Completed: %d record(s).", processed)
        self._emit(EventKind.TABLE_COMPLETED, table=unit.label, row_count=processed)

    async def _process_batch(
        self, unit: TransferUnit, rows: list[Row], table_log: Any
    ) -> tuple[int, int]:
        """Transform, convert and write one batch. Returns ``(rows, failed values)``."""
        rows, failures = apply_transform_rules(
            rows, unit.source_table, self.options.transform_rules
        )
        if unit.column_mappings:
            converted = []
            for row in rows:
                result = convert_row(row, unit.column_mappings)
                failures.extend(result.failures)
                converted.append(result.row)
            rows = converted
        for failure in failures:
            table_log.debug(
                "Conversion failed for %s=%r: %s",
                failure.column, failure.value, failure.message,
            )
        failed = len(failures)
        self._stats.conversion_errors += failed

        if not self.options.dry_run:
            await self._insert_with_retry(unit, rows, table_log)
        self._record_batch(unit, len(rows))
        return len(rows), failed

    async def _insert_with_retry(
        self, unit: TransferUnit, rows: list[Row], table_log: Any
    ) -> None:
        attempts = self.options.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                result = await self.target.insert_rows(unit.target_table, rows)
            except ReadOnlyAdapterError:
                raise
            except Exception as exc:
                last_error = exc
                table_log.warning("Insert attempt %d/%d failed: %s", attempt, attempts, exc)
                if attempt < attempts:
                    await asyncio.sleep(self.options.retry_delay)
                continue
            for message in result.errors:
                self._warn(f"'{unit.label}': {message}", table_log)
            return
        raise InsertError(
            f"Insert into '{unit.target_table}' failed after {attempts} attempt(s): {last_error}",
            table=unit.target_table,
            attempts=attempts,
        ) from last_error

    def _record_batch(self, unit: TransferUnit, count: int) -> None:
        self.progress.records_processed += count
        self.progress.table_records[unit.label] = self.progress.table_records.get(unit.label, 0) + count
        self.progress.recompute_rates()
        self._emit(EventKind.MIGRATION_PROGRESS, table=unit.label)

    # ------------------------------------------------------------------
    # Indexing and validation
    # ------------------------------------------------------------------

    async def _create_indexes(self, units: list[TransferUnit]) -> None:
        indexed: set[str] = set()
        for unit in units:
            if not unit.primary_keys or unit.target_table in indexed:
                continue
            indexed.add(unit.target_table)
            sql = (
                f"CREATE INDEX IDX_{unit.target_table}_PK "
                f"ON {unit.target_table} ({', '.join(unit.primary_keys)})"
            )
            if self.options.dry_run:
                self._log.info("Dry run: would execute %s", sql)
                continue
            try:
                await self.target.execute(sql)
            except Exception as exc:
                self._warn(f"Could not create index on '{unit.target_table}': {exc}")

    async def _validate(self, units: list[TransferUnit]) -> None:
        if self.options.dry_run:
            self._log.info("Dry run: row count validation skipped.")
            return
        for unit in units:
            try:
                source_count = await self.source.count_rows(unit.source_table, unit.where)
                target_count = await self.target.count_rows(unit.target_table)
            except Exception as exc:
                self._warn(f"Could not validate '{unit.label}': {exc}")
                continue
            if unit.limit is not None:
                source_count = min(source_count, unit.limit)
            if source_count != target_count:
                warning = ValidationWarning(unit.label, source_count, target_count)
                self._stats.validation_warnings.append(warning)
                self._warn(warning.message)
