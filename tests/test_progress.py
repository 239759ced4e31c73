"""
tests/test_progress.py
----------------------
Unit tests for models/progress.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from schemabridge.models.progress import (
    EventKind,
    MigrationPhase,
    MigrationProgress,
    MigrationStatistics,
)


class TestPhases:
    def test_forward_and_skip(self) -> None:
        progress = MigrationProgress()
        progress.advance_phase(MigrationPhase.MIGRATING)
        progress.advance_phase(MigrationPhase.COMPLETE)
        assert progress.phase == MigrationPhase.COMPLETE

    def test_backwards_rejected(self) -> None:
        progress = MigrationProgress(phase=MigrationPhase.INDEXING)
        with pytest.raises(ValueError, match="Illegal phase transition"):
            progress.advance_phase(MigrationPhase.CREATING)

    def test_error_reachable_then_terminal(self) -> None:
        progress = MigrationProgress(phase=MigrationPhase.ANALYZING)
        progress.advance_phase(MigrationPhase.ERROR)
        with pytest.raises(ValueError, match="already finished"):
            progress.advance_phase(MigrationPhase.COMPLETE)


class TestRates:
    def test_percent(self) -> None:
        assert MigrationProgress().percent == 0.0
        assert MigrationProgress(records_processed=1, total_records=3).percent == 33.33
        assert MigrationProgress(records_processed=9, total_records=3).percent == 100.0

    def test_throughput_and_eta(self) -> None:
        progress = MigrationProgress(records_processed=500, total_records=1500)
        now = progress.started_at + timedelta(seconds=10)
        progress.recompute_rates(now)
        assert progress.throughput == 50.0
        assert progress.estimated_completion == now + timedelta(seconds=20)

    def test_no_elapsed_time(self) -> None:
        progress = MigrationProgress(records_processed=5, total_records=10)
        progress.recompute_rates(progress.started_at)
        assert progress.throughput == 0.0
        assert progress.estimated_completion is None

    def test_snapshot_is_independent(self) -> None:
        progress = MigrationProgress()
        snap = progress.snapshot()
        progress.errors.append("boom")
        assert snap.errors == []


class TestSerialisation:
    def test_progress_to_dict(self) -> None:
        data = MigrationProgress(current_table="T", total_records=4, records_processed=1).to_dict()
        assert data["phase"] == "connecting"
        assert data["currentTable"] == "T"
        assert data["percent"] == 25.0
        assert data["estimatedCompletion"] is None

    def test_statistics_to_dict(self) -> None:
        stats = MigrationStatistics(largest_table=("A", 10), problematic_tables=["B"], stopped=True)
        data = stats.to_dict()
        assert data["largestTable"] == {"name": "A", "records": 10}
        assert data["problematicTables"] == ["B"]
        assert data["stopped"] is True

    def test_terminal_events(self) -> None:
        assert EventKind.MIGRATION_COMPLETED.is_terminal
        assert EventKind.MIGRATION_FAILED.is_terminal
        assert not EventKind.TABLE_FAILED.is_terminal
