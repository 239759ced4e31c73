"""
schemabridge/errors.py
----------------------
Exception taxonomy shared by the mapping engine, the orchestrator and the
adapters.

Propagation policy:
    * ``DatabaseConnectionError`` is always fatal to a migration.
    * ``SchemaError`` / ``InsertError`` are fatal unless ``skip_errors``.
    * ``ConversionError`` is recorded per value, never aborts a batch.
    * ``ValidationWarning`` is a record, never raised.
"""
from __future__ import annotations

from dataclasses import dataclass


class SchemaBridgeError(Exception):
    """Base class for every error raised by this package."""


class DatabaseConnectionError(SchemaBridgeError):
    """Raised when an adapter cannot reach its database."""


class SchemaError(SchemaBridgeError):
    """Raised for introspection or DDL failures on a single table."""


class ReadOnlyAdapterError(SchemaError):
    """Raised when a write is attempted through a read-only source adapter."""


class ConversionError(SchemaBridgeError):
    """Raised when a single value cannot be converted between types."""


class InsertError(SchemaBridgeError):
    """Raised when a batch cannot be written to the target table."""

    def __init__(self, message: str, table: str | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.table = table
        self.attempts = attempts


class MappingError(SchemaBridgeError):
    """Raised for invalid mapping requests (unknown tables, bad cardinality)."""


class MigrationAlreadyRunningError(SchemaBridgeError):
    """Raised when ``start_migration`` is called on a busy orchestrator."""


class MigrationAbortedError(SchemaBridgeError):
    """Raised when a table-level failure aborts the whole migration."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class UnknownJobError(SchemaBridgeError, KeyError):
    """Raised by the job registry for an id it never issued."""

    def __str__(self) -> str:
        return Exception.__str__(self)


@dataclass(frozen=True)
class ValidationWarning:
    """Post-migration row-count mismatch for one table. Never fatal."""
    table: str
    source_count: int
    target_count: int

    @property
    def message(self) -> str:
        return (
            f"Row count mismatch in '{self.table}': "
            f"source={self.source_count}, target={self.target_count}"
        )

    def __str__(self) -> str:
        return self.message
