"""
schemabridge/models/options.py
------------------------------
Validated run options for the migration orchestrator.

Pydantic models reject nonsensical values (``batch_size=0``,
negative retries) before any connection is opened; defaults come from
:data:`schemabridge.config.CONFIG`.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from schemabridge.adapters.base import DatabaseAdapter
from schemabridge.config import CONFIG


class Endpoint(BaseModel):
    """One side of a migration: an adapter and its connection settings."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    adapter: DatabaseAdapter
    config: dict[str, Any] = Field(default_factory=dict)


class TableFilter(BaseModel):
    """Per-table read restrictions passed to ``stream_rows``/``count_rows``."""
    where: Optional[str] = None
    order_by: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=0)


class TransformKind(str, Enum):
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"
    NULL_TO_EMPTY = "null_to_empty"
    CUSTOM = "custom"


class TransformRule(BaseModel):
    """A value rewrite applied to one source column before conversion."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    table: str
    column: str
    transform: TransformKind
    custom: Optional[Callable[[Any], Any]] = None


class MigrationOptions(BaseModel):
    """
    Everything ``MigrationOrchestrator.start_migration`` needs.

    Example::

        options = MigrationOptions(
            source=Endpoint(adapter=SQLiteAdapter(), config={"path": "legacy.db"}),
            target=Endpoint(adapter=MySQLAdapter(), config={"host": "db", "database": "erp"}),
            tables=["CUSTOMERS", "ORDERS"],
            parallel_tables=2,
        )
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    source: Endpoint
    target: Endpoint
    tables: Union[list[str], Literal["all"]] = "all"
    exclude_tables: list[str] = Field(default_factory=list)
    batch_size: int = Field(default_factory=lambda: CONFIG.migration.batch_size, ge=1)
    parallel_tables: int = Field(default_factory=lambda: CONFIG.migration.parallel_tables, ge=1)
    max_retries: int = Field(default_factory=lambda: CONFIG.migration.max_retries, ge=0)
    retry_delay: float = Field(default_factory=lambda: CONFIG.migration.retry_delay, ge=0)
    skip_errors: bool = Field(default_factory=lambda: CONFIG.migration.skip_errors)
    create_indexes: bool = Field(default_factory=lambda: CONFIG.migration.create_indexes)
    validate_data: bool = Field(default_factory=lambda: CONFIG.migration.validate_data)
    dry_run: bool = False
    filters: dict[str, TableFilter] = Field(default_factory=dict)
    transform_rules: list[TransformRule] = Field(default_factory=list)

    def selects(self, table_name: str) -> bool:
        """Apply the include list, then the exclude list."""
        if self.tables != "all" and table_name not in self.tables:
            return False
        return table_name not in self.exclude_tables

    def filter_for(self, table_name: str) -> TableFilter:
        return self.filters.get(table_name) or TableFilter()
