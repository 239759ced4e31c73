"""
schemabridge/adapters/base.py
-----------------------------
The contract every database adapter implements.

The orchestrator and the mapping engine only ever talk to this
interface. Each concrete engine is one subclass; all I/O methods are
coroutines so the orchestrator can interleave several tables on one
event loop. ``map_data_type`` is pure and synchronous.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from schemabridge.errors import ReadOnlyAdapterError
from schemabridge.models.schema import DatabaseSchema, TableInfo

Row = dict[str, Any]


@dataclass(frozen=True)
class StreamOptions:
    """What to read from a source table and in which order."""
    table_name: str
    batch_size: int = 1000
    where: str | None = None
    order_by: str | None = None
    offset: int | None = None
    limit: int | None = None


@dataclass
class InsertResult:
    inserted_count: int
    errors: list[str] = field(default_factory=list)
    last_insert_id: Any = None


class DatabaseAdapter(ABC):
    """
    Abstract database adapter.

    Implementations raise :class:`~schemabridge.errors.DatabaseConnectionError`
    from ``connect``, :class:`~schemabridge.errors.SchemaError` from
    introspection / DDL, and :class:`~schemabridge.errors.InsertError`
    from ``insert_rows``.
    """

    #: Short engine identifier, e.g. ``"mysql"``.
    type: str = "generic"
    read_only: bool = False

    @abstractmethod
    async def connect(self, config: dict[str, Any] | None = None) -> Any:
        """Open the connection and return the driver-level handle."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. Safe to call when not connected."""

    @abstractmethod
    async def test_connection(self) -> bool:
        ...

    @abstractmethod
    async def get_schema(self) -> DatabaseSchema:
        ...

    @abstractmethod
    async def get_table_info(self, table_name: str) -> TableInfo:
        ...

    @abstractmethod
    async def list_tables(self) -> list[str]:
        ...

    @abstractmethod
    def stream_rows(self, options: StreamOptions) -> AsyncIterator[Row]:
        """
        Lazily yield the rows of ``options.table_name``.

        The sequence is finite and cannot be restarted once consumed;
        ``options.batch_size`` is the fetch size used against the engine.
        """

    @abstractmethod
    async def insert_rows(self, table_name: str, rows: list[Row]) -> InsertResult:
        ...

    @abstractmethod
    async def create_table(self, table_info: TableInfo) -> None:
        ...

    @abstractmethod
    async def drop_table(self, table_name: str) -> None:
        ...

    @abstractmethod
    async def count_rows(self, table_name: str, where: str | None = None) -> int:
        ...

    @abstractmethod
    async def execute(self, sql: str, params: tuple | None = None) -> Any:
        """Run an arbitrary statement (used for index creation)."""

    @abstractmethod
    def map_data_type(self, original_type: str) -> str:
        """Translate a foreign type definition into this engine's type."""


class ReadOnlyAdapter(DatabaseAdapter):
    """
    Base for source-only engines (legacy file formats).

    Writes fail loudly instead of silently doing nothing.
    """

    read_only = True

    def _refuse(self, operation: str) -> ReadOnlyAdapterError:
        return ReadOnlyAdapterError(
            f"{self.type} is a read-only source; {operation} is not supported."
        )

    async def insert_rows(self, table_name: str, rows: list[Row]) -> InsertResult:
        raise self._refuse(f"inserting into '{table_name}'")

    async def create_table(self, table_info: TableInfo) -> None:
        raise self._refuse(f"creating table '{table_info.name}'")

    async def drop_table(self, table_name: str) -> None:
        raise self._refuse(f"dropping table '{table_name}'")
