"""
schemabridge/adapters/sqlite.py
-------------------------------
File-based adapter over the standard-library ``sqlite3`` driver.

Used as an embedded target, as a local staging database, and opened
read-only as a legacy source. Calls run in a worker thread behind one
lock, the same way the MySQL adapter does.
"""
from __future__ import annotations

import asyncio
import re
import sqlite3
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from schemabridge.adapters.base import (
    DatabaseAdapter,
    InsertResult,
    ReadOnlyAdapter,
    Row,
    StreamOptions,
)
from schemabridge.core.type_compat import (
    is_date_type,
    is_integer_type,
    is_numeric_type,
    is_text_type,
    normalize_type,
)
from schemabridge.errors import DatabaseConnectionError, InsertError, SchemaError
from schemabridge.logger import get_logger
from schemabridge.models.schema import ColumnInfo, DatabaseSchema, IndexInfo, TableInfo

log = get_logger(__name__)

_PARAMS_RE = re.compile(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)")


def _q(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _literal(value: Any) -> str:
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


def _type_params(declared: str) -> tuple[int | None, int | None]:
    match = _PARAMS_RE.search(declared or "")
    if not match:
        return None, None
    first = int(match.group(1))
    second = int(match.group(2)) if match.group(2) else None
    return first, second


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database file.

    ``connect`` takes ``{"path": ...}`` (``":memory:"`` is accepted).
    Rows come back as plain dicts.
    """

    type = "sqlite"

    def __init__(self) -> None:
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()
        self.path: str | None = None

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseConnectionError("SQLite database is not open. Call connect() first.")
        return self._conn

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self._require_conn().execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _open(self, path: str) -> sqlite3.Connection:
        return sqlite3.connect(path, check_same_thread=False)

    async def connect(self, config: dict[str, Any] | None = None) -> sqlite3.Connection:
        path = (config or {}).get("path")
        if not path:
            raise DatabaseConnectionError("SQLite adapter needs a 'path' to connect.")
        self.path = str(path)
        try:
            conn = await asyncio.to_thread(self._open, self.path)
        except sqlite3.Error as exc:
            raise DatabaseConnectionError(f"Could not open SQLite database '{path}': {exc}") from exc
        conn.row_factory = sqlite3.Row
        self._conn = conn
        log.info("Opened SQLite database '%s'.", self.path)
        return conn

    async def disconnect(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await self._run(conn.close)
        log.info("SQLite database '%s' closed.", self.path)

    async def test_connection(self) -> bool:
        try:
            await self._run(self._query, "SELECT 1")
        except (sqlite3.Error, DatabaseConnectionError) as exc:
            log.warning("SQLite connection test failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        try:
            rows = await self._run(
                self._query,
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name",
            )
        except sqlite3.Error as exc:
            raise SchemaError(f"Could not list SQLite tables: {exc}") from exc
        return [row["name"] for row in rows]

    async def get_table_info(self, table_name: str) -> TableInfo:
        try:
            return await self._run(self._table_info_sync, table_name)
        except sqlite3.Error as exc:
            raise SchemaError(f"Could not describe table '{table_name}': {exc}") from exc

    def _table_info_sync(self, table_name: str) -> TableInfo:
        info = self._query(f"PRAGMA table_info({_q(table_name)})")
        if not info:
            raise SchemaError(f"Table '{table_name}' not found.")
        create_sql = self._query(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table_name,)
        )
        autoincrement = bool(create_sql) and "AUTOINCREMENT" in (create_sql[0]["sql"] or "").upper()

        pk_rows = sorted((r for r in info if r["pk"]), key=lambda r: r["pk"])
        primary_keys = [r["name"] for r in pk_rows]
        columns = []
        for row in info:
            declared = row["type"] or ""
            base = normalize_type(declared)
            first, second = _type_params(declared)
            text = is_text_type(base)
            columns.append(ColumnInfo(
                name=row["name"],
                type=base,
                original_type=declared,
                nullable=not row["notnull"] and not row["pk"],
                default_value=row["dflt_value"],
                max_length=first if text else None,
                precision=None if text else first,
                scale=None if text else second,
                auto_increment=(
                    autoincrement and len(primary_keys) == 1 and row["name"] == primary_keys[0]
                ),
            ))

        indexes = []
        for idx in self._query(f"PRAGMA index_list({_q(table_name)})"):
            if idx["origin"] == "pk":
                continue
            cols = [r["name"] for r in self._query(f"PRAGMA index_info({_q(idx['name'])})")]
            indexes.append(IndexInfo(name=idx["name"], columns=tuple(cols), unique=bool(idx["unique"])))

        return TableInfo(name=table_name, columns=columns, primary_keys=primary_keys, indexes=indexes)

    async def get_schema(self) -> DatabaseSchema:
        tables = [await self.get_table_info(name) for name in await self.list_tables()]
        version = await self._run(self._query, "SELECT sqlite_version()")
        return DatabaseSchema(
            name=Path(self.path or "").stem,
            tables=tables,
            version=version[0][0] if version else None,
            charset="UTF-8",
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def stream_rows(self, options: StreamOptions) -> AsyncIterator[Row]:
        sql = f"SELECT * FROM {_q(options.table_name)}"
        if options.where:
            sql += f" WHERE {options.where}"
        if options.order_by:
            sql += f" ORDER BY {options.order_by}"
        params: tuple = ()
        if options.limit is not None or options.offset:
            sql += " LIMIT ? OFFSET ?"
            params = (options.limit if options.limit is not None else -1, options.offset or 0)

        try:
            cursor = await self._run(self._require_conn().execute, sql, params)
        except sqlite3.Error as exc:
            raise SchemaError(f"Could not read '{options.table_name}': {exc}") from exc
        try:
            while True:
                rows = await self._run(cursor.fetchmany, options.batch_size)
                if not rows:
                    return
                for row in rows:
                    yield dict(row)
        finally:
            cursor.close()

    async def count_rows(self, table_name: str, where: str | None = None) -> int:
        sql = f"SELECT COUNT(*) FROM {_q(table_name)}"
        if where:
            sql += f" WHERE {where}"
        try:
            rows = await self._run(self._query, sql)
        except sqlite3.Error as exc:
            raise SchemaError(f"Could not count rows of '{table_name}': {exc}") from exc
        return int(rows[0][0])

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_sync(self, sql: str, params: Any = (), many: bool = False) -> tuple[int, Any]:
        conn = self._require_conn()
        try:
            cursor = conn.executemany(sql, params) if many else conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount, cursor.lastrowid
        except sqlite3.Error:
            conn.rollback()
            raise

    async def insert_rows(self, table_name: str, rows: list[Row]) -> InsertResult:
        if not rows:
            return InsertResult(inserted_count=0)
        columns = list(rows[0].keys())
        sql = (
            f"INSERT INTO {_q(table_name)} ({', '.join(_q(c) for c in columns)}) "
            f"VALUES ({', '.join('?' * len(columns))})"
        )
        values = [tuple(row.get(c) for c in columns) for row in rows]
        try:
            count, last_id = await self._run(self._write_sync, sql, values, True)
        except sqlite3.Error as exc:
            raise InsertError(f"Insert into '{table_name}' failed: {exc}", table=table_name) from exc
        return InsertResult(inserted_count=count if count >= 0 else len(rows), last_insert_id=last_id)

    async def create_table(self, table_info: TableInfo) -> None:
        single_pk = len(table_info.primary_keys) == 1
        definitions = []
        for col in table_info.columns:
            definition = f"  {_q(col.name)} {col.type}"
            if col.auto_increment and single_pk and col.name == table_info.primary_keys[0]:
                # SQLite only allows AUTOINCREMENT on an INTEGER PRIMARY KEY column.
                definitions.append(f"  {_q(col.name)} INTEGER PRIMARY KEY AUTOINCREMENT")
                continue
            if not col.nullable:
                definition += " NOT NULL"
            if col.default_value is not None:
                definition += f" DEFAULT {_literal(col.default_value)}"
            definitions.append(definition)
        has_inline_pk = any("AUTOINCREMENT" in d for d in definitions)
        if table_info.primary_keys and not has_inline_pk:
            definitions.append(
                f"  PRIMARY KEY ({', '.join(_q(pk) for pk in table_info.primary_keys)})"
            )
        sql = f"CREATE TABLE {_q(table_info.name)} (\n" + ",\n".join(definitions) + "\n)"
        try:
            await self._run(self._write_sync, sql)
        except sqlite3.Error as exc:
            raise SchemaError(f"Could not create table '{table_info.name}': {exc}") from exc

    async def drop_table(self, table_name: str) -> None:
        try:
            await self._run(self._write_sync, f"DROP TABLE IF EXISTS {_q(table_name)}")
        except sqlite3.Error as exc:
            raise SchemaError(f"Could not drop table '{table_name}': {exc}") from exc

    async def execute(self, sql: str, params: tuple | None = None) -> Any:
        try:
            count, _ = await self._run(self._write_sync, sql, params or ())
        except sqlite3.Error as exc:
            log.error("SQL execution error: %s | SQL: %.500s", exc, sql)
            raise SchemaError(str(exc)) from exc
        return count

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def map_data_type(self, original_type: str) -> str:
        """
        Map a foreign type onto SQLite's storage classes, keeping the
        declared name where it still yields the right affinity
        (``VARCHAR(50)`` stays as is; ``CSTRING(20)`` becomes ``TEXT``).
        """
        base = normalize_type(original_type)
        if base in ("VARCHAR", "CHAR", "NUMERIC", "DECIMAL", "DATE", "DATETIME", "TIMESTAMP"):
            return (original_type or base).strip().upper()
        if is_integer_type(base):
            return "INTEGER"
        if is_numeric_type(base):
            return "REAL"
        if is_date_type(base):
            return base
        if is_text_type(base):
            return "TEXT"
        if base in ("BLOB", "BINARY", "VARBINARY"):
            return "BLOB"
        if base in ("BOOLEAN", "LOGICAL"):
            return "INTEGER"
        return "TEXT"


class ReadOnlySQLiteAdapter(ReadOnlyAdapter, SQLiteAdapter):
    """SQLite file opened as a source only; every write is refused."""

    type = "sqlite"

    def _open(self, path: str) -> sqlite3.Connection:
        uri = f"file:{Path(path).as_posix()}?mode=ro"
        return sqlite3.connect(uri, uri=True, check_same_thread=False)

    async def execute(self, sql: str, params: tuple | None = None) -> Any:
        raise self._refuse("executing statements")
