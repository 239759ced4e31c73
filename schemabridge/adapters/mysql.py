"""
schemabridge/adapters/mysql.py
------------------------------
Client/server reference adapter backed by mysql-connector-python.

Design Decisions:
    * The driver is blocking; every call runs in a worker thread via
      ``asyncio.to_thread`` behind one lock, so a single connection is
      never used by two threads at once.
    * All table/column names use backtick quoting to avoid reserved-word
      collisions in MySQL. Data values always go through ``%s`` parameters.
    * Rows are read page by page with LIMIT/OFFSET instead of a
      server-side cursor, so parallel tables can share the connection
      without leaving unread result sets behind.
    * Connection attempts are retried with linear back-off.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Callable

import mysql.connector
from mysql.connector import MySQLConnection

from schemabridge.adapters.base import DatabaseAdapter, InsertResult, Row, StreamOptions
from schemabridge.config import CONFIG
from schemabridge.core.type_compat import normalize_type
from schemabridge.errors import DatabaseConnectionError, InsertError, SchemaError
from schemabridge.logger import get_logger
from schemabridge.models.schema import ColumnInfo, DatabaseSchema, IndexInfo, TableInfo

log = get_logger(__name__)

# Foreign base type → MySQL type. Parameterised types keep their parameters.
_TYPE_MAP: dict[str, str] = {
    "VARCHAR": "VARCHAR",
    "NVARCHAR": "VARCHAR",
    "CSTRING": "VARCHAR",
    "STRING": "VARCHAR",
    "CHAR": "CHAR",
    "NCHAR": "CHAR",
    "TEXT": "TEXT",
    "CLOB": "LONGTEXT",
    "MEMO": "LONGTEXT",
    "INTEGER": "INT",
    "INT": "INT",
    "SMALLINT": "SMALLINT",
    "BIGINT": "BIGINT",
    "NUMBER": "DECIMAL",
    "NUMERIC": "DECIMAL",
    "DECIMAL": "DECIMAL",
    "FLOAT": "DOUBLE",
    "REAL": "DOUBLE",
    "DOUBLE": "DOUBLE",
    "DOUBLE PRECISION": "DOUBLE",
    "DATE": "DATE",
    "TIME": "TIME",
    "DATETIME": "DATETIME",
    "TIMESTAMP": "DATETIME",
    "BOOLEAN": "TINYINT(1)",
    "LOGICAL": "TINYINT(1)",
    "BIT": "BIT",
    "BLOB": "LONGBLOB",
    "BINARY": "BINARY",
    "VARBINARY": "VARBINARY",
}
_KEEPS_PARAMS = frozenset({"VARCHAR", "CHAR", "DECIMAL", "BINARY", "VARBINARY", "BIT"})


def _q(identifier: str) -> str:
    return "`" + identifier.replace("`", "``") + "`"


def _literal(value: Any) -> str:
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


class MySQLAdapter(DatabaseAdapter):
    """
    MySQL / MariaDB adapter.

    ``connect`` accepts ``host``, ``port``, ``user``, ``password``,
    ``database`` and ``charset``; missing values fall back to
    ``CONFIG.db``.

    Example::

        adapter = MySQLAdapter()
        await adapter.connect({"user": "root", "password": "secret", "database": "erp"})
        tables = await adapter.list_tables()
        await adapter.disconnect()
    """

    type = "mysql"

    def __init__(self, retry_delay: float = 1.0) -> None:
        self._conn: MySQLConnection | None = None
        self._config: dict[str, Any] = {}
        self._retry_delay = retry_delay
        self._lock = asyncio.Lock()
        self.database: str | None = None

    # ------------------------------------------------------------------
    # Thread plumbing
    # ------------------------------------------------------------------

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

    def _require_conn(self) -> MySQLConnection:
        if self._conn is None or not self._conn.is_connected():
            raise DatabaseConnectionError("MySQL connection is not open. Call connect() first.")
        return self._conn

    def _query(self, sql: str, params: tuple | None = None, dictionary: bool = False) -> list:
        conn = self._require_conn()
        cursor = conn.cursor(dictionary=dictionary)
        try:
            cursor.execute(sql, params)
            return cursor.fetchall() if cursor.with_rows else []
        finally:
            cursor.close()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, config: dict[str, Any] | None = None) -> MySQLConnection:
        self._config = {
            "host": CONFIG.db.host,
            "port": CONFIG.db.port,
            "charset": CONFIG.db.charset,
            "connection_timeout": CONFIG.db.connect_timeout,
            **(config or {}),
        }
        self.database = self._config.get("database")
        self._conn = await self._run(self._connect_sync)
        return self._conn

    def _connect_sync(self) -> MySQLConnection:
        attempts = max(CONFIG.db.connect_retries, 1)
        host, port = self._config.get("host"), self._config.get("port")
        for attempt in range(1, attempts + 1):
            try:
                log.info("Connecting to MySQL at %s:%s (attempt %d/%d)", host, port, attempt, attempts)
                conn = mysql.connector.connect(**self._config)
                log.info("Connected to MySQL successfully.")
                return conn
            except mysql.connector.Error as exc:
                log.warning("Connection attempt %d failed: %s", attempt, exc)
                if attempt < attempts:
                    time.sleep(self._retry_delay * attempt)
        raise DatabaseConnectionError(
            f"Could not connect to MySQL at {host}:{port} after {attempts} attempts."
        )

    async def disconnect(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await self._run(conn.close)
            log.info("MySQL connection closed.")
        except mysql.connector.Error as exc:
            log.warning("Error closing MySQL connection: %s", exc)

    async def test_connection(self) -> bool:
        try:
            rows = await self._run(self._query, "SELECT 1")
        except (mysql.connector.Error, DatabaseConnectionError) as exc:
            log.warning("MySQL connection test failed: %s", exc)
            return False
        return bool(rows)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        try:
            rows = await self._run(
                self._query, "SHOW FULL TABLES WHERE Table_type = 'BASE TABLE'"
            )
        except mysql.connector.Error as exc:
            raise SchemaError(f"Could not list MySQL tables: {exc}") from exc
        return [row[0] for row in rows]

    async def get_table_info(self, table_name: str) -> TableInfo:
        try:
            return await self._run(self._table_info_sync, table_name)
        except mysql.connector.Error as exc:
            raise SchemaError(f"Could not describe table '{table_name}': {exc}") from exc

    def _table_info_sync(self, table_name: str) -> TableInfo:
        rows = self._query(
            "SELECT COLUMN_NAME, DATA_TYPE, COLUMN_TYPE, IS_NULLABLE, COLUMN_DEFAULT, "
            "CHARACTER_MAXIMUM_LENGTH, NUMERIC_PRECISION, NUMERIC_SCALE, EXTRA, COLUMN_KEY "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s "
            "ORDER BY ORDINAL_POSITION",
            (table_name,),
            dictionary=True,
        )
        if not rows:
            raise SchemaError(f"Table '{table_name}' not found.")
        columns = []
        primary_keys = []
        for row in rows:
            columns.append(ColumnInfo(
                name=row["COLUMN_NAME"],
                type=normalize_type(row["DATA_TYPE"]),
                original_type=row["COLUMN_TYPE"],
                nullable=row["IS_NULLABLE"] == "YES",
                default_value=row["COLUMN_DEFAULT"],
                max_length=row["CHARACTER_MAXIMUM_LENGTH"],
                precision=row["NUMERIC_PRECISION"],
                scale=row["NUMERIC_SCALE"],
                auto_increment="auto_increment" in (row["EXTRA"] or "").lower(),
            ))
            if row["COLUMN_KEY"] == "PRI":
                primary_keys.append(row["COLUMN_NAME"])

        grouped: dict[str, tuple[bool, str, list[str]]] = {}
        for idx in self._query(f"SHOW INDEX FROM {_q(table_name)}", dictionary=True):
            name = idx["Key_name"]
            if name == "PRIMARY":
                continue
            unique, kind, cols = grouped.setdefault(
                name, (not idx["Non_unique"], str(idx.get("Index_type", "BTREE")).lower(), [])
            )
            cols.append(idx["Column_name"])
        indexes = [
            IndexInfo(name=name, columns=tuple(cols), unique=unique, kind=kind)
            for name, (unique, kind, cols) in grouped.items()
        ]
        return TableInfo(
            name=table_name, columns=columns, schema=self.database,
            primary_keys=primary_keys, indexes=indexes,
        )

    async def get_schema(self) -> DatabaseSchema:
        tables = [await self.get_table_info(name) for name in await self.list_tables()]
        try:
            version_rows = await self._run(self._query, "SELECT VERSION(), @@character_set_database")
        except mysql.connector.Error as exc:
            log.warning("Could not read MySQL version: %s", exc)
            version_rows = []
        version, charset = version_rows[0] if version_rows else (None, None)
        return DatabaseSchema(
            name=self.database or "", tables=tables, version=version, charset=charset
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def stream_rows(self, options: StreamOptions) -> AsyncIterator[Row]:
        base = f"SELECT * FROM {_q(options.table_name)}"
        if options.where:
            base += f" WHERE {options.where}"
        # LIMIT/OFFSET pages only line up under a stable order
        order_by = options.order_by or await self._default_order(options.table_name)
        base += f" ORDER BY {order_by}"

        offset = options.offset or 0
        remaining = options.limit
        while remaining is None or remaining > 0:
            page = options.batch_size if remaining is None else min(options.batch_size, remaining)
            try:
                rows = await self._run(
                    self._query, f"{base} LIMIT %s OFFSET %s", (page, offset), True
                )
            except mysql.connector.Error as exc:
                raise SchemaError(f"Could not read '{options.table_name}': {exc}") from exc
            for row in rows:
                yield row
            if len(rows) < page:
                return
            offset += len(rows)
            if remaining is not None:
                remaining -= len(rows)

    async def _default_order(self, table_name: str) -> str:
        """Primary-key columns, or every column when the table has no key."""
        info = await self.get_table_info(table_name)
        return ", ".join(_q(c) for c in info.primary_keys or info.column_names)

    async def count_rows(self, table_name: str, where: str | None = None) -> int:
        sql = f"SELECT COUNT(*) FROM {_q(table_name)}"
        if where:
            sql += f" WHERE {where}"
        try:
            rows = await self._run(self._query, sql)
        except mysql.connector.Error as exc:
            raise SchemaError(f"Could not count rows of '{table_name}': {exc}") from exc
        return int(rows[0][0]) if rows else 0

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_sync(self, sql: str, params: Any = None, many: bool = False) -> tuple[int, Any]:
        conn = self._require_conn()
        cursor = conn.cursor()
        try:
            if many:
                cursor.executemany(sql, params)
            else:
                cursor.execute(sql, params)
            conn.commit()
            return cursor.rowcount, cursor.lastrowid
        except mysql.connector.Error:
            conn.rollback()
            raise
        finally:
            cursor.close()

    async def insert_rows(self, table_name: str, rows: list[Row]) -> InsertResult:
        if not rows:
            return InsertResult(inserted_count=0)
        columns = list(rows[0].keys())
        sql = (
            f"INSERT INTO {_q(table_name)} ({', '.join(_q(c) for c in columns)}) "
            f"VALUES ({', '.join(['%s'] * len(columns))})"
        )
        values = [tuple(row.get(c) for c in columns) for row in rows]
        try:
            count, last_id = await self._run(self._write_sync, sql, values, True)
        except mysql.connector.Error as exc:
            raise InsertError(f"Insert into '{table_name}' failed: {exc}", table=table_name) from exc
        return InsertResult(inserted_count=count if count >= 0 else len(rows), last_insert_id=last_id)

    async def create_table(self, table_info: TableInfo) -> None:
        definitions = []
        for col in table_info.columns:
            definition = f"  {_q(col.name)} {col.type}"
            if not col.nullable:
                definition += " NOT NULL"
            if col.default_value is not None:
                definition += f" DEFAULT {_literal(col.default_value)}"
            if col.auto_increment:
                definition += " AUTO_INCREMENT"
            definitions.append(definition)
        if table_info.primary_keys:
            definitions.append(
                f"  PRIMARY KEY ({', '.join(_q(pk) for pk in table_info.primary_keys)})"
            )
        sql = (
            f"CREATE TABLE {_q(table_info.name)} (\n" + ",\n".join(definitions)
            + "\n) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
        )
        try:
            await self._run(self._write_sync, sql)
        except mysql.connector.Error as exc:
            raise SchemaError(f"Could not create table '{table_info.name}': {exc}") from exc

    async def drop_table(self, table_name: str) -> None:
        try:
            await self._run(self._write_sync, f"DROP TABLE IF EXISTS {_q(table_name)}")
        except mysql.connector.Error as exc:
            raise SchemaError(f"Could not drop table '{table_name}': {exc}") from exc

    async def execute(self, sql: str, params: tuple | None = None) -> Any:
        try:
            count, _ = await self._run(self._write_sync, sql, params)
        except mysql.connector.Error as exc:
            log.error("SQL execution error: %s | SQL: %.500s", exc, sql)
            raise SchemaError(str(exc)) from exc
        return count

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def map_data_type(self, original_type: str) -> str:
        """
        Translate a foreign type definition into a MySQL column type.

        Examples::

            map_data_type("VARCHAR(50)")     →  "VARCHAR(50)"
            map_data_type("NUMERIC(18,2)")   →  "DECIMAL(18,2)"
            map_data_type("TIMESTAMP")       →  "DATETIME"
            map_data_type("VARCHAR")         →  "VARCHAR(255)"
        """
        base = normalize_type(original_type)
        mapped = _TYPE_MAP.get(base)
        if mapped is None:
            return "TEXT"
        if mapped in _KEEPS_PARAMS and original_type and "(" in original_type:
            params = original_type[original_type.index("("):original_type.index(")") + 1]
            return f"{mapped}{params.replace(' ', '')}"
        if mapped == "VARCHAR":
            return "VARCHAR(255)"
        return mapped
