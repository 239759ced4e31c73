"""
tests/test_mysql_adapter.py
---------------------------
Unit tests for adapters/mysql.py with a mocked mysql.connector.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import mysql.connector
import pytest

from schemabridge.adapters.base import StreamOptions
from schemabridge.adapters.mysql import MySQLAdapter
from schemabridge.errors import DatabaseConnectionError, InsertError, SchemaError
from schemabridge.models.schema import ColumnInfo, TableInfo


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cursor() -> MagicMock:
    cur = MagicMock()
    cur.with_rows = True
    cur.rowcount = 2
    cur.lastrowid = 42
    return cur


@pytest.fixture
def conn(cursor: MagicMock) -> MagicMock:
    connection = MagicMock()
    connection.is_connected.return_value = True
    connection.cursor.return_value = cursor
    return connection


@pytest.fixture
def adapter(conn: MagicMock) -> MySQLAdapter:
    mysql_adapter = MySQLAdapter(retry_delay=0)
    mysql_adapter._conn = conn
    mysql_adapter.database = "erp"
    return mysql_adapter


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class TestConnect:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, conn: MagicMock) -> None:
        with patch("mysql.connector.connect", side_effect=[mysql.connector.Error("down"), conn]) as connect:
            adapter = MySQLAdapter(retry_delay=0)
            handle = await adapter.connect({"user": "root", "database": "erp"})
        assert handle is conn
        assert connect.call_count == 2
        kwargs = connect.call_args.kwargs
        assert kwargs["database"] == "erp"
        assert "host" in kwargs and "port" in kwargs

    @pytest.mark.asyncio
    async def test_gives_up(self) -> None:
        with patch("mysql.connector.connect", side_effect=mysql.connector.Error("down")):
            adapter = MySQLAdapter(retry_delay=0)
            with pytest.raises(DatabaseConnectionError):
                await adapter.connect({"host": "db.invalid"})

    @pytest.mark.asyncio
    async def test_disconnect_closes_once(self, adapter: MySQLAdapter, conn: MagicMock) -> None:
        await adapter.disconnect()
        await adapter.disconnect()
        conn.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_operations_need_connection(self) -> None:
        with pytest.raises(DatabaseConnectionError):
            await MySQLAdapter().count_rows("t")


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

class TestInsert:
    @pytest.mark.asyncio
    async def test_parameterised_executemany(
        self, adapter: MySQLAdapter, conn: MagicMock, cursor: MagicMock
    ) -> None:
        result = await adapter.insert_rows("order", [{"id": 1, "note": "a"}, {"id": 2, "note": None}])

        sql, values = cursor.executemany.call_args.args
        assert sql == "INSERT INTO `order` (`id`, `note`) VALUES (%s, %s)"
        assert values == [(1, "a"), (2, None)]
        conn.commit.assert_called_once()
        assert result.inserted_count == 2
        assert result.last_insert_id == 42

    @pytest.mark.asyncio
    async def test_failure_rolls_back(
        self, adapter: MySQLAdapter, conn: MagicMock, cursor: MagicMock
    ) -> None:
        cursor.executemany.side_effect = mysql.connector.Error("Duplicate entry")
        with pytest.raises(InsertError) as exc_info:
            await adapter.insert_rows("t", [{"id": 1}])
        assert exc_info.value.table == "t"
        conn.rollback.assert_called_once()


class TestCreateTable:
    @pytest.mark.asyncio
    async def test_ddl(self, adapter: MySQLAdapter, cursor: MagicMock) -> None:
        table = TableInfo(
            name="clientes",
            columns=[
                ColumnInfo(name="id", type="INT", nullable=False, auto_increment=True),
                ColumnInfo(name="nome", type="VARCHAR(60)", default_value="n/a"),
            ],
            primary_keys=["id"],
        )
        await adapter.create_table(table)
        sql = cursor.execute.call_args.args[0]
        assert sql.startswith("CREATE TABLE `clientes` (")
        assert "`id` INT NOT NULL AUTO_INCREMENT" in sql
        assert "`nome` VARCHAR(60) DEFAULT 'n/a'" in sql
        assert "PRIMARY KEY (`id`)" in sql

    @pytest.mark.asyncio
    async def test_error_wrapped(self, adapter: MySQLAdapter, cursor: MagicMock) -> None:
        cursor.execute.side_effect = mysql.connector.Error("exists")
        with pytest.raises(SchemaError):
            await adapter.create_table(TableInfo(name="t"))


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

class TestRead:
    @pytest.mark.asyncio
    async def test_stream_pages(self, adapter: MySQLAdapter, cursor: MagicMock) -> None:
        cursor.fetchall.side_effect = [[{"id": 1}, {"id": 2}], [{"id": 3}]]
        options = StreamOptions("t", batch_size=2, where="id > 0", order_by="id")
        rows = [r async for r in adapter.stream_rows(options)]

        assert rows == [{"id": 1}, {"id": 2}, {"id": 3}]
        calls = [c.args for c in cursor.execute.call_args_list]
        assert calls == [
            ("SELECT * FROM `t` WHERE id > 0 ORDER BY id LIMIT %s OFFSET %s", (2, 0)),
            ("SELECT * FROM `t` WHERE id > 0 ORDER BY id LIMIT %s OFFSET %s", (2, 2)),
        ]

    @pytest.mark.asyncio
    async def test_stream_respects_limit(self, adapter: MySQLAdapter, cursor: MagicMock) -> None:
        cursor.fetchall.side_effect = [[{"id": 1}, {"id": 2}], [{"id": 3}]]
        options = StreamOptions("t", batch_size=2, limit=3, order_by="id")
        rows = [r async for r in adapter.stream_rows(options)]
        assert len(rows) == 3
        assert cursor.execute.call_args_list[-1].args[1] == (1, 2)

    @staticmethod
    def column_rows(*columns: tuple[str, str]) -> list[dict]:
        return [
            {
                "COLUMN_NAME": name, "DATA_TYPE": "int", "COLUMN_TYPE": "int(11)",
                "IS_NULLABLE": "NO", "COLUMN_DEFAULT": None,
                "CHARACTER_MAXIMUM_LENGTH": None, "NUMERIC_PRECISION": 10,
                "NUMERIC_SCALE": 0, "EXTRA": "", "COLUMN_KEY": key,
            }
            for name, key in columns
        ]

    @pytest.mark.asyncio
    async def test_stream_orders_by_primary_key_by_default(
        self, adapter: MySQLAdapter, cursor: MagicMock
    ) -> None:
        cursor.fetchall.side_effect = [
            self.column_rows(("qty", ""), ("id", "PRI")),
            [],
            [{"id": 1, "qty": 5}, {"id": 2, "qty": 5}],
            [{"id": 3, "qty": 1}],
        ]
        rows = [r async for r in adapter.stream_rows(StreamOptions("t", batch_size=2))]

        assert [r["id"] for r in rows] == [1, 2, 3]
        pages = [c.args[0] for c in cursor.execute.call_args_list if "LIMIT" in c.args[0]]
        assert len(pages) == 2
        assert all(sql == "SELECT * FROM `t` ORDER BY `id` LIMIT %s OFFSET %s" for sql in pages)

    @pytest.mark.asyncio
    async def test_stream_without_key_orders_by_every_column(
        self, adapter: MySQLAdapter, cursor: MagicMock
    ) -> None:
        cursor.fetchall.side_effect = [
            self.column_rows(("code", ""), ("qty", "")),
            [],
            [{"code": 1, "qty": 5}],
        ]
        rows = [r async for r in adapter.stream_rows(StreamOptions("t", batch_size=2, where="qty > 0"))]

        assert len(rows) == 1
        assert cursor.execute.call_args_list[-1].args[0] == (
            "SELECT * FROM `t` WHERE qty > 0 ORDER BY `code`, `qty` LIMIT %s OFFSET %s"
        )

    @pytest.mark.asyncio
    async def test_count_rows(self, adapter: MySQLAdapter, cursor: MagicMock) -> None:
        cursor.fetchall.return_value = [(17,)]
        assert await adapter.count_rows("t", "active = 1") == 17
        assert cursor.execute.call_args.args[0] == "SELECT COUNT(*) FROM `t` WHERE active = 1"

    @pytest.mark.asyncio
    async def test_table_info(self, adapter: MySQLAdapter, cursor: MagicMock) -> None:
        cursor.fetchall.side_effect = [
            [
                {
                    "COLUMN_NAME": "id", "DATA_TYPE": "int", "COLUMN_TYPE": "int(11)",
                    "IS_NULLABLE": "NO", "COLUMN_DEFAULT": None,
                    "CHARACTER_MAXIMUM_LENGTH": None, "NUMERIC_PRECISION": 10,
                    "NUMERIC_SCALE": 0, "EXTRA": "auto_increment", "COLUMN_KEY": "PRI",
                },
                {
                    "COLUMN_NAME": "email", "DATA_TYPE": "varchar", "COLUMN_TYPE": "varchar(200)",
                    "IS_NULLABLE": "YES", "COLUMN_DEFAULT": None,
                    "CHARACTER_MAXIMUM_LENGTH": 200, "NUMERIC_PRECISION": None,
                    "NUMERIC_SCALE": None, "EXTRA": "", "COLUMN_KEY": "UNI",
                },
            ],
            [
                {"Key_name": "PRIMARY", "Non_unique": 0, "Column_name": "id", "Index_type": "BTREE"},
                {"Key_name": "ux_email", "Non_unique": 0, "Column_name": "email", "Index_type": "BTREE"},
            ],
        ]
        info = await adapter.get_table_info("users")

        assert info.primary_keys == ("id",)
        assert info.get_column("id").auto_increment
        assert info.get_column("id").type == "INT"
        assert info.get_column("email").max_length == 200
        assert [(i.name, i.columns, i.unique) for i in info.indexes] == [("ux_email", ("email",), True)]


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class TestTypeMapping:
    @pytest.mark.parametrize("original, expected", [
        ("VARCHAR(50)", "VARCHAR(50)"),
        ("VARCHAR", "VARCHAR(255)"),
        ("CSTRING(20)", "VARCHAR(20)"),
        ("NUMERIC(18, 2)", "DECIMAL(18,2)"),
        ("TIMESTAMP", "DATETIME"),
        ("INTEGER", "INT"),
        ("BOOLEAN", "TINYINT(1)"),
        ("BLOB", "LONGBLOB"),
        ("BLOB SUB_TYPE 1", "TEXT"),
    ])
    def test_map_data_type(self, original: str, expected: str) -> None:
        assert MySQLAdapter().map_data_type(original) == expected
