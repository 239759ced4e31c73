"""
tests/test_sqlite_adapter.py
----------------------------
Tests for adapters/sqlite.py and the adapter registry, against real
database files in a temporary directory.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
import pytest_asyncio

from schemabridge.adapters import (
    ReadOnlySQLiteAdapter,
    SQLiteAdapter,
    StreamOptions,
    available_adapters,
    create_adapter,
)
from schemabridge.core.orchestrator import MigrationOrchestrator
from schemabridge.errors import DatabaseConnectionError, ReadOnlyAdapterError, SchemaError
from schemabridge.models.options import Endpoint, MigrationOptions
from schemabridge.models.schema import ColumnInfo, TableInfo


@pytest.fixture
def legacy_db(tmp_path: Path) -> Path:
    path = tmp_path / "legacy.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name VARCHAR(50) NOT NULL,
            price NUMERIC(10,2) DEFAULT 0,
            added DATE
        );
        CREATE UNIQUE INDEX ux_items_name ON items (name);
        """
    )
    conn.executemany(
        "INSERT INTO items (name, price, added) VALUES (?, ?, ?)",
        [(f"item {i}", i * 1.5, "2024-01-0%d" % (i % 9 + 1)) for i in range(1, 8)],
    )
    conn.commit()
    conn.close()
    return path


@pytest_asyncio.fixture
async def adapter(legacy_db: Path):
    sqlite = SQLiteAdapter()
    await sqlite.connect({"path": str(legacy_db)})
    yield sqlite
    await sqlite.disconnect()


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_list_tables(self, adapter: SQLiteAdapter) -> None:
        assert await adapter.list_tables() == ["items"]

    @pytest.mark.asyncio
    async def test_table_info(self, adapter: SQLiteAdapter) -> None:
        info = await adapter.get_table_info("items")
        assert info.primary_keys == ("id",)
        assert info.column_names == ["id", "name", "price", "added"]

        ident = info.get_column("id")
        assert ident.auto_increment
        assert not ident.nullable

        name = info.get_column("name")
        assert (name.type, name.original_type, name.max_length) == ("VARCHAR", "VARCHAR(50)", 50)
        assert not name.nullable

        price = info.get_column("price")
        assert (price.precision, price.scale) == (10, 2)
        assert price.default_value == "0"

    @pytest.mark.asyncio
    async def test_indexes(self, adapter: SQLiteAdapter) -> None:
        info = await adapter.get_table_info("items")
        assert [(i.name, i.columns, i.unique) for i in info.indexes] == [
            ("ux_items_name", ("name",), True)
        ]

    @pytest.mark.asyncio
    async def test_unknown_table(self, adapter: SQLiteAdapter) -> None:
        with pytest.raises(SchemaError):
            await adapter.get_table_info("ghost")

    @pytest.mark.asyncio
    async def test_schema(self, adapter: SQLiteAdapter) -> None:
        schema = await adapter.get_schema()
        assert schema.name == "legacy"
        assert schema.table_names == ["items"]
        assert schema.version

    @pytest.mark.asyncio
    async def test_connection(self, adapter: SQLiteAdapter) -> None:
        assert await adapter.test_connection()

    @pytest.mark.asyncio
    async def test_connect_requires_path(self) -> None:
        with pytest.raises(DatabaseConnectionError):
            await SQLiteAdapter().connect({})


class TestReading:
    @pytest.mark.asyncio
    async def test_stream_all_rows_as_dicts(self, adapter: SQLiteAdapter) -> None:
        rows = [r async for r in adapter.stream_rows(StreamOptions("items", batch_size=2))]
        assert len(rows) == 7
        assert rows[0]["name"] == "item 1"
        assert isinstance(rows[0], dict)

    @pytest.mark.asyncio
    async def test_stream_with_filter_and_window(self, adapter: SQLiteAdapter) -> None:
        options = StreamOptions("items", where="id > 2", order_by="id DESC", offset=1, limit=2)
        rows = [r["id"] async for r in adapter.stream_rows(options)]
        assert rows == [6, 5]

    @pytest.mark.asyncio
    async def test_count_rows(self, adapter: SQLiteAdapter) -> None:
        assert await adapter.count_rows("items") == 7
        assert await adapter.count_rows("items", "id <= 3") == 3


class TestWriting:
    @pytest.mark.asyncio
    async def test_create_insert_count(self, adapter: SQLiteAdapter) -> None:
        table = TableInfo(
            name="copy",
            columns=[
                ColumnInfo(name="id", type="INTEGER", nullable=False),
                ColumnInfo(name="label", type="TEXT", default_value="n/a"),
            ],
            primary_keys=["id"],
        )
        await adapter.create_table(table)
        result = await adapter.insert_rows("copy", [{"id": 1, "label": "a"}, {"id": 2, "label": "b"}])

        assert result.inserted_count == 2
        assert await adapter.count_rows("copy") == 2
        assert (await adapter.get_table_info("copy")).primary_keys == ("id",)

    @pytest.mark.asyncio
    async def test_insert_empty_batch(self, adapter: SQLiteAdapter) -> None:
        result = await adapter.insert_rows("items", [])
        assert result.inserted_count == 0

    @pytest.mark.asyncio
    async def test_drop_and_execute(self, adapter: SQLiteAdapter) -> None:
        await adapter.execute("CREATE INDEX ix_price ON items (price)")
        info = await adapter.get_table_info("items")
        assert "ix_price" in [i.name for i in info.indexes]

        await adapter.drop_table("items")
        assert await adapter.list_tables() == []

    @pytest.mark.asyncio
    async def test_bad_sql_raises_schema_error(self, adapter: SQLiteAdapter) -> None:
        with pytest.raises(SchemaError):
            await adapter.execute("CREATE NONSENSE")


class TestTypeMapping:
    @pytest.mark.parametrize("original, expected", [
        ("VARCHAR(50)", "VARCHAR(50)"),
        ("CSTRING(20)", "TEXT"),
        ("BIGINT", "INTEGER"),
        ("DOUBLE PRECISION", "REAL"),
        ("NUMERIC(18,2)", "NUMERIC(18,2)"),
        ("BLOB SUB_TYPE 0", "TEXT"),
        ("BLOB", "BLOB"),
        ("BOOLEAN", "INTEGER"),
        ("TIME", "TIME"),
    ])
    def test_map_data_type(self, original: str, expected: str) -> None:
        assert SQLiteAdapter().map_data_type(original) == expected


class TestReadOnly:
    @pytest.mark.asyncio
    async def test_writes_are_refused(self, legacy_db: Path) -> None:
        source = create_adapter("sqlite", read_only=True)
        assert isinstance(source, ReadOnlySQLiteAdapter)
        assert source.read_only
        await source.connect({"path": str(legacy_db)})
        try:
            with pytest.raises(ReadOnlyAdapterError) as exc_info:
                await source.insert_rows("items", [{"name": "x"}])
            assert str(exc_info.value) == (
                "sqlite is a read-only source; inserting into 'items' is not supported."
            )
            with pytest.raises(ReadOnlyAdapterError):
                await source.create_table(TableInfo(name="t"))
            with pytest.raises(ReadOnlyAdapterError):
                await source.drop_table("items")
            assert await source.count_rows("items") == 7
        finally:
            await source.disconnect()


class TestRegistry:
    def test_available(self) -> None:
        assert available_adapters() == ["mysql", "sqlite"]

    def test_case_insensitive(self) -> None:
        assert isinstance(create_adapter("SQLite"), SQLiteAdapter)

    def test_unknown_adapter(self) -> None:
        with pytest.raises(ValueError, match="Unknown adapter"):
            create_adapter("paradox")

    def test_no_read_only_variant(self) -> None:
        with pytest.raises(ValueError, match="read-only"):
            create_adapter("mysql", read_only=True)


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_sqlite_to_sqlite(self, legacy_db: Path, tmp_path: Path) -> None:
        target_path = tmp_path / "target.db"
        options = MigrationOptions(
            source=Endpoint(adapter=create_adapter("sqlite", read_only=True), config={"path": str(legacy_db)}),
            target=Endpoint(adapter=create_adapter("sqlite"), config={"path": str(target_path)}),
            batch_size=3,
            create_indexes=True,
            validate_data=True,
        )
        stats = await MigrationOrchestrator(options).start_migration()

        assert stats.records_processed == 7
        assert stats.validation_warnings == []
        assert stats.errors == 0

        conn = sqlite3.connect(target_path)
        try:
            assert conn.execute("SELECT COUNT(*) FROM items").fetchone()[0] == 7
            indexes = [r[1] for r in conn.execute("PRAGMA index_list(items)")]
            assert "IDX_items_PK" in indexes
        finally:
            conn.close()
