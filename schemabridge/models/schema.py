"""
schemabridge/models/schema.py
-----------------------------
Immutable snapshots of database structure as reported by an adapter.

The core only reads these; adapters build them. ``to_dict`` / ``from_dict``
keep the exported mapping configuration and test fixtures readable.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class ColumnInfo:
    """
    One column of a table.

    Attributes:
        name:           Column name as reported by the engine.
        type:           Normalised type string (adapter's ``map_data_type``).
        original_type:  Engine-specific type definition, e.g. ``VARCHAR(50)``.
        nullable:       Whether NULL is accepted.
        default_value:  Literal default, if any.
        max_length:     Character length for text types.
        precision:      Numeric precision.
        scale:          Numeric scale.
        auto_increment: Identity / serial / autoincrement column.
    """
    name: str
    type: str
    original_type: str = ""
    nullable: bool = True
    default_value: Any = None
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    auto_increment: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "originalType": self.original_type,
            "nullable": self.nullable,
            "defaultValue": self.default_value,
            "maxLength": self.max_length,
            "precision": self.precision,
            "scale": self.scale,
            "autoIncrement": self.auto_increment,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ColumnInfo":
        return ColumnInfo(
            name=data["name"],
            type=data.get("type", ""),
            original_type=data.get("originalType", data.get("type", "")),
            nullable=data.get("nullable", True),
            default_value=data.get("defaultValue"),
            max_length=data.get("maxLength"),
            precision=data.get("precision"),
            scale=data.get("scale"),
            auto_increment=data.get("autoIncrement", False),
        )


@dataclass(frozen=True)
class IndexInfo:
    name: str
    columns: tuple[str, ...]
    unique: bool = False
    kind: str = "btree"


@dataclass(frozen=True)
class TableInfo:
    """
    One table (or view / collection) with its columns and keys.

    ``columns``, ``primary_keys`` and ``indexes`` are tuples so the
    snapshot stays hashable and cannot be mutated by the core.
    """
    name: str
    columns: tuple[ColumnInfo, ...] = ()
    schema: str | None = None
    primary_keys: tuple[str, ...] = ()
    indexes: tuple[IndexInfo, ...] = ()
    kind: str = "table"

    def __post_init__(self) -> None:
        # Accept lists from callers; store tuples.
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "primary_keys", tuple(self.primary_keys))
        object.__setattr__(self, "indexes", tuple(self.indexes))

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def get_column(self, name: str) -> ColumnInfo | None:
        """Case-insensitive column lookup."""
        wanted = name.lower()
        for col in self.columns:
            if col.name.lower() == wanted:
                return col
        return None

    def renamed(self, name: str, columns: list[ColumnInfo] | None = None) -> "TableInfo":
        """Return a copy under another name, optionally with new columns."""
        return replace(
            self,
            name=name,
            columns=tuple(columns) if columns is not None else self.columns,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "type": self.kind,
            "columns": [c.to_dict() for c in self.columns],
            "primaryKeys": list(self.primary_keys),
            "indexes": [
                {
                    "name": i.name,
                    "columns": list(i.columns),
                    "unique": i.unique,
                    "type": i.kind,
                }
                for i in self.indexes
            ],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TableInfo":
        return TableInfo(
            name=data["name"],
            schema=data.get("schema"),
            kind=data.get("type", "table"),
            columns=tuple(ColumnInfo.from_dict(c) for c in data.get("columns", [])),
            primary_keys=tuple(data.get("primaryKeys", [])),
            indexes=tuple(
                IndexInfo(
                    name=i["name"],
                    columns=tuple(i.get("columns", [])),
                    unique=i.get("unique", False),
                    kind=i.get("type", "btree"),
                )
                for i in data.get("indexes", [])
            ),
        )


@dataclass(frozen=True)
class DatabaseSchema:
    """Whole-database snapshot returned by ``DatabaseAdapter.get_schema``."""
    name: str
    tables: tuple[TableInfo, ...] = field(default_factory=tuple)
    version: str | None = None
    charset: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", tuple(self.tables))

    def get_table(self, name: str) -> TableInfo | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    @property
    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]

    def summary(self) -> list[dict[str, Any]]:
        """``[{name, columns}]`` as written into exported mapping files."""
        return [{"name": t.name, "columns": len(t.columns)} for t in self.tables]
