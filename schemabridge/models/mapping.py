"""
schemabridge/models/mapping.py
------------------------------
Typed data models for table and column mapping configurations.

Design Decision:
    Using ``@dataclass`` and ``Enum`` instead of plain dicts ensures:
    * A single source of truth for valid mapping kinds and transformations.
    * Explicit ``to_dict`` / ``from_dict`` methods so an exported mapping
      configuration round-trips without losing transformation expressions
      (they are opaque strings and are stored verbatim).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MappingKind(str, Enum):
    """Cardinality between source and target tables of one mapping."""
    ONE_TO_ONE = "one-to-one"
    MANY_TO_ONE = "many-to-one"
    ONE_TO_MANY = "one-to-many"


class TransformationKind(str, Enum):
    DIRECT = "direct"
    CONVERT = "convert"
    FORMAT = "format"
    CALCULATE = "calculate"
    LOOKUP = "lookup"


class JoinKind(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


def split_qualified(name: str) -> tuple[str | None, str]:
    """
    Split a ``table.column`` reference.

    Many-to-one mappings name their source columns with the owning table
    as prefix; plain names return ``(None, name)``.
    """
    if "." in name:
        table, column = name.split(".", 1)
        return table, column
    return None, name


@dataclass
class FieldTransformation:
    """
    How a value travels from source column to target column.

    ``expression`` is an SQL fragment used verbatim by DML export;
    ``format`` is a date pattern; ``lookup_values`` maps source values to
    target values for the ``lookup`` kind.
    """
    kind: TransformationKind = TransformationKind.DIRECT
    expression: str | None = None
    format: str | None = None
    precision: int | None = None
    scale: int | None = None
    lookup_values: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind.value}
        if self.expression is not None:
            data["expression"] = self.expression
        if self.format is not None:
            data["format"] = self.format
        if self.precision is not None:
            data["precision"] = self.precision
        if self.scale is not None:
            data["scale"] = self.scale
        if self.lookup_values is not None:
            data["lookupValues"] = dict(self.lookup_values)
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "FieldTransformation":
        return FieldTransformation(
            kind=TransformationKind(data.get("type", "direct")),
            expression=data.get("expression"),
            format=data.get("format"),
            precision=data.get("precision"),
            scale=data.get("scale"),
            lookup_values=data.get("lookupValues"),
        )


@dataclass
class ColumnMapping:
    """
    Maps one source column onto one target column.

    Attributes:
        source_column:  Column name in the source table (``table.column``
                        for many-to-one mappings).
        source_type:    Source column type.
        target_column:  Column name in the target table.
        target_type:    Target column type.
        transformation: Optional conversion rule.
        nullable:       Target nullability.
        default_value:  Value used when the source value is NULL.
        confidence:     0-100.
        auto_detected:  Produced by the similarity engine, not an operator.
    """
    source_column: str
    source_type: str
    target_column: str
    target_type: str
    transformation: FieldTransformation | None = None
    nullable: bool = True
    default_value: Any = None
    confidence: float = 100.0
    auto_detected: bool = False

    @property
    def id(self) -> str:
        return f"{self.source_column}_to_{self.target_column}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceColumn": self.source_column,
            "sourceType": self.source_type,
            "targetColumn": self.target_column,
            "targetType": self.target_type,
            "transformation": self.transformation.to_dict() if self.transformation else None,
            "nullable": self.nullable,
            "defaultValue": self.default_value,
            "confidence": self.confidence,
            "autoDetected": self.auto_detected,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ColumnMapping":
        raw_transform = data.get("transformation")
        return ColumnMapping(
            source_column=data["sourceColumn"],
            source_type=data.get("sourceType", ""),
            target_column=data["targetColumn"],
            target_type=data.get("targetType", ""),
            transformation=FieldTransformation.from_dict(raw_transform) if raw_transform else None,
            nullable=data.get("nullable", True),
            default_value=data.get("defaultValue"),
            confidence=data.get("confidence", 100.0),
            auto_detected=data.get("autoDetected", False),
        )


@dataclass
class JoinCondition:
    """Join between two source tables of a many-to-one mapping."""
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    join_kind: JoinKind = JoinKind.INNER

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceTable": self.source_table,
            "sourceColumn": self.source_column,
            "targetTable": self.target_table,
            "targetColumn": self.target_column,
            "joinType": self.join_kind.value,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "JoinCondition":
        return JoinCondition(
            source_table=data["sourceTable"],
            source_column=data["sourceColumn"],
            target_table=data["targetTable"],
            target_column=data["targetColumn"],
            join_kind=JoinKind(data.get("joinType", "INNER").upper()),
        )


@dataclass
class SplitRule:
    """
    One branch of a one-to-many mapping.

    Each target receives ``columns`` of every source row accepted by
    ``where`` (a predicate handed to the source adapter; ``None`` keeps
    every row).
    """
    columns: list[str] = field(default_factory=list)
    where: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"columns": list(self.columns), "where": self.where}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SplitRule":
        return SplitRule(columns=list(data.get("columns", [])), where=data.get("where"))


def mapping_id_for(
    source_tables: list[str], target_table: str, kind: MappingKind
) -> str:
    """Composite id derived from source and target names."""
    base = f"{'_'.join(source_tables)}_to_{target_table}"
    if kind == MappingKind.ONE_TO_MANY:
        return f"{base}_split"
    return base


@dataclass
class TableMapping:
    """
    One migration unit: source table(s) → one target table.

    Attributes:
        source_tables:   One source for one-to-one / one-to-many, two or
                         more for many-to-one.
        target_table:    Target table name.
        column_mappings: Ordered column correspondences.
        kind:            Cardinality of the mapping.
        enabled:         Disabled mappings are kept but not exported/migrated.
        confidence:      0-100.
        join_conditions: Many-to-one only.
        split_rule:      One-to-many only.
        id:              Derived from the names when not given.
    """
    source_tables: list[str]
    target_table: str
    column_mappings: list[ColumnMapping] = field(default_factory=list)
    kind: MappingKind = MappingKind.ONE_TO_ONE
    enabled: bool = True
    confidence: float = 100.0
    join_conditions: list[JoinCondition] = field(default_factory=list)
    split_rule: SplitRule | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.source_tables, str):
            self.source_tables = [self.source_tables]
        if not self.id:
            self.id = mapping_id_for(self.source_tables, self.target_table, self.kind)

    @property
    def source_table(self) -> str:
        """Primary (first) source table."""
        return self.source_tables[0]

    @property
    def display_name(self) -> str:
        return f"{', '.join(self.source_tables)} -> {self.target_table} ({self.kind.value})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceTables": list(self.source_tables),
            "targetTable": self.target_table,
            "columnMappings": [cm.to_dict() for cm in self.column_mappings],
            "mappingType": self.kind.value,
            "enabled": self.enabled,
            "confidence": self.confidence,
            "joinConditions": [j.to_dict() for j in self.join_conditions],
            "splitRule": self.split_rule.to_dict() if self.split_rule else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "TableMapping":
        sources = data.get("sourceTables")
        if sources is None:
            # Older exports stored a comma-joined "sourceTable"
            sources = [s for s in str(data.get("sourceTable", "")).split(",") if s]
        raw_split = data.get("splitRule")
        return TableMapping(
            id=data.get("id", ""),
            source_tables=list(sources),
            target_table=data["targetTable"],
            column_mappings=[ColumnMapping.from_dict(c) for c in data.get("columnMappings", [])],
            kind=MappingKind(data.get("mappingType", MappingKind.ONE_TO_ONE.value)),
            enabled=data.get("enabled", True),
            confidence=data.get("confidence", 100.0),
            join_conditions=[JoinCondition.from_dict(j) for j in data.get("joinConditions") or []],
            split_rule=SplitRule.from_dict(raw_split) if raw_split else None,
        )


@dataclass(frozen=True)
class MappingSuggestion:
    """A ranked candidate correspondence kept for manual review."""
    kind: str  # "table" | "column"
    source_item: str
    target_item: str
    confidence: float  # 0.0-1.0
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "sourceItem": self.source_item,
            "targetItem": self.target_item,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ColumnAmbiguity:
    """A target column claimed by more than one source column of a mapping."""
    mapping_id: str
    target_column: str
    source_columns: tuple[str, ...]

    def __str__(self) -> str:
        return (
            f"{self.mapping_id}: target column '{self.target_column}' is claimed by "
            f"{', '.join(self.source_columns)}"
        )
