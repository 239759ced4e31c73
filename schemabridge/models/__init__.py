"""schemabridge/models/__init__.py"""
from schemabridge.models.mapping import (
    ColumnAmbiguity,
    ColumnMapping,
    FieldTransformation,
    JoinCondition,
    JoinKind,
    MappingKind,
    MappingSuggestion,
    SplitRule,
    TableMapping,
    TransformationKind,
)
from schemabridge.models.progress import (
    EventKind,
    MigrationPhase,
    MigrationProgress,
    MigrationStatistics,
    ProgressEvent,
)
from schemabridge.models.schema import ColumnInfo, DatabaseSchema, IndexInfo, TableInfo

__all__ = [
    "ColumnAmbiguity",
    "ColumnMapping",
    "FieldTransformation",
    "JoinCondition",
    "JoinKind",
    "MappingKind",
    "MappingSuggestion",
    "SplitRule",
    "TableMapping",
    "TransformationKind",
    "EventKind",
    "MigrationPhase",
    "MigrationProgress",
    "MigrationStatistics",
    "ProgressEvent",
    "ColumnInfo",
    "DatabaseSchema",
    "IndexInfo",
    "TableInfo",
]
