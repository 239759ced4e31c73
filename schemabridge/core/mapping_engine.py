"""
schemabridge/core/mapping_engine.py
-----------------------------------
Proposes table and column correspondences between two schemas.

``analyze`` scores every (source, target) table pair, keeps candidates
above a floor as suggestions and materialises the best candidate per
source table into a :class:`TableMapping` when it reaches the
similarity threshold. Accepted mappings live in a
:class:`~schemabridge.core.mapping_store.MappingRepository`.

Column auto-mapping is greedy per source column: each one takes its
best-scoring target column. Two source columns can land on the same
target column; such claims are kept and reported by :meth:`ambiguities`
rather than resolved.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from schemabridge.adapters.base import DatabaseAdapter
from schemabridge.config import CONFIG
from schemabridge.core.mapping_store import MappingRepository
from schemabridge.core.similarity import (
    column_match_score,
    similarity_reason,
    table_similarity,
)
from schemabridge.core.type_compat import (
    is_date_type,
    is_numeric_type,
    normalize_type,
    type_similarity,
)
from schemabridge.logger import get_logger
from schemabridge.models.mapping import (
    ColumnAmbiguity,
    ColumnMapping,
    FieldTransformation,
    JoinCondition,
    JoinKind,
    MappingSuggestion,
    SplitRule,
    TableMapping,
    TransformationKind,
)
from schemabridge.models.schema import ColumnInfo, TableInfo

log = get_logger(__name__)

# Table pairs scoring at or below this are not worth suggesting.
SUGGESTION_FLOOR = 0.3
# A column match must beat this to be kept.
COLUMN_MATCH_FLOOR = 0.5
MANY_TO_ONE_CONFIDENCE = 85.0
ONE_TO_MANY_CONFIDENCE = 80.0
DATE_FORMAT = "YYYY-MM-DD HH:mm:ss"


@dataclass
class AnalysisResult:
    suggestions: list[MappingSuggestion] = field(default_factory=list)
    auto_mapped: list[TableMapping] = field(default_factory=list)
    ambiguities: list[ColumnAmbiguity] = field(default_factory=list)


class SchemaMappingEngine:
    """
    Fuzzy schema matcher.

    Args:
        similarity_threshold: Minimum table score (0-1) for auto-mapping.
                              Defaults to ``CONFIG.mapping.similarity_threshold``.
        auto_map_tables:      Materialise the best candidate per source table.
        repository:           Where accepted mappings are stored.
    """

    def __init__(
        self,
        similarity_threshold: float | None = None,
        auto_map_tables: bool = True,
        repository: MappingRepository | None = None,
    ) -> None:
        if similarity_threshold is None:
            similarity_threshold = CONFIG.mapping.similarity_threshold
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be within [0, 1], got {similarity_threshold}")
        self.similarity_threshold = similarity_threshold
        self.auto_map_tables = auto_map_tables
        self.repository = repository if repository is not None else MappingRepository()
        self._suggestions: list[MappingSuggestion] = []

    @property
    def config(self) -> dict[str, Any]:
        return {
            "similarityThreshold": self.similarity_threshold,
            "autoMapTables": self.auto_map_tables,
        }

    @property
    def suggestions(self) -> list[MappingSuggestion]:
        return list(self._suggestions)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_schemas(
        self, source: DatabaseAdapter, target: DatabaseAdapter
    ) -> AnalysisResult:
        """Read both schemas from connected adapters, then :meth:`analyze`."""
        source_schema = await source.get_schema()
        target_schema = await target.get_schema()
        return self.analyze(source_schema.tables, target_schema.tables)

    def analyze(
        self, source_tables: Sequence[TableInfo], target_tables: Sequence[TableInfo]
    ) -> AnalysisResult:
        self.repository.set_schemas(source_tables, target_tables)
        self._suggestions = []
        auto_mapped: list[TableMapping] = []

        for source in source_tables:
            candidates = self.suggest_tables(source)
            if not candidates:
                continue
            best = candidates[0]
            if self.auto_map_tables and best.confidence >= self.similarity_threshold:
                auto_mapped.append(
                    self.create_table_mapping(source.name, best.target_item, auto_detected=True)
                )
            self._suggestions.extend(candidates)

        ambiguities = self.ambiguities(auto_mapped)
        for ambiguity in ambiguities:
            log.warning("Ambiguous column mapping: %s", ambiguity)
        log.info(
            "Analysis complete: %d suggestion(s), %d table(s) auto-mapped.",
            len(self._suggestions), len(auto_mapped),
        )
        return AnalysisResult(
            suggestions=list(self._suggestions),
            auto_mapped=auto_mapped,
            ambiguities=ambiguities,
        )

    def suggest_tables(self, source: TableInfo) -> list[MappingSuggestion]:
        """Target tables scoring above the floor for *source*, best first."""
        found = []
        for target in self.repository.target_tables:
            score = table_similarity(source, target)
            if score > SUGGESTION_FLOOR:
                found.append(MappingSuggestion(
                    kind="table",
                    source_item=source.name,
                    target_item=target.name,
                    confidence=score,
                    reason=similarity_reason(score),
                ))
        found.sort(key=lambda s: s.confidence, reverse=True)
        return found

    def suggest_columns(self, source: TableInfo, target: TableInfo) -> list[MappingSuggestion]:
        """Every column pair above the match floor, best first."""
        found = []
        for source_col in source.columns:
            for target_col in target.columns:
                score = column_match_score(source_col, target_col)
                if score > COLUMN_MATCH_FLOOR:
                    found.append(MappingSuggestion(
                        kind="column",
                        source_item=f"{source.name}.{source_col.name}",
                        target_item=f"{target.name}.{target_col.name}",
                        confidence=round(score, 4),
                        reason=similarity_reason(score),
                    ))
        found.sort(key=lambda s: s.confidence, reverse=True)
        return found

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    @staticmethod
    def best_column_match(
        source_col: ColumnInfo, target_columns: Sequence[ColumnInfo]
    ) -> tuple[ColumnInfo, float] | None:
        best: tuple[ColumnInfo, float] | None = None
        for target_col in target_columns:
            score = column_match_score(source_col, target_col)
            if score > COLUMN_MATCH_FLOOR and (best is None or score > best[1]):
                best = (target_col, score)
        return best

    def map_columns(
        self, source_columns: Sequence[ColumnInfo], target_columns: Sequence[ColumnInfo]
    ) -> list[ColumnMapping]:
        mappings = []
        for source_col in source_columns:
            match = self.best_column_match(source_col, target_columns)
            if match is None:
                continue
            target_col, score = match
            mappings.append(ColumnMapping(
                source_column=source_col.name,
                source_type=source_col.type,
                target_column=target_col.name,
                target_type=target_col.type,
                transformation=self.build_field_transformation(source_col, target_col),
                nullable=target_col.nullable,
                default_value=target_col.default_value,
                confidence=round(score * 100, 2),
                auto_detected=True,
            ))
        return mappings

    @staticmethod
    def build_field_transformation(
        source_col: ColumnInfo, target_col: ColumnInfo
    ) -> FieldTransformation:
        """
        Describe how a value travels from *source_col* to *target_col*.

        Identity columns become generator calls; compatible types copy
        directly; date pairs carry a format; everything else is a CAST,
        with precision and scale for numeric targets.
        """
        if source_col.auto_increment:
            return FieldTransformation(
                kind=TransformationKind.CALCULATE,
                expression=f"GEN_ID(GEN_{target_col.name.upper()}, 1)",
            )
        if type_similarity(source_col.type, target_col.type) >= 0.8:
            return FieldTransformation(kind=TransformationKind.DIRECT)
        if is_date_type(source_col.type) and is_date_type(target_col.type):
            return FieldTransformation(kind=TransformationKind.FORMAT, format=DATE_FORMAT)

        target_sql = (target_col.original_type or target_col.type).upper()
        if is_numeric_type(target_col.type) and target_col.precision is not None:
            scale = target_col.scale or 0
            target_sql = f"{normalize_type(target_col.type)}({target_col.precision},{scale})"
            return FieldTransformation(
                kind=TransformationKind.CONVERT,
                expression=f"CAST({source_col.name} AS {target_sql})",
                precision=target_col.precision,
                scale=scale,
            )
        return FieldTransformation(
            kind=TransformationKind.CONVERT,
            expression=f"CAST({source_col.name} AS {target_sql})",
        )

    # ------------------------------------------------------------------
    # Table mappings
    # ------------------------------------------------------------------

    def create_table_mapping(
        self, source_table: str, target_table: str, auto_detected: bool = False
    ) -> TableMapping:
        """
        One-to-one mapping with auto-mapped columns.

        Operator-created mappings get confidence 100; auto-detected ones
        carry the table similarity.
        """
        source = self.repository.source_table(source_table)
        target = self.repository.target_table(target_table)
        columns = self.map_columns(source.columns, target.columns) if source and target else []
        confidence = 100.0
        if auto_detected and source and target:
            confidence = round(table_similarity(source, target) * 100, 2)
        mapping = self.repository.create_one_to_one(
            source_table, target_table, columns, confidence=confidence
        )
        log.debug(
            "Mapped %s with %d column(s)%s.",
            mapping.display_name, len(columns), " (auto)" if auto_detected else "",
        )
        return mapping

    def create_many_to_one_mapping(
        self,
        source_tables: Sequence[str],
        target_table: str,
        join_conditions: Sequence[JoinCondition] | None = None,
    ) -> TableMapping:
        """Columns of every source are offered as ``table.column``."""
        target = self.repository.target_table(target_table)
        combined: list[ColumnInfo] = []
        for name in source_tables:
            table = self.repository.source_table(name)
            if table is not None:
                combined.extend(replace(c, name=f"{name}.{c.name}") for c in table.columns)
        columns = self.map_columns(combined, target.columns) if target else []
        return self.repository.create_many_to_one(
            source_tables,
            target_table,
            join_conditions=join_conditions,
            column_mappings=columns,
            confidence=MANY_TO_ONE_CONFIDENCE,
        )

    def create_one_to_many_mapping(
        self,
        source_table: str,
        target_tables: Sequence[str],
        split_rules: dict[str, SplitRule | list[str]],
    ) -> list[TableMapping]:
        """Each target is auto-mapped from only the columns its split rule lists."""
        source = self.repository.source_table(source_table)
        per_target: dict[str, list[ColumnMapping]] = {}
        for name in target_tables:
            target = self.repository.target_table(name)
            rule = split_rules.get(name)
            wanted = rule.columns if isinstance(rule, SplitRule) else list(rule or [])
            if source is None or target is None:
                continue
            picked = [c for c in source.columns if c.name in wanted]
            per_target[name] = self.map_columns(picked, target.columns)
        return self.repository.create_one_to_many(
            source_table,
            target_tables,
            split_rules=split_rules,
            column_mappings=per_target,
            confidence=ONE_TO_MANY_CONFIDENCE,
        )

    # ------------------------------------------------------------------
    # Relationships and ambiguities
    # ------------------------------------------------------------------

    def detect_relationships(self) -> list[JoinCondition]:
        """
        Best-effort foreign-key inference across source and target schemas.

        A pair qualifies only when all four hold: the source column name
        ends in ``ID``; it contains the target table's name; the types are
        compatible (>= 0.8); the target column is a primary key.
        """
        found: list[JoinCondition] = []
        for source in self.repository.source_tables:
            for target in self.repository.target_tables:
                for source_col in source.columns:
                    for target_col in target.columns:
                        if self._is_possible_foreign_key(source_col, target_col, target):
                            found.append(JoinCondition(
                                source_table=source.name,
                                source_column=source_col.name,
                                target_table=target.name,
                                target_column=target_col.name,
                                join_kind=JoinKind.INNER,
                            ))
        return found

    @staticmethod
    def _is_possible_foreign_key(
        source_col: ColumnInfo, target_col: ColumnInfo, target_table: TableInfo
    ) -> bool:
        is_id_field = source_col.name.upper().endswith("ID")
        names_target = target_table.name.lower() in source_col.name.lower()
        compatible = type_similarity(source_col.type, target_col.type) >= 0.8
        is_target_pk = target_col.name in target_table.primary_keys
        return is_id_field and names_target and compatible and is_target_pk

    def ambiguities(self, mappings: Sequence[TableMapping] | None = None) -> list[ColumnAmbiguity]:
        """Target columns claimed by more than one source column of one mapping."""
        found = []
        for mapping in mappings if mappings is not None else self.repository.all():
            claims: dict[str, list[str]] = defaultdict(list)
            for cm in mapping.column_mappings:
                claims[cm.target_column].append(cm.source_column)
            for target_column, sources in claims.items():
                if len(sources) > 1:
                    found.append(ColumnAmbiguity(mapping.id, target_column, tuple(sources)))
        return found

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def export_config(self) -> dict[str, Any]:
        return self.repository.export_config(self.config)

    def import_config(self, data: dict[str, Any]) -> None:
        """Restore mappings and the engine settings stored alongside them."""
        config = self.repository.import_config(data)
        if "similarityThreshold" in config:
            self.similarity_threshold = float(config["similarityThreshold"])
        if "autoMapTables" in config:
            self.auto_map_tables = bool(config["autoMapTables"])
