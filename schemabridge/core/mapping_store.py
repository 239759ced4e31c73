"""
schemabridge/core/mapping_store.py
----------------------------------
In-memory registry of accepted table mappings, with validation and
import/export of the mapping configuration.

Design Decision:
    The repository only checks names and cardinality; it never scores
    anything. Column correspondences come from the caller (an operator, or
    :class:`~schemabridge.core.mapping_engine.SchemaMappingEngine`), so the
    repository can be unit-tested with hand-written mappings and no
    similarity engine at all.
"""
from __future__ import annotations

import dataclasses
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

from schemabridge.config import CONFIG
from schemabridge.errors import MappingError
from schemabridge.logger import get_logger
from schemabridge.models.mapping import (
    ColumnMapping,
    JoinCondition,
    MappingKind,
    SplitRule,
    TableMapping,
    split_qualified,
)
from schemabridge.models.schema import DatabaseSchema, TableInfo

log = get_logger(__name__)

_UPDATABLE_FIELDS = frozenset(
    f.name for f in dataclasses.fields(TableMapping) if f.name != "id"
)


def _as_schema(
    schema: DatabaseSchema | Sequence[TableInfo] | None, name: str
) -> DatabaseSchema:
    if isinstance(schema, DatabaseSchema):
        return schema
    return DatabaseSchema(name=name, tables=tuple(schema or ()))


class MappingRepository:
    """
    Mappings keyed by their composite id, plus the last analysed schemas.

    Insertion order is preserved; exports and DML follow it.
    """

    def __init__(self) -> None:
        self._mappings: dict[str, TableMapping] = {}
        self._source = DatabaseSchema(name="source")
        self._target = DatabaseSchema(name="target")

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    def set_schemas(
        self,
        source: DatabaseSchema | Sequence[TableInfo] | None,
        target: DatabaseSchema | Sequence[TableInfo] | None,
    ) -> None:
        self._source = _as_schema(source, "source")
        self._target = _as_schema(target, "target")
        log.debug(
            "Schemas set: %d source table(s), %d target table(s).",
            len(self._source.tables), len(self._target.tables),
        )

    @property
    def source_tables(self) -> list[TableInfo]:
        return list(self._source.tables)

    @property
    def target_tables(self) -> list[TableInfo]:
        return list(self._target.tables)

    def source_table(self, name: str) -> TableInfo | None:
        return self._source.get_table(name)

    def target_table(self, name: str) -> TableInfo | None:
        return self._target.get_table(name)

    def _require_source(self, name: str) -> TableInfo:
        table = self.source_table(name)
        if table is None:
            raise MappingError(f"Source table not found: {name}")
        return table

    def _require_target(self, name: str) -> TableInfo:
        table = self.target_table(name)
        if table is None:
            raise MappingError(f"Target table not found: {name}")
        return table

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_one_to_one(
        self,
        source_table: str,
        target_table: str,
        column_mappings: Iterable[ColumnMapping] | None = None,
        confidence: float = 100.0,
    ) -> TableMapping:
        self._require_source(source_table)
        self._require_target(target_table)
        mapping = TableMapping(
            source_tables=[source_table],
            target_table=target_table,
            column_mappings=list(column_mappings or []),
            kind=MappingKind.ONE_TO_ONE,
            confidence=confidence,
        )
        return self.add(mapping)

    def create_many_to_one(
        self,
        source_tables: Sequence[str],
        target_table: str,
        join_conditions: Iterable[JoinCondition] | None = None,
        column_mappings: Iterable[ColumnMapping] | None = None,
        confidence: float = 85.0,
    ) -> TableMapping:
        """
        Merge two or more source tables into one target.

        Raises:
            MappingError: Fewer than two sources, or an unknown table.
        """
        if len(source_tables) < 2:
            raise MappingError("A many-to-one mapping requires at least 2 source tables.")
        for name in source_tables:
            self._require_source(name)
        self._require_target(target_table)
        mapping = TableMapping(
            source_tables=list(source_tables),
            target_table=target_table,
            column_mappings=list(column_mappings or []),
            kind=MappingKind.MANY_TO_ONE,
            confidence=confidence,
            join_conditions=list(join_conditions or []),
        )
        return self.add(mapping)

    def create_one_to_many(
        self,
        source_table: str,
        target_tables: Sequence[str],
        split_rules: dict[str, SplitRule | list[str]] | None = None,
        column_mappings: dict[str, list[ColumnMapping]] | None = None,
        confidence: float = 80.0,
    ) -> list[TableMapping]:
        """
        Split one source table into two or more targets.

        ``split_rules`` maps each target to the source columns it receives
        (a :class:`SplitRule`, or a bare column list meaning every row).

        Returns:
            One mapping per target table, in the order given.

        Raises:
            MappingError: Fewer than two targets, or an unknown table.
        """
        if len(target_tables) < 2:
            raise MappingError("A one-to-many mapping requires at least 2 target tables.")
        self._require_source(source_table)
        for name in target_tables:
            self._require_target(name)

        split_rules = split_rules or {}
        column_mappings = column_mappings or {}
        created: list[TableMapping] = []
        for target in target_tables:
            rule = split_rules.get(target) or SplitRule()
            if not isinstance(rule, SplitRule):
                rule = SplitRule(columns=list(rule))
            mapping = TableMapping(
                source_tables=[source_table],
                target_table=target,
                column_mappings=list(column_mappings.get(target, [])),
                kind=MappingKind.ONE_TO_MANY,
                confidence=confidence,
                split_rule=rule,
            )
            created.append(self.add(mapping))
        return created

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def add(self, mapping: TableMapping) -> TableMapping:
        """Register *mapping*, replacing any mapping with the same id."""
        if mapping.id in self._mappings:
            log.debug("Replacing mapping '%s'.", mapping.id)
        self._mappings[mapping.id] = mapping
        log.debug("Registered mapping %s", mapping.display_name)
        return mapping

    def get(self, mapping_id: str) -> TableMapping | None:
        return self._mappings.get(mapping_id)

    def all(self) -> list[TableMapping]:
        return list(self._mappings.values())

    def enabled(self) -> list[TableMapping]:
        return [m for m in self._mappings.values() if m.enabled]

    def update(self, mapping_id: str, **changes: Any) -> TableMapping:
        """
        Shallow-merge *changes* into an existing mapping.

        Raises:
            MappingError: Unknown id, or a field ``TableMapping`` does not have.
        """
        mapping = self._mappings.get(mapping_id)
        if mapping is None:
            raise MappingError(f"Unknown mapping id: {mapping_id}")
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise MappingError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(mapping, name, value)
        log.debug("Updated mapping '%s': %s", mapping_id, ", ".join(sorted(changes)))
        return mapping

    def remove(self, mapping_id: str) -> bool:
        """Remove a mapping by id. Returns True if a mapping was removed."""
        if mapping_id in self._mappings:
            del self._mappings[mapping_id]
            log.debug("Removed mapping '%s'.", mapping_id)
            return True
        return False

    def clear(self) -> None:
        self._mappings.clear()
        log.debug("Cleared all mappings.")

    def __len__(self) -> int:
        return len(self._mappings)

    def __contains__(self, mapping_id: object) -> bool:
        return mapping_id in self._mappings

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        """
        Check every mapping against the last analysed schemas.

        Never raises; an empty list means every referenced table and
        column exists and every mapping has a legal cardinality.
        """
        errors: list[str] = []
        for mapping in self._mappings.values():
            errors.extend(self._validate_one(mapping))
        return errors

    def _validate_one(self, mapping: TableMapping) -> list[str]:
        errors: list[str] = []
        prefix = f"[{mapping.id}]"

        if mapping.kind == MappingKind.MANY_TO_ONE and len(mapping.source_tables) < 2:
            errors.append(f"{prefix} many-to-one mapping needs at least 2 source tables")
        elif mapping.kind != MappingKind.MANY_TO_ONE and len(mapping.source_tables) != 1:
            errors.append(f"{prefix} {mapping.kind.value} mapping needs exactly 1 source table")

        sources: dict[str, TableInfo] = {}
        for name in mapping.source_tables:
            table = self.source_table(name)
            if table is None:
                errors.append(f"{prefix} source table not found: {name}")
            else:
                sources[name] = table
        target = self.target_table(mapping.target_table)
        if target is None:
            errors.append(f"{prefix} target table not found: {mapping.target_table}")

        for cm in mapping.column_mappings:
            if sources:
                owner, column = split_qualified(cm.source_column)
                if owner is not None and owner in sources:
                    found = column in sources[owner].column_names
                else:
                    found = any(cm.source_column in t.column_names for t in sources.values())
                if not found:
                    errors.append(f"{prefix} source column not found: {cm.source_column}")
            if target is not None and cm.target_column not in target.column_names:
                errors.append(
                    f"{prefix} target column not found: "
                    f"{mapping.target_table}.{cm.target_column}"
                )
        return errors

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_config(self, engine_config: dict[str, Any] | None = None) -> dict[str, Any]:
        """Serializable snapshot: ``{config, mappings, sourceSchema, targetSchema, exportedAt}``."""
        return {
            "config": dict(engine_config or {}),
            "mappings": [m.to_dict() for m in self._mappings.values()],
            "sourceSchema": self._source.summary(),
            "targetSchema": self._target.summary(),
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }

    def import_config(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Replace the registered mappings with those in *data*.

        Transformation expressions are restored verbatim.

        Returns:
            The ``config`` block of *data* (empty dict when absent).
        """
        raw_mappings = data.get("mappings")
        if raw_mappings is not None:
            self.clear()
            for raw in raw_mappings:
                self.add(raw if isinstance(raw, TableMapping) else TableMapping.from_dict(raw))
        log.info("Imported %d mapping(s).", len(self._mappings))
        return dict(data.get("config") or {})

    def save(
        self, path: Path | str | None = None, engine_config: dict[str, Any] | None = None
    ) -> Path:
        """
        Write the exported configuration to *path* as JSON.

        *path* defaults to ``CONFIG.mapping.mapping_file``.

        Uses an atomic write-then-rename pattern to prevent corruption.
        """
        path = Path(path) if path is not None else CONFIG.mapping.mapping_file
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self.export_config(engine_config), indent=4, default=str)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(path)
        log.debug("Saved %d mapping(s) to '%s'.", len(self._mappings), path)
        return path

    def load(self, path: Path | str | None = None) -> dict[str, Any]:
        """
        Import a configuration previously written by :meth:`save`.

        *path* defaults to ``CONFIG.mapping.mapping_file``.

        Raises:
            MappingError: Missing file or invalid JSON.
        """
        path = Path(path) if path is not None else CONFIG.mapping.mapping_file
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise MappingError(f"Mapping file not found: '{path}'") from exc
        except json.JSONDecodeError as exc:
            raise MappingError(f"Invalid JSON in mapping file '{path}': {exc}") from exc
        return self.import_config(data)
