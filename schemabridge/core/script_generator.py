"""
schemabridge/core/script_generator.py
-------------------------------------
Renders the accepted mappings as SQL: DDL for the target structures and
``INSERT … SELECT`` DML for the data.

Design Decisions:
    * Identifiers are double-quoted (SQL standard) so mixed-case legacy
      names survive engines that fold case.
    * Only enabled mappings are rendered; each target table is created
      once even when several mappings feed it.
    * One-to-many splits are executed by the orchestrator, not exported;
      the DML carries a marker comment for them.
"""
from __future__ import annotations

import datetime
from pathlib import Path
from typing import Any

from schemabridge.config import CONFIG
from schemabridge.core.mapping_store import MappingRepository
from schemabridge.logger import get_logger
from schemabridge.models.mapping import (
    ColumnMapping,
    MappingKind,
    TableMapping,
    TransformationKind,
    split_qualified,
)
from schemabridge.models.schema import ColumnInfo

log = get_logger(__name__)

_HEADER = """\
-- Migration script ({app})
-- Generated    : {timestamp}
-- Mappings     : {mappings}
-- Target tables: {targets}
--
-- Review before running. Back up the target database first.
"""


def quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _qualified(name: str) -> str:
    table, column = split_qualified(name)
    if table is None:
        return quote(column)
    return f"{quote(table)}.{quote(column)}"


def _literal(value: Any) -> str:
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


def _column_definition(col: ColumnInfo) -> str:
    definition = f"  {quote(col.name)} {col.original_type or col.type}"
    if not col.nullable:
        definition += " NOT NULL"
    if col.default_value is not None:
        definition += f" DEFAULT {_literal(col.default_value)}"
    return definition


class ScriptGenerator:
    """Builds DDL/DML from the mappings and target schema held by a repository."""

    def __init__(self, repository: MappingRepository) -> None:
        self.repository = repository

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def generate_ddl(self) -> list[str]:
        """
        One ``CREATE TABLE`` per distinct target of an enabled mapping,
        followed by the generators of every mapping feeding it and its
        primary-key index.
        """
        feeding: dict[str, list[TableMapping]] = {}
        for mapping in self.repository.enabled():
            feeding.setdefault(mapping.target_table, []).append(mapping)

        statements: list[str] = []
        for target_name, mappings in feeding.items():
            target = self.repository.target_table(target_name)
            if target is None:
                log.warning(
                    "Target table '%s' is not in the analysed schema; no DDL emitted.",
                    target_name,
                )
                continue

            lines = [_column_definition(c) for c in target.columns]
            if target.primary_keys:
                pk_cols = ", ".join(quote(pk) for pk in target.primary_keys)
                lines.append(f"  PRIMARY KEY ({pk_cols})")
            statements.append(
                f"CREATE TABLE {quote(target.name)} (\n" + ",\n".join(lines) + "\n);"
            )

            generators: list[str] = []
            for mapping in mappings:
                for cm in mapping.column_mappings:
                    t = cm.transformation
                    if t and t.kind == TransformationKind.CALCULATE and "GEN_ID" in (t.expression or ""):
                        generator = f"GEN_{cm.target_column.upper()}"
                        if generator not in generators:
                            generators.append(generator)
            for generator in generators:
                statements.append(f"CREATE GENERATOR {generator};")
                statements.append(f"SET GENERATOR {generator} TO 0;")

            if target.primary_keys:
                pk_cols = ", ".join(quote(pk) for pk in target.primary_keys)
                statements.append(
                    f"CREATE UNIQUE INDEX PK_{target.name.upper()} "
                    f"ON {quote(target.name)} ({pk_cols});"
                )
        return statements

    # ------------------------------------------------------------------
    # DML
    # ------------------------------------------------------------------

    def generate_dml(self) -> list[str]:
        statements: list[str] = []
        for mapping in self.repository.enabled():
            if mapping.kind == MappingKind.ONE_TO_ONE:
                statements.append(self._simple_insert(mapping))
            elif mapping.kind == MappingKind.MANY_TO_ONE:
                statements.append(self._join_insert(mapping))
            else:
                statements.append(
                    f"-- one-to-many split {mapping.source_table} -> {mapping.target_table}: "
                    "executed by the migration orchestrator, not exported"
                )
        return statements

    @staticmethod
    def _expression(cm: ColumnMapping) -> str:
        t = cm.transformation
        if t is not None and t.kind == TransformationKind.DIRECT:
            return _qualified(cm.source_column)
        if t is not None and t.expression:
            return t.expression
        return f"CAST({_qualified(cm.source_column)} AS {cm.target_type})"

    def _simple_insert(self, mapping: TableMapping) -> str:
        targets = ", ".join(quote(cm.target_column) for cm in mapping.column_mappings)
        exprs = ", ".join(self._expression(cm) for cm in mapping.column_mappings)
        return (
            f"INSERT INTO {quote(mapping.target_table)} ({targets})\n"
            f"SELECT {exprs}\n"
            f"FROM {quote(mapping.source_table)};"
        )

    def _join_insert(self, mapping: TableMapping) -> str:
        targets = ", ".join(quote(cm.target_column) for cm in mapping.column_mappings)
        exprs = ", ".join(self._expression(cm) for cm in mapping.column_mappings)
        from_clause = quote(mapping.source_table)
        for join in mapping.join_conditions:
            from_clause += (
                f" {join.join_kind.value} JOIN {quote(join.target_table)}"
                f" ON {quote(join.source_table)}.{quote(join.source_column)}"
                f" = {quote(join.target_table)}.{quote(join.target_column)}"
            )
        return (
            f"INSERT INTO {quote(mapping.target_table)} ({targets})\n"
            f"SELECT {exprs}\n"
            f"FROM {from_clause};"
        )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def render(self) -> str:
        enabled = self.repository.enabled()
        header = _HEADER.format(
            app=f"{CONFIG.app_name} {CONFIG.app_version}",
            timestamp=datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            mappings=len(enabled),
            targets=", ".join(sorted({m.target_table for m in enabled})) or "-",
        )
        parts = [header, "-- DDL", *self.generate_ddl(), "", "-- DML", *self.generate_dml()]
        return "\n".join(parts) + "\n"

    def write_script(self, output_path: Path | str) -> Path:
        """Write DDL and DML to *output_path* (``.sql`` appended when missing)."""
        path = Path(output_path)
        if path.suffix != ".sql":
            path = path.with_suffix(".sql")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(), encoding="utf-8")
        log.info("Migration script written to '%s'.", path)
        return path
