"""
schemabridge/core/similarity.py
-------------------------------
Fuzzy scoring of tables and columns.

All scores are in ``[0, 1]``::

    table  = 0.4 · name + 0.2 · column-count ratio + 0.4 · column structure
    column = 0.7 · name + 0.3 · type

Table scores are reported at two-decimal precision; thresholds compare
against the reported value.

Design Decision:
    String similarity treats substring containment as a flat 0.8 instead
    of scaling it by the length difference, so ``CLIENT`` vs
    ``CLIENTS_ARCHIVE`` scores the same as ``CLIENT`` vs ``CLIENTS``.
"""
from __future__ import annotations

from typing import Sequence

from schemabridge.core.type_compat import type_similarity
from schemabridge.models.schema import ColumnInfo, TableInfo

NAME_WEIGHT = 0.4
COUNT_WEIGHT = 0.2
STRUCTURE_WEIGHT = 0.4

COLUMN_NAME_WEIGHT = 0.7
COLUMN_TYPE_WEIGHT = 0.3

SUBSTRING_SCORE = 0.8


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with unit insert / delete / substitute costs."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """
    Case- and whitespace-insensitive name similarity.

    Examples::

        string_similarity("ID", " id ")          →  1.0
        string_similarity("CLIENT", "CLIENTS")   →  0.8
        string_similarity("name", "nome")        →  0.75
    """
    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return SUBSTRING_SCORE
    longest = max(len(s1), len(s2))
    return (longest - levenshtein_distance(s1, s2)) / longest


def column_match_score(source: ColumnInfo, target: ColumnInfo) -> float:
    return (
        COLUMN_NAME_WEIGHT * string_similarity(source.name, target.name)
        + COLUMN_TYPE_WEIGHT * type_similarity(source.type, target.type)
    )


def column_structure_similarity(
    source_columns: Sequence[ColumnInfo], target_columns: Sequence[ColumnInfo]
) -> float:
    """Average, over source columns, of each one's best match score."""
    if not source_columns or not target_columns:
        return 0.0
    total = 0.0
    for source in source_columns:
        total += max(column_match_score(source, target) for target in target_columns)
    return total / len(source_columns)


def column_count_ratio(source: TableInfo, target: TableInfo) -> float:
    smaller = min(len(source.columns), len(target.columns))
    larger = max(len(source.columns), len(target.columns))
    if larger == 0:
        return 0.0
    return smaller / larger


def table_similarity(source: TableInfo, target: TableInfo) -> float:
    """
    Weighted name, column-count and column-structure score in [0, 1].

    The result is rounded to two decimals and callers compare that rounded
    value against the auto-mapping threshold, so a raw 0.698 auto-maps at
    a 0.7 threshold.
    """
    name_score = string_similarity(source.name, target.name)
    if not source.columns and not target.columns:
        return round(name_score, 2)
    score = (
        NAME_WEIGHT * name_score
        + COUNT_WEIGHT * column_count_ratio(source, target)
        + STRUCTURE_WEIGHT * column_structure_similarity(source.columns, target.columns)
    )
    return round(min(max(score, 0.0), 1.0), 2)


def similarity_reason(score: float) -> str:
    """Human-readable justification attached to a suggestion."""
    if score > 0.9:
        return "Very similar name and compatible structure"
    if score > 0.7:
        return "Compatible column structure"
    if score > 0.5:
        return "Some similar columns found"
    return "Low similarity, manual review recommended"
