"""
schemabridge/core/type_compat.py
--------------------------------
Static knowledge about which data types are interchangeable.

Two views of the same vocabulary live here:

* **Compatibility groups** drive mapping confidence. Similarity is a
  three-level scheme: identical (1.0), same group (0.8), otherwise 0.0.
  Length and precision are ignored on purpose; ``VARCHAR(10)`` and
  ``VARCHAR(4000)`` are identical after normalisation.
* **Conversion categories** (text / number / date) drive the value
  converter's dispatch. They are wider than the groups: ``NUMERIC`` is a
  number for conversion purposes even though it scores as a decimal
  for mapping.

Pure functions, no I/O.
"""
from __future__ import annotations

import re
from enum import Enum

_PARAMS_RE = re.compile(r"\([^)]*\)")
_WS_RE = re.compile(r"\s+")

# ---------------------------------------------------------------------------
# Compatibility groups
# ---------------------------------------------------------------------------
_TEXT_GROUP = frozenset({"VARCHAR", "CHAR", "TEXT", "STRING"})
_INTEGER_GROUP = frozenset({"INTEGER", "INT", "SMALLINT", "BIGINT", "NUMBER"})
_DECIMAL_GROUP = frozenset({"DECIMAL", "NUMERIC", "FLOAT", "DOUBLE", "REAL"})
_DATE_GROUP = frozenset({"DATE", "DATETIME", "TIMESTAMP"})
_BOOLEAN_GROUP = frozenset({"BOOLEAN", "BIT", "LOGICAL"})
_BINARY_GROUP = frozenset({"BLOB", "BINARY", "VARBINARY"})

TYPE_GROUPS: dict[str, frozenset[str]] = {
    "text": _TEXT_GROUP,
    "integer": _INTEGER_GROUP,
    "decimal": _DECIMAL_GROUP,
    "datetime": _DATE_GROUP,
    "boolean": _BOOLEAN_GROUP,
    "binary": _BINARY_GROUP,
}

# ---------------------------------------------------------------------------
# Conversion categories
# ---------------------------------------------------------------------------
_TEXT_CATEGORY = _TEXT_GROUP | {"CSTRING", "NVARCHAR", "NCHAR", "CLOB"}
_INTEGER_CATEGORY = frozenset({"INTEGER", "INT", "SMALLINT", "BIGINT"})
_NUMBER_CATEGORY = _INTEGER_CATEGORY | {
    "NUMBER", "NUMERIC", "DECIMAL", "REAL", "DOUBLE", "DOUBLE PRECISION", "FLOAT",
}
_DATE_CATEGORY = _DATE_GROUP | {"TIME"}


class ValueCategory(str, Enum):
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    DATE = "DATE"
    OTHER = "OTHER"


def normalize_type(raw: str | None) -> str:
    """
    Reduce a type definition to its upper-case base keyword(s).

    Examples::

        normalize_type("varchar(255)")    →  "VARCHAR"
        normalize_type("NUMERIC(18, 2)")  →  "NUMERIC"
        normalize_type("")                →  "VARCHAR"
    """
    if not raw or not raw.strip():
        return "VARCHAR"
    stripped = _PARAMS_RE.sub("", raw.upper())
    return _WS_RE.sub(" ", stripped).strip()


def type_group(type_name: str | None) -> str | None:
    """Name of the compatibility group of *type_name*, or ``None``."""
    base = normalize_type(type_name)
    for name, members in TYPE_GROUPS.items():
        if base in members:
            return name
    return None


def type_similarity(a: str | None, b: str | None) -> float:
    """1.0 identical, 0.8 same compatibility group, 0.0 otherwise."""
    na, nb = normalize_type(a), normalize_type(b)
    if na == nb:
        return 1.0
    group = type_group(na)
    if group is not None and group == type_group(nb):
        return 0.8
    return 0.0


def value_category(type_name: str | None) -> ValueCategory:
    base = normalize_type(type_name)
    if base in _TEXT_CATEGORY:
        return ValueCategory.TEXT
    if base in _NUMBER_CATEGORY:
        return ValueCategory.NUMBER
    if base in _DATE_CATEGORY:
        return ValueCategory.DATE
    return ValueCategory.OTHER


def is_integer_type(type_name: str | None) -> bool:
    return normalize_type(type_name) in _INTEGER_CATEGORY


def is_numeric_type(type_name: str | None) -> bool:
    return value_category(type_name) == ValueCategory.NUMBER


def is_text_type(type_name: str | None) -> bool:
    return value_category(type_name) == ValueCategory.TEXT


def is_date_type(type_name: str | None) -> bool:
    return value_category(type_name) == ValueCategory.DATE
