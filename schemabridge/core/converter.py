"""
schemabridge/core/converter.py
------------------------------
Runtime value conversion between heterogeneous type representations.

:func:`convert` is total: it never raises, it reports. A failed
conversion keeps the original value so the row can still be written
and the failure counted, never silently dropped.

Dispatch is by conversion category pair (see
:mod:`schemabridge.core.type_compat`)::

    TEXT   → DATE     fixed patterns first, then free-form parsing
    TEXT   → NUMBER   thousands separators removed, decimal comma → dot
    NUMBER → TEXT     str()
    DATE   → TEXT     ISO date
    NUMBER → NUMBER   rounded for integer targets
    TEXT   → TEXT     str()
    other             str()
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from dateutil import parser as date_parser

from schemabridge.core.type_compat import (
    ValueCategory,
    is_integer_type,
    normalize_type,
    value_category,
)
from schemabridge.errors import ConversionError
from schemabridge.models.mapping import ColumnMapping, TransformationKind, split_qualified
from schemabridge.models.options import TransformKind, TransformRule

# Ordered: the first pattern producing a valid calendar date wins.
_DATE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^(\d{4})-(\d{2})-(\d{2})$"), "ymd"),   # YYYY-MM-DD
    (re.compile(r"^(\d{2})/(\d{2})/(\d{4})$"), "dmy"),   # DD/MM/YYYY
    (re.compile(r"^(\d{2})-(\d{2})-(\d{4})$"), "dmy"),   # DD-MM-YYYY
    (re.compile(r"^(\d{4})(\d{2})(\d{2})$"), "ymd"),     # YYYYMMDD
    (re.compile(r"^(\d{2})(\d{2})(\d{4})$"), "dmy"),     # DDMMYYYY
)

_THOUSANDS_RE = re.compile(r",(?=\d{3})")
_WS_RE = re.compile(r"\s+")

# Fills components missing from free-form input so parsing stays
# independent of the current date.
_PARSE_DEFAULT = datetime(1900, 1, 1)

_HANDLED_PAIRS = frozenset({
    (ValueCategory.TEXT, ValueCategory.DATE),
    (ValueCategory.TEXT, ValueCategory.NUMBER),
    (ValueCategory.NUMBER, ValueCategory.TEXT),
    (ValueCategory.DATE, ValueCategory.TEXT),
    (ValueCategory.NUMBER, ValueCategory.NUMBER),
    (ValueCategory.TEXT, ValueCategory.TEXT),
})

_FORMAT_TOKENS = (
    ("YYYY", "%Y"),
    ("MM", "%m"),
    ("DD", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
)


@dataclass(frozen=True)
class ConversionResult:
    success: bool
    value: Any
    original_value: Any
    source_type: str
    target_type: str
    conversion_kind: str
    warning: str | None = None
    error: str | None = None


def conversion_kind(source_type: str | None, target_type: str | None) -> str:
    """Label of the conversion path, e.g. ``"TEXT_TO_DATE"`` or ``"DIRECT"``."""
    if normalize_type(source_type) == normalize_type(target_type):
        return "DIRECT"
    src, tgt = value_category(source_type), value_category(target_type)
    if (src, tgt) not in _HANDLED_PAIRS:
        return "CUSTOM_CONVERSION"
    return f"{src.value}_TO_{tgt.value}"


def convert(value: Any, source_type: str | None, target_type: str | None) -> ConversionResult:
    """
    Convert *value* from *source_type* to *target_type*.

    Never raises. On failure ``success`` is False, ``value`` is the
    original value and ``error`` carries the reason.

    Examples::

        convert("31/12/2020", "VARCHAR", "DATE").value   →  "2020-12-31"
        convert("1,234.50", "VARCHAR", "DECIMAL").value  →  1234.5
        convert(None, "INTEGER", "DATE").success         →  True
    """
    kind = conversion_kind(source_type, target_type)
    base = dict(
        original_value=value,
        source_type=source_type or "",
        target_type=target_type or "",
    )

    if value is None:
        return ConversionResult(success=True, value=None, conversion_kind=kind, **base)
    if kind == "DIRECT":
        return ConversionResult(success=True, value=value, conversion_kind=kind, **base)

    warnings: list[str] = []
    try:
        converted = _dispatch(value, kind, normalize_type(target_type), warnings)
    except (ConversionError, ValueError, TypeError, ArithmeticError) as exc:
        return ConversionResult(
            success=False, value=value, conversion_kind=kind, error=str(exc), **base
        )
    return ConversionResult(
        success=True,
        value=converted,
        conversion_kind=kind,
        warning="; ".join(warnings) or None,
        **base,
    )


def _dispatch(value: Any, kind: str, target: str, warnings: list[str]) -> Any:
    if kind == "TEXT_TO_DATE":
        return _text_to_date(value, target)
    if kind == "TEXT_TO_NUMBER":
        return _text_to_number(value, target, warnings)
    if kind == "NUMBER_TO_NUMBER":
        return _number_to_number(value, target, warnings)
    if kind == "DATE_TO_TEXT":
        return _date_to_text(value)
    # NUMBER_TO_TEXT, TEXT_TO_TEXT and anything unhandled
    return str(value)


# ---------------------------------------------------------------------------
# TEXT → DATE
# ---------------------------------------------------------------------------

def _render_date(moment: datetime, target: str, exact_time: bool) -> str:
    if target == "TIMESTAMP":
        return moment.isoformat(timespec="seconds")
    if target == "TIME":
        return moment.time().isoformat(timespec="seconds") if exact_time else "00:00:00"
    return moment.date().isoformat()


def _match_fixed_format(text: str) -> datetime | None:
    for pattern, order in _DATE_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        first, second, third = (int(g) for g in match.groups())
        year, month, day = (first, second, third) if order == "ymd" else (third, second, first)
        try:
            return datetime(year, month, day)
        except ValueError:
            # Right shape, impossible date (e.g. 31/02): try the next pattern.
            continue
    return None


def _text_to_date(value: Any, target: str) -> str:
    if isinstance(value, datetime):
        return _render_date(value, target, exact_time=True)
    if isinstance(value, date):
        return _render_date(datetime(value.year, value.month, value.day), target, False)
    if not isinstance(value, str) or not value.strip():
        raise ConversionError(f"Invalid value for date conversion: {value!r}")

    text = value.strip()
    fixed = _match_fixed_format(text)
    if fixed is not None:
        return _render_date(fixed, target, exact_time=False)

    try:
        parsed = date_parser.parse(text, default=_PARSE_DEFAULT)
    except (ValueError, OverflowError) as exc:
        raise ConversionError(f"Could not convert {value!r} to a date") from exc
    return _render_date(parsed, target, exact_time=True)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def _round_half_up(number: float | Decimal) -> int:
    return int(Decimal(str(number)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _fit_number(number: Any, target: str, warnings: list[str]) -> Any:
    if isinstance(number, float) and not math.isfinite(number):
        raise ConversionError(f"Non-finite number {number!r} cannot be stored")
    if is_integer_type(target) and not isinstance(number, int):
        rounded = _round_half_up(number)
        if rounded != number:
            warnings.append(f"Rounded {number} to {rounded}")
        return rounded
    return number


def _text_to_number(value: Any, target: str, warnings: list[str]) -> Any:
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return _fit_number(value, target, warnings)
    if not isinstance(value, str) or not value.strip():
        raise ConversionError(f"Invalid value for numeric conversion: {value!r}")

    clean = _THOUSANDS_RE.sub("", _WS_RE.sub("", value))
    if "," in clean and "." not in clean:
        clean = clean.replace(",", ".", 1)
    try:
        number: Any = int(clean) if clean.lstrip("+-").isdigit() else float(clean)
    except ValueError as exc:
        raise ConversionError(f"Could not convert {value!r} to a number") from exc
    if isinstance(number, int) and not is_integer_type(target):
        number = float(number)
    return _fit_number(number, target, warnings)


def _number_to_number(value: Any, target: str, warnings: list[str]) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        try:
            value = float(value)
        except (TypeError, ValueError) as exc:
            raise ConversionError(f"Could not convert {value!r} to a number") from exc
    return _fit_number(value, target, warnings)


def _date_to_text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConversionFailure:
    column: str
    value: Any
    message: str


@dataclass
class RowConversion:
    row: dict[str, Any]
    failures: list[ConversionFailure] = field(default_factory=list)


def _strftime_pattern(fmt: str) -> str:
    for token, directive in _FORMAT_TOKENS:
        fmt = fmt.replace(token, directive)
    return fmt


def _source_value(row: dict[str, Any], source_column: str) -> Any:
    if source_column in row:
        return row[source_column]
    _, bare = split_qualified(source_column)
    return row.get(bare)


def _apply_transformation(cm: ColumnMapping, value: Any) -> tuple[Any, bool]:
    """Return ``(value, final)``; a final value skips type conversion."""
    transformation = cm.transformation
    if transformation is None or value is None:
        return value, False
    if transformation.kind == TransformationKind.LOOKUP and transformation.lookup_values:
        return transformation.lookup_values.get(str(value), value), False
    if (
        transformation.kind == TransformationKind.FORMAT
        and transformation.format
        and isinstance(value, (date, datetime))
    ):
        return value.strftime(_strftime_pattern(transformation.format)), True
    return value, False


def convert_row(row: dict[str, Any], column_mappings: Iterable[ColumnMapping]) -> RowConversion:
    """
    Project *row* onto the target columns of *column_mappings*.

    Values are renamed to their target column, defaulted when NULL,
    transformed (lookup / format) and converted when the normalised
    source and target types differ. A failed conversion keeps the
    original value and is recorded in ``failures``.
    """
    out: dict[str, Any] = {}
    failures: list[ConversionFailure] = []
    for cm in column_mappings:
        value = _source_value(row, cm.source_column)
        if value is None and cm.default_value is not None:
            value = cm.default_value
        value, final = _apply_transformation(cm, value)

        if not final and normalize_type(cm.source_type) != normalize_type(cm.target_type):
            result = convert(value, cm.source_type, cm.target_type)
            if not result.success:
                failures.append(ConversionFailure(cm.target_column, value, result.error or ""))
            value = result.value
        out[cm.target_column] = value
    return RowConversion(row=out, failures=failures)


# ---------------------------------------------------------------------------
# Operator transform rules
# ---------------------------------------------------------------------------

def _apply_rule(rule: TransformRule, value: Any) -> Any:
    kind = rule.transform
    if kind == TransformKind.NULL_TO_EMPTY:
        return "" if value is None else value
    if kind == TransformKind.CUSTOM:
        if rule.custom is None:
            return value
        try:
            return rule.custom(value)
        except Exception as exc:
            raise ConversionError(
                f"Custom transform on {rule.table}.{rule.column} failed: {exc}"
            ) from exc
    if not isinstance(value, str):
        return value
    if kind == TransformKind.UPPERCASE:
        return value.upper()
    if kind == TransformKind.LOWERCASE:
        return value.lower()
    return value.strip()


def apply_transform_rules(
    rows: list[dict[str, Any]], table: str, rules: Iterable[TransformRule]
) -> tuple[list[dict[str, Any]], list[ConversionFailure]]:
    """
    Return copies of *rows* with every rule for *table* applied in order.

    A rule that fails on a value leaves that value as it was and is
    reported in the returned failures; the row itself is kept.
    """
    applicable = [r for r in rules if r.table == table]
    if not applicable:
        return rows, []
    result = []
    failures: list[ConversionFailure] = []
    for row in rows:
        new_row = dict(row)
        for rule in applicable:
            if rule.column not in new_row:
                continue
            value = new_row[rule.column]
            try:
                new_row[rule.column] = _apply_rule(rule, value)
            except ConversionError as exc:
                failures.append(ConversionFailure(rule.column, value, str(exc)))
        result.append(new_row)
    return result, failures
