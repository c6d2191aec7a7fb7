# src/pgsample/engine/literals.py
"""Render Python values (as psycopg returns them) as Postgres SQL literals.

The output is meant to be pasted into INSERT statements and replayed by
psql; values are typed by the target column, so most non-numeric values
can be emitted as untyped string literals.
"""

from __future__ import annotations

import json
import math
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

JSON_TYPES = frozenset({"json", "jsonb"})


def quote_literal(text: str) -> str:
    """Same result as Postgres' quote_literal(): quotes doubled, E'' when backslashes appear."""
    escaped = text.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return "'" + escaped + "'"


def _float_literal(value: float) -> str:
    if math.isnan(value):
        return "'NaN'"
    if math.isinf(value):
        return "'Infinity'" if value > 0 else "'-Infinity'"
    return repr(value)


def _interval_text(value: timedelta) -> str:
    return f"{value.days} days {value.seconds} seconds {value.microseconds} microseconds"


def _array_element(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, list | tuple):
        return _array_text(value)
    if isinstance(value, bool):
        return "t" if value else "f"
    text = _scalar_text(value)
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _array_text(values: list[Any] | tuple[Any, ...]) -> str:
    return "{" + ",".join(_array_element(item) for item in values) + "}"


def _scalar_text(value: Any) -> str:
    """Text form of a non-null scalar, as Postgres would accept it on input."""
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, timedelta):
        return _interval_text(value)
    if isinstance(value, bytes | bytearray | memoryview):
        return "\\x" + bytes(value).hex()
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    if isinstance(value, UUID):
        return str(value)
    return str(value)


def to_literal(value: Any, data_type: str | None = None) -> str:
    """SQL literal for value stored in a column of data_type.

    data_type is the information_schema.columns spelling ("integer", "jsonb",
    "ARRAY", ...). It only matters where the Python value alone is
    ambiguous: a list is a JSON array in a json column and a Postgres array
    elsewhere.
    """
    if value is None:
        return "NULL"
    if data_type is not None and data_type.lower() in JSON_TYPES:
        return quote_literal(json.dumps(value, default=str))
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _float_literal(value)
    if isinstance(value, Decimal):
        if value.is_nan():
            return "'NaN'"
        if value.is_infinite():
            return "'Infinity'" if value > 0 else "'-Infinity'"
        return str(value)
    if isinstance(value, str):
        return quote_literal(value)
    if isinstance(value, list | tuple):
        return quote_literal(_array_text(value))
    return quote_literal(_scalar_text(value))
