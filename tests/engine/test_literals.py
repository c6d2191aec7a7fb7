# tests/engine/test_literals.py
"""Tests for SQL literal rendering."""

from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID

import pytest

from pgsample.engine.literals import quote_literal, to_literal


class TestQuoteLiteral:
    def test_plain(self) -> None:
        assert quote_literal("hello") == "'hello'"

    def test_single_quote_doubled(self) -> None:
        assert quote_literal("O'Brien") == "'O''Brien'"

    def test_backslash_uses_escape_string(self) -> None:
        assert quote_literal("C:\\temp") == "E'C:\\\\temp'"


class TestScalars:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "NULL"),
            (True, "TRUE"),
            (False, "FALSE"),
            (42, "42"),
            (-7, "-7"),
            (1.5, "1.5"),
            (Decimal("12.340"), "12.340"),
            ("text", "'text'"),
        ],
    )
    def test_basic_values(self, value: object, expected: str) -> None:
        assert to_literal(value) == expected

    def test_bool_is_not_rendered_as_int(self) -> None:
        assert to_literal(True, "boolean") == "TRUE"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (float("nan"), "'NaN'"),
            (float("inf"), "'Infinity'"),
            (float("-inf"), "'-Infinity'"),
            (Decimal("NaN"), "'NaN'"),
            (Decimal("-Infinity"), "'-Infinity'"),
        ],
    )
    def test_special_numbers_quoted(self, value: object, expected: str) -> None:
        assert to_literal(value) == expected


class TestTemporal:
    def test_date(self) -> None:
        assert to_literal(date(2024, 2, 29)) == "'2024-02-29'"

    def test_aware_timestamp_keeps_offset(self) -> None:
        assert to_literal(datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == "'2024-01-02T03:04:05+00:00'"

    def test_time(self) -> None:
        assert to_literal(time(12, 30)) == "'12:30:00'"

    def test_interval(self) -> None:
        assert to_literal(timedelta(days=1, seconds=30)) == "'1 days 30 seconds 0 microseconds'"


class TestStructured:
    def test_bytes_as_hex(self) -> None:
        assert to_literal(b"\x00\xff") == "E'\\\\x00ff'"

    def test_uuid(self) -> None:
        value = UUID("12345678-1234-5678-1234-567812345678")

        assert to_literal(value, "uuid") == "'12345678-1234-5678-1234-567812345678'"

    def test_list_in_array_column(self) -> None:
        assert to_literal([1, 2, None], "ARRAY") == "'{\"1\",\"2\",NULL}'"

    def test_nested_array(self) -> None:
        assert to_literal([["a", "b"], ["c", "d"]], "ARRAY") == "'{{\"a\",\"b\"},{\"c\",\"d\"}}'"

    def test_array_element_quotes_escaped(self) -> None:
        assert to_literal(['say "hi"'], "ARRAY") == r"""E'{"say \\"hi\\""}'"""

    def test_list_in_json_column_is_json(self) -> None:
        assert to_literal([1, 2], "jsonb") == "'[1, 2]'"

    def test_dict_in_json_column(self) -> None:
        assert to_literal({"name": "O'Brien"}, "json") == "'{\"name\": \"O''Brien\"}'"

    def test_scalar_in_json_column_is_json(self) -> None:
        """A json string column holds a JSON string, quotes included."""
        assert to_literal("x", "jsonb") == "'\"x\"'"

    def test_json_type_case_insensitive(self) -> None:
        assert to_literal({"a": 1}, "JSONB") == "'{\"a\": 1}'"
