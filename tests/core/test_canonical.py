# tests/core/test_canonical.py
"""Tests for canonical JSON and closure fingerprints."""

import math
from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from pgsample.contracts.results import Closure
from pgsample.contracts.tables import RowIdentity, SampleRow, TableRef

USERS = TableRef("public", "users")


class TestCanonicalJson:
    """Deterministic serialization."""

    def test_key_order_irrelevant(self) -> None:
        from pgsample.core.canonical import canonical_json

        assert canonical_json({"b": 1, "a": 2}) == canonical_json({"a": 2, "b": 1}) == '{"a":2,"b":1}'

    def test_driver_types_normalized(self) -> None:
        from pgsample.core.canonical import canonical_json

        text = canonical_json(
            {
                "amount": Decimal("12.50"),
                "id": UUID("12345678-1234-5678-1234-567812345678"),
                "day": date(2024, 1, 2),
                "blob": b"\x00\x01",
                "wait": timedelta(seconds=90),
            }
        )

        assert '"amount":"12.50"' in text
        assert '"id":"12345678-1234-5678-1234-567812345678"' in text
        assert '"day":"2024-01-02"' in text
        assert '"__bytes__":"AAE="' in text
        assert '"__timedelta__":90' in text

    def test_datetimes_normalized_to_utc(self) -> None:
        from pgsample.core.canonical import canonical_json

        plus_two = timezone(timedelta(hours=2))
        a = canonical_json(datetime(2024, 1, 1, 12, 0, tzinfo=plus_two))
        b = canonical_json(datetime(2024, 1, 1, 10, 0, tzinfo=UTC))

        assert a == b

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_float_rejected(self, value: float) -> None:
        from pgsample.core.canonical import canonical_json

        with pytest.raises(ValueError, match="non-finite"):
            canonical_json({"x": value})

    def test_non_finite_decimal_rejected(self) -> None:
        from pgsample.core.canonical import canonical_json

        with pytest.raises(ValueError, match="non-finite Decimal"):
            canonical_json([Decimal("NaN")])


class TestStableHash:
    def test_is_sha256_hex(self) -> None:
        from pgsample.core.canonical import stable_hash

        digest = stable_hash({"a": 1})
        assert len(digest) == 64
        int(digest, 16)

    def test_equal_inputs_equal_hashes(self) -> None:
        from pgsample.core.canonical import stable_hash

        assert stable_hash([1, {"x": "y"}]) == stable_hash((1, {"x": "y"}))


class TestClosureFingerprint:
    def _row(self, index: int) -> SampleRow:
        return SampleRow(USERS, {"id": index, "joined": date(2024, 1, index + 1)}, RowIdentity(f"u{index}"))

    def test_row_order_irrelevant(self) -> None:
        from pgsample.core.canonical import closure_fingerprint

        a = Closure(tables={USERS: [self._row(0), self._row(1)]})
        b = Closure(tables={USERS: [self._row(1), self._row(0)]})

        assert closure_fingerprint(a) == closure_fingerprint(b)

    def test_payload_change_changes_fingerprint(self) -> None:
        from pgsample.core.canonical import closure_fingerprint

        changed = SampleRow(USERS, {"id": 0, "joined": date(2030, 1, 1)}, RowIdentity("u0"))
        a = Closure(tables={USERS: [self._row(0)]})
        b = Closure(tables={USERS: [changed]})

        assert closure_fingerprint(a) != closure_fingerprint(b)
