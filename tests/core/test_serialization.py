"""Tests for JSON normalisation of step results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum

import pytest

from hris_jobs.core.serialization import dumps, json_default, to_jsonable


class Color(str, Enum):
    RED = "red"


@dataclass
class Point:
    x: int
    y: int


class TestJsonDefault:
    """Tests for json_default."""

    def test_decimal_as_string(self):
        """Test Decimal serializes as its exact string."""
        assert json_default(Decimal("4800000.00")) == "4800000.00"

    def test_datetime_and_date(self):
        """Test datetimes and dates serialize as ISO 8601."""
        assert json_default(datetime(2025, 1, 15, tzinfo=UTC)) == "2025-01-15T00:00:00+00:00"
        assert json_default(date(2025, 1, 31)) == "2025-01-31"

    def test_dataclass(self):
        """Test dataclasses serialize as dicts."""
        assert json_default(Point(1, 2)) == {"x": 1, "y": 2}

    def test_set(self):
        """Test sets serialize as lists."""
        assert sorted(json_default({"b", "a"})) == ["a", "b"]

    def test_unknown_type_raises(self):
        """Test unsupported types raise TypeError."""
        with pytest.raises(TypeError):
            json_default(object())


class TestToJsonable:
    """Tests for to_jsonable and dumps."""

    def test_none(self):
        """Test None passes through."""
        assert to_jsonable(None) is None

    def test_nested(self):
        """Test nested containers are normalised recursively."""
        value = {"net": Decimal("1.5"), "color": Color.RED, "items": (1, 2)}
        assert to_jsonable(value) == {"net": "1.5", "color": "red", "items": [1, 2]}

    def test_dumps_matches_to_jsonable(self):
        """Test dumps uses the same conversions."""
        assert dumps({"a": Decimal("2")}) == '{"a": "2"}'
