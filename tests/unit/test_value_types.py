"""
Unit tests for value serializers and value types.

Tests cover:
- Serializer scan/to_string per representation tag
- Restricted value types
- Document encoding of value types
"""

import datetime

import pytest

from tsdb.chronodb_server.catalog.types import ValueType
from tsdb.chronodb_server.catalog.values import ValueKind, get_serializer
from tsdb.chronodb_server.errors import InvalidValueError
from tsdb.chronodb_server.identity import EntityType, new_surrogate


class TestSerializers:
    """Tests for built-in serializers."""

    def test_name_accepts_identifiers(self):
        """NAME accepts letter-led identifiers."""
        assert get_serializer(ValueKind.NAME).scan("CHF") == "CHF"
        assert get_serializer(ValueKind.NAME).scan("fx.rate-1_a") == "fx.rate-1_a"

    def test_name_rejects_invalid(self):
        """NAME rejects names starting with a digit or holding spaces."""
        serializer = get_serializer(ValueKind.NAME)
        with pytest.raises(InvalidValueError):
            serializer.scan("1abc")
        with pytest.raises(InvalidValueError):
            serializer.scan("a b")

    def test_number(self):
        """NUMBER parses floats and writes a parseable text."""
        serializer = get_serializer(ValueKind.NUMBER)
        assert serializer.scan("1.5") == 1.5
        assert serializer.scan(serializer.to_string(2)) == 2.0
        with pytest.raises(InvalidValueError):
            serializer.scan("abc")

    def test_integer_rejects_bool(self):
        """INTEGER does not accept booleans as integers."""
        with pytest.raises(InvalidValueError):
            get_serializer(ValueKind.INTEGER).to_string(True)

    def test_boolean(self):
        """BOOLEAN uses lowercase true/false."""
        serializer = get_serializer(ValueKind.BOOLEAN)
        assert serializer.to_string(True) == "true"
        assert serializer.scan("false") is False
        with pytest.raises(InvalidValueError):
            serializer.scan("yes")

    def test_date(self):
        """DATE uses ISO format."""
        serializer = get_serializer(ValueKind.DATE)
        assert serializer.scan("2024-02-29") == datetime.date(2024, 2, 29)
        assert serializer.to_string(datetime.date(2024, 1, 5)) == "2024-01-05"

    def test_date_rejects_datetime(self):
        """DATE refuses a datetime, whose ISO text would not scan back."""
        serializer = get_serializer(ValueKind.DATE)
        with pytest.raises(InvalidValueError, match="Invalid date"):
            serializer.to_string(datetime.datetime(2020, 1, 2, 3, 4))
        text = serializer.to_string(datetime.date(2020, 1, 2))
        assert serializer.scan(text) == datetime.date(2020, 1, 2)

    def test_type_tag(self):
        """TYPE accepts known tags only."""
        serializer = get_serializer(ValueKind.TYPE)
        assert serializer.scan("NUMBER") == "NUMBER"
        with pytest.raises(InvalidValueError):
            serializer.scan("COMPLEX")

    def test_value_kind_from_str(self):
        """Unknown tags are rejected."""
        assert ValueKind.from_str("TEXT") is ValueKind.TEXT
        with pytest.raises(ValueError, match="Invalid value type tag"):
            ValueKind.from_str("text")


class TestValueType:
    """Tests for ValueType."""

    def test_restricted_scan(self):
        """Restricted types only accept listed values."""
        currency = ValueType("currency", ValueKind.NAME, {"CHF": "Swiss franc", "USD": "US dollar"})

        assert currency.restricted
        assert currency.scan("CHF") == "CHF"
        with pytest.raises(InvalidValueError, match="not allowed"):
            currency.scan("EUR")
        with pytest.raises(InvalidValueError, match="not allowed"):
            currency.to_string("EUR")

    def test_restricted_values_validated(self):
        """Restricted keys must be valid for the representation."""
        with pytest.raises(InvalidValueError):
            ValueType("bad", ValueKind.INTEGER, {"one": "not a number"})

    def test_unrestricted_document_has_no_values(self):
        """Unrestricted types store no values key."""
        doc = ValueType("text", ValueKind.TEXT).to_document()

        assert doc == {"name": "text", "type": "TEXT"}

    def test_document_round_trip(self):
        """from_document rebuilds the stored value type."""
        original = ValueType(
            "currency",
            ValueKind.NAME,
            {"CHF": "Swiss franc"},
            surrogate=new_surrogate(EntityType.VALUE_TYPE, "vt1"),
        )

        restored = ValueType.from_document("vt1", original.to_document())

        assert restored == original

    def test_empty_name_rejected(self):
        """Value types need a name."""
        with pytest.raises(InvalidValueError):
            ValueType("", ValueKind.TEXT)
