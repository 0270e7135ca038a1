"""
Unit tests for the schema definition codec.

Tests cover:
- Encoding shapes for erasing and concrete definitions
- Round trips through encode/decode
- Rejection of mixed or incomplete shapes
"""

import datetime

import pytest

from tsdb.chronodb_server.catalog.codec import SchemaCodec
from tsdb.chronodb_server.catalog.types import (
    ConcreteAttribute,
    ConcreteSeries,
    ErasingAttribute,
    ErasingSeries,
    Property,
    Schema,
    ValueType,
)
from tsdb.chronodb_server.catalog.values import ValueKind
from tsdb.chronodb_server.errors import EncodingViolationError, InvalidValueError, NotFoundError
from tsdb.chronodb_server.identity import EntityType, new_surrogate


class TestSchemaCodec:
    """Tests for SchemaCodec."""

    @pytest.fixture
    def ccy(self):
        """Currency property with a restricted value type."""
        currency = ValueType(
            "currency",
            ValueKind.NAME,
            {"CHF": "Swiss franc", "USD": "US dollar"},
            surrogate=new_surrogate(EntityType.VALUE_TYPE, "vt-ccy"),
        )
        return Property("Ccy", currency, surrogate=new_surrogate(EntityType.PROPERTY, "p-ccy"))

    @pytest.fixture
    def codec(self, ccy):
        """Codec resolving only the currency property."""

        async def lookup(property_id):
            if property_id == ccy.id:
                return ccy
            raise NotFoundError(f"Property not found: {property_id}")

        return SchemaCodec(lookup)

    def test_encode_erasing_attribute(self, codec):
        """Erasing entries carry only number and flag."""
        assert codec.encode_attributes([ErasingAttribute(3)]) == [{"num": 3, "erasing": True}]

    def test_encode_concrete_attribute(self, codec, ccy):
        """Concrete entries carry property id and text value, no flag."""
        encoded = codec.encode_attributes([ConcreteAttribute(1, ccy, "CHF")])

        assert encoded == [{"num": 1, "prop": "p-ccy", "val": "CHF"}]

    def test_encode_never_mixes_shapes(self, codec, ccy):
        """No encoded entry has the erasing flag next to concrete keys."""
        series = [
            ConcreteSeries(1, "daily", (ConcreteAttribute(2, ccy, "USD"), ErasingAttribute(3))),
            ErasingSeries(2),
        ]
        entries = codec.encode_series(series)
        entries += codec.encode_attributes([ErasingAttribute(1), ConcreteAttribute(2, ccy, "CHF")])
        nested = [a for e in entries for a in e.get("attribs", [])]

        for entry in entries + nested:
            if entry.get("erasing"):
                assert set(entry) == {"num", "erasing"}
            else:
                assert "erasing" not in entry

    @pytest.mark.asyncio
    async def test_attribute_round_trip(self, codec, ccy):
        """decode(encode(x)) == x for attribute definitions."""
        definitions = [ConcreteAttribute(1, ccy, "CHF"), ErasingAttribute(2), ConcreteAttribute(3, ccy, "USD")]

        decoded = await codec.decode_attributes(codec.encode_attributes(definitions))

        assert decoded == definitions

    @pytest.mark.asyncio
    async def test_date_default_round_trip(self):
        """DATE defaults decode back, a datetime default is refused up front."""
        day = ValueType("day", ValueKind.DATE, surrogate=new_surrogate(EntityType.VALUE_TYPE, "vt-day"))
        start = Property("Start", day, surrogate=new_surrogate(EntityType.PROPERTY, "p-start"))

        async def lookup(property_id):
            return start

        codec = SchemaCodec(lookup)
        definitions = [ConcreteAttribute(1, start, datetime.date(2020, 1, 2))]

        assert await codec.decode_attributes(codec.encode_attributes(definitions)) == definitions
        with pytest.raises(InvalidValueError):
            ConcreteAttribute(1, start, datetime.datetime(2020, 1, 2, 3, 4))

    @pytest.mark.asyncio
    async def test_series_round_trip(self, codec, ccy):
        """decode(encode(x)) == x for series definitions with nested attributes."""
        definitions = [
            ConcreteSeries(1, "closing price", (ConcreteAttribute(1, ccy, "USD"), ErasingAttribute(4))),
            ErasingSeries(2),
            ConcreteSeries(3, "volume"),
        ]

        decoded = await codec.decode_series(codec.encode_series(definitions))

        assert decoded == definitions

    @pytest.mark.asyncio
    async def test_explicit_false_erasing_flag_accepted(self, codec, ccy):
        """A concrete entry may carry erasing: false."""
        decoded = await codec.decode_attributes([{"num": 1, "erasing": False, "prop": "p-ccy", "val": "CHF"}])

        assert decoded == [ConcreteAttribute(1, ccy, "CHF")]

    @pytest.mark.asyncio
    async def test_erasing_with_concrete_key_rejected(self, codec):
        """Erasing entries must not carry prop or val."""
        with pytest.raises(EncodingViolationError, match="also carries prop"):
            await codec.decode_attributes([{"num": 1, "erasing": True, "prop": "p-ccy"}], "s1")

    @pytest.mark.asyncio
    async def test_erasing_with_null_concrete_key_rejected(self, codec):
        """A null-valued concrete key still counts as mixing shapes."""
        with pytest.raises(EncodingViolationError):
            await codec.decode_attributes([{"num": 1, "erasing": True, "val": None}])

    @pytest.mark.asyncio
    async def test_erasing_series_with_description_rejected(self, codec):
        """Erasing series entries must not carry desc or attribs."""
        with pytest.raises(EncodingViolationError, match="also carries desc"):
            await codec.decode_series([{"num": 1, "erasing": True, "desc": "x"}])

    @pytest.mark.asyncio
    async def test_concrete_missing_value_rejected(self, codec):
        """Concrete attribute entries need both prop and val."""
        with pytest.raises(EncodingViolationError, match="lacks val"):
            await codec.decode_attributes([{"num": 1, "prop": "p-ccy"}])

    @pytest.mark.asyncio
    async def test_concrete_series_missing_attribs_rejected(self, codec):
        """Concrete series entries need desc and attribs."""
        with pytest.raises(EncodingViolationError, match="lacks attribs"):
            await codec.decode_series([{"num": 1, "desc": "x"}])

    @pytest.mark.asyncio
    async def test_invalid_number_rejected(self, codec):
        """num must be a positive integer."""
        for entry in ({"erasing": True}, {"num": True, "erasing": True}, {"num": 0, "erasing": True}):
            with pytest.raises(EncodingViolationError, match="invalid num"):
                await codec.decode_attributes([entry])

    @pytest.mark.asyncio
    async def test_missing_property_rejected(self, codec):
        """A definition referencing a missing property is a violation."""
        with pytest.raises(EncodingViolationError, match="missing property"):
            await codec.decode_attributes([{"num": 1, "prop": "p-gone", "val": "x"}])

    @pytest.mark.asyncio
    async def test_malformed_property_rejected(self):
        """A property whose document cannot be loaded is a violation."""

        async def lookup(property_id):
            raise ValueError("Invalid value type tag: 'COMPLEX'")

        codec = SchemaCodec(lookup)
        with pytest.raises(EncodingViolationError, match="malformed property p-bad"):
            await codec.decode_attributes([{"num": 1, "prop": "p-bad", "val": "x"}], "s-1")

    @pytest.mark.asyncio
    async def test_disallowed_value_rejected(self, codec):
        """A default outside a restricted value type is a violation."""
        with pytest.raises(EncodingViolationError, match="invalid value"):
            await codec.decode_attributes([{"num": 1, "prop": "p-ccy", "val": "EUR"}])

    def test_encode_schema_document(self, codec, ccy):
        """encode_schema writes name, base and both definition lists."""
        base = Schema("B", surrogate=new_surrogate(EntityType.SCHEMA, "s-b"))
        schema = Schema("A", base=base, attributes=[ConcreteAttribute(1, ccy, "CHF")])

        assert codec.encode_schema(schema) == {
            "name": "A",
            "base": "s-b",
            "attribs": [{"num": 1, "prop": "p-ccy", "val": "CHF"}],
            "series": [],
        }
