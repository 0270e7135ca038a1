"""
Integration tests for catalog entity operations.

Tests cover:
- Bootstrap of built-in value types and properties
- Value type, property and schema lifecycle
- Chronicle attributes, defaults and lookups
- Series values
- Authorization and closed-database errors
"""

import dataclasses

import pytest

from tsdb.chronodb_server.auth import ReadOnlyAuthorization
from tsdb.chronodb_server.catalog.types import (
    Chronicle,
    ConcreteAttribute,
    ConcreteSeries,
    Property,
    Schema,
    Series,
    ValueType,
)
from tsdb.chronodb_server.catalog.values import ValueKind
from tsdb.chronodb_server.database import ChronicleDatabase, DatabaseClosedError
from tsdb.chronodb_server.errors import (
    DuplicateNameError,
    IntegrityViolationError,
    InvalidValueError,
    NotFoundError,
    PermissionDeniedError,
)
from tsdb.chronodb_server.store import ATTRIBUTES, VALUE_TYPES


async def build_priced_chronicle(db):
    """Chronicle 'fx' with schema Prices: attribute Ccy=CHF and series 1 (close)."""
    currency = await db.value_types.create(
        ValueType("currency", ValueKind.NAME, {"CHF": "Swiss franc", "USD": "US dollar"})
    )
    ccy = await db.properties.create(Property("Ccy", currency))
    schema = await db.schemas.create(
        Schema(
            "Prices",
            attributes=[ConcreteAttribute(1, ccy, "CHF")],
            series=[ConcreteSeries(1, "close")],
        )
    )
    fx = await db.chronicles.create(Chronicle("fx", "Foreign exchange", schema_id=schema.id))
    return currency, ccy, schema, fx


class TestBootstrap:
    """Tests for built-in catalog entries."""

    @pytest.mark.asyncio
    async def test_bootstrap_creates_builtins_once(self, config):
        """Opening twice with bootstrap enabled creates each built-in once."""
        config.integrity = dataclasses.replace(config.integrity, bootstrap=True)

        async with ChronicleDatabase(config) as db:
            names = [vt.name for vt in await db.value_types.list()]
        async with ChronicleDatabase(config) as db:
            assert [vt.name for vt in await db.value_types.list()] == names
            props = {p.name: p for p in await db.properties.list()}

        assert names == ["binary", "name", "timedomain", "type"]
        assert sorted(props) == ["Calendar", "Sparsity", "Symbol", "Type"]
        assert props["Calendar"].value_type.name == "timedomain"
        assert "daily" in props["Calendar"].value_type.values


class TestValueTypesAndProperties:
    """Value type and property lifecycle."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, database):
        """Created entities are persisted and loadable by id and name."""
        await database.open()
        currency = await database.value_types.create(ValueType("currency", ValueKind.NAME, {"CHF": ""}))
        ccy = await database.properties.create(Property("Ccy", currency, indexed=True))

        loaded = await database.properties.get(ccy.id)

        assert loaded.name == "Ccy"
        assert loaded.indexed is True
        assert loaded.value_type.id == currency.id
        assert (await database.value_types.find("currency")).values == {"CHF": ""}
        assert await database.value_types.find("nope") is None

    @pytest.mark.asyncio
    async def test_duplicate_name(self, database):
        """Value type names are unique."""
        await database.open()
        await database.value_types.create(ValueType("code", ValueKind.NAME))

        with pytest.raises(DuplicateNameError):
            await database.value_types.create(ValueType("code", ValueKind.TEXT))

    @pytest.mark.asyncio
    async def test_get_missing(self, database):
        """Unknown ids raise NotFoundError."""
        await database.open()

        with pytest.raises(NotFoundError):
            await database.value_types.get("missing")

    @pytest.mark.asyncio
    async def test_property_needs_persisted_value_type(self, database):
        """A property cannot reference a value type still in construction."""
        await database.open()

        with pytest.raises(InvalidValueError, match="not persisted"):
            await database.properties.create(Property("Ccy", ValueType("currency", ValueKind.NAME)))

    @pytest.mark.asyncio
    async def test_update_cannot_change_tag(self, database):
        """The tag of a stored value type is fixed."""
        await database.open()
        code = await database.value_types.create(ValueType("code", ValueKind.NAME))

        code.kind = ValueKind.TEXT
        with pytest.raises(InvalidValueError, match="cannot change"):
            await database.value_types.update(code)

    @pytest.mark.asyncio
    async def test_adding_values_is_a_plain_update(self, database):
        """Adding restricted values needs no integrity protocol."""
        await database.open()
        currency, _, _, _ = await build_priced_chronicle(database)

        currency.values = {**currency.values, "EUR": "Euro"}
        outcome = await database.value_types.update(currency)

        assert outcome is None
        assert sorted((await database.value_types.get(currency.id)).values) == ["CHF", "EUR", "USD"]

    @pytest.mark.asyncio
    async def test_remove_unused_value(self, database):
        """A value nobody uses can be removed."""
        await database.open()
        currency, _, _, _ = await build_priced_chronicle(database)

        currency.values = {"CHF": "Swiss franc"}
        outcome = await database.value_types.update(currency)

        assert outcome is not None
        assert (await database.value_types.get(currency.id)).values == {"CHF": "Swiss franc"}

    @pytest.mark.asyncio
    async def test_remove_value_held_by_attribute(self, database):
        """A value stored on a chronicle cannot be removed."""
        await database.open()
        currency, ccy, _, fx = await build_priced_chronicle(database)
        await database.chronicles.set_attribute(fx, ccy, "USD")

        currency.values = {"CHF": "Swiss franc"}
        with pytest.raises(IntegrityViolationError, match="attribute values"):
            await database.value_types.update(currency)

        assert "USD" in (await database.value_types.get(currency.id)).values

    @pytest.mark.asyncio
    async def test_rename_property(self, database):
        """Renaming is a plain write."""
        await database.open()
        _, ccy, schema, _ = await build_priced_chronicle(database)

        await database.properties.rename(ccy, "Currency")

        assert (await database.properties.get(ccy.id)).name == "Currency"
        chain = await database.schemas.get(schema.id)
        assert chain.head.attributes[0].property.name == "Currency"


class TestSchemas:
    """Schema lifecycle."""

    @pytest.mark.asyncio
    async def test_create_resolves_chain(self, database):
        """A derived schema resolves with its base."""
        await database.open()
        _, ccy, prices, _ = await build_priced_chronicle(database)
        derived = await database.schemas.create(
            Schema("UsdPrices", base=prices, attributes=[ConcreteAttribute(1, ccy, "USD")])
        )

        chain = await database.schemas.get(derived.id)

        assert chain.ids() == [derived.id, prices.id]
        assert chain.effective().attributes[1].value == "USD"
        assert sorted(chain.effective().series) == [1]
        assert [c.head.name for c in await database.schemas.list()] == ["Prices", "UsdPrices"]

    @pytest.mark.asyncio
    async def test_update_dropping_valued_attribute_refused(self, database):
        """Removing an attribute a chronicle holds a value for is refused."""
        await database.open()
        _, ccy, prices, fx = await build_priced_chronicle(database)
        await database.chronicles.set_attribute(fx, ccy, "USD")

        prices.attributes = []
        with pytest.raises(IntegrityViolationError, match="drops attribute 1"):
            await database.schemas.update(prices)

        chain = await database.schemas.get(prices.id)
        assert sorted(chain.effective().attributes) == [1]

    @pytest.mark.asyncio
    async def test_update_dropping_used_series_refused(self, database):
        """Removing a series definition a chronicle has a series for is refused."""
        await database.open()
        _, _, prices, fx = await build_priced_chronicle(database)
        await database.series.create(Series(fx.id, 1))

        prices.series = []
        with pytest.raises(IntegrityViolationError, match="drops series 1"):
            await database.schemas.update(prices)

    @pytest.mark.asyncio
    async def test_update_unused_definitions(self, database):
        """Definitions no chronicle uses can be removed and renamed."""
        await database.open()
        _, _, prices, _ = await build_priced_chronicle(database)

        prices.name = "Quotes"
        prices.attributes = []
        await database.schemas.update(prices)

        chain = await database.schemas.find("Quotes")
        assert chain is not None
        assert chain.effective().attributes == {}

    @pytest.mark.asyncio
    async def test_update_base_cycle_refused(self, database):
        """A schema cannot become based on a schema derived from it."""
        await database.open()
        base = await database.schemas.create(Schema("Base"))
        derived = await database.schemas.create(Schema("Derived", base=base))

        base.base = derived
        with pytest.raises(InvalidValueError, match="based on itself"):
            await database.schemas.update(base)


class TestChronicles:
    """Chronicle tree and attribute values."""

    @pytest.mark.asyncio
    async def test_attribute_default_and_override(self, database):
        """Unset attributes fall back to the schema default."""
        await database.open()
        _, ccy, _, fx = await build_priced_chronicle(database)

        default = await database.chronicles.get_attribute(fx, ccy)
        assert default.value == "CHF"
        assert default.id is None

        await database.chronicles.set_attribute(fx, ccy, "USD", "quoted in dollars")
        await database.chronicles.set_attribute(fx, ccy, "USD", "still dollars")

        stored = await database.chronicles.get_attribute(fx, ccy)
        assert stored.value == "USD"
        assert stored.description == "still dollars"
        assert await database.store.count(ATTRIBUTES) == 1
        assert [a.value for a in await database.chronicles.get_attributes(fx)] == ["USD"]

    @pytest.mark.asyncio
    async def test_child_inherits_schema(self, database):
        """Children without a schema use the nearest ancestor's schema."""
        await database.open()
        _, ccy, prices, fx = await build_priced_chronicle(database)
        eur = await database.chronicles.create(Chronicle("eur", parent_id=fx.id))

        assert (await database.chronicles.effective_schema(eur)).head.id == prices.id
        await database.chronicles.set_attribute(eur, ccy, "USD")
        assert [c.name for c in await database.chronicles.children(fx.id)] == ["eur"]
        assert (await database.chronicles.find("eur", parent_id=fx.id)).id == eur.id
        assert await database.chronicles.find("eur") is None

    @pytest.mark.asyncio
    async def test_attribute_needs_schema_definition(self, database):
        """A property the schema does not define cannot be set."""
        await database.open()
        _, _, _, fx = await build_priced_chronicle(database)
        code = await database.value_types.create(ValueType("code", ValueKind.NAME))
        isin = await database.properties.create(Property("Isin", code))

        with pytest.raises(InvalidValueError, match="not defined"):
            await database.chronicles.set_attribute(fx, isin, "CH0012")

    @pytest.mark.asyncio
    async def test_disallowed_value(self, database):
        """Restricted value types reject unknown values."""
        await database.open()
        _, ccy, _, fx = await build_priced_chronicle(database)

        with pytest.raises(InvalidValueError, match="not allowed"):
            await database.chronicles.set_attribute(fx, ccy, "EUR")

    @pytest.mark.asyncio
    async def test_find_by_attribute(self, database):
        """Chronicles can be looked up by attribute value."""
        await database.open()
        _, ccy, prices, fx = await build_priced_chronicle(database)
        gold = await database.chronicles.create(Chronicle("gold", schema_id=prices.id))
        await database.chronicles.set_attribute(fx, ccy, "USD")
        await database.chronicles.set_attribute(gold, ccy, "CHF")

        found = await database.chronicles.find_by_attribute(ccy, "USD")

        assert [c.name for c in found] == ["fx"]

    @pytest.mark.asyncio
    async def test_sibling_names_unique(self, database):
        """Two top-level chronicles cannot share a name."""
        await database.open()
        await database.chronicles.create(Chronicle("fx"))

        with pytest.raises(DuplicateNameError):
            await database.chronicles.create(Chronicle("fx"))

    @pytest.mark.asyncio
    async def test_delete_with_children_refused(self, database):
        """A chronicle with children cannot be deleted."""
        await database.open()
        _, _, _, fx = await build_priced_chronicle(database)
        await database.chronicles.create(Chronicle("eur", parent_id=fx.id))

        with pytest.raises(IntegrityViolationError, match="child chronicles"):
            await database.chronicles.delete(fx)

    @pytest.mark.asyncio
    async def test_delete_removes_attribute_values(self, database):
        """Deleting a chronicle removes its attribute rows."""
        await database.open()
        _, ccy, _, fx = await build_priced_chronicle(database)
        await database.chronicles.set_attribute(fx, ccy, "USD")

        await database.chronicles.delete(fx)

        assert await database.store.count(ATTRIBUTES) == 0
        with pytest.raises(NotFoundError):
            await database.chronicles.get(fx.id)


class TestSeries:
    """Series and their values."""

    @pytest.mark.asyncio
    async def test_series_number_must_be_defined(self, database):
        """Only series numbers the schema defines can be created."""
        await database.open()
        _, _, _, fx = await build_priced_chronicle(database)

        with pytest.raises(InvalidValueError):
            await database.series.create(Series(fx.id, 7))

    @pytest.mark.asyncio
    async def test_values(self, database):
        """Values are merged, ranged and removed by NaN."""
        await database.open()
        _, _, _, fx = await build_priced_chronicle(database)
        close = await database.series.create(Series(fx.id, 1))

        assert await database.series.get_range(close) is None
        await database.series.update_values(close, {10: 1.5, 12: 1.7, 11: 1.6})
        assert await database.series.get_range(close) == (10, 12)
        assert await database.series.get_values(close, 11) == {11: 1.6, 12: 1.7}
        assert await database.series.get_first(close, after=11) == (11, 1.6)
        assert await database.series.get_last(close, before=11) == (11, 1.6)

        await database.series.update_values(close, {12: float("nan")})
        assert await database.series.get_range(close) == (10, 11)
        assert await database.series.delete_value(close, 10) is True
        assert await database.series.delete_value(close, 10) is False
        assert (await database.series.get(close.id)).first == 11

    @pytest.mark.asyncio
    async def test_non_finite_and_non_numeric_values_rejected(self, database):
        """Infinite or non-numeric values raise and leave the series unchanged."""
        await database.open()
        _, _, _, fx = await build_priced_chronicle(database)
        close = await database.series.create(Series(fx.id, 1))
        await database.series.update_values(close, {1: 1.0})

        for bad in (float("inf"), float("-inf"), "abc", None):
            with pytest.raises(InvalidValueError):
                await database.series.update_values(close, {1: 9.0, 2: bad})

        assert await database.series.get_values(close) == {1: 1.0}
        assert await database.series.get_range(close) == (1, 1)

    @pytest.mark.asyncio
    async def test_set_range(self, database):
        """set_range drops values outside the bounds."""
        await database.open()
        _, _, _, fx = await build_priced_chronicle(database)
        close = await database.series.create(Series(fx.id, 1))
        await database.series.update_values(close, {t: float(t) for t in range(1, 11)})

        dropped = await database.series.set_range(close, 3, 5)

        assert dropped == 7
        assert await database.series.get_values(close) == {3: 3.0, 4: 4.0, 5: 5.0}

    @pytest.mark.asyncio
    async def test_delete_series_with_values_refused(self, database):
        """A series holding values cannot be deleted, an emptied one can."""
        await database.open()
        _, _, _, fx = await build_priced_chronicle(database)
        close = await database.series.create(Series(fx.id, 1))
        await database.series.update_values(close, {1: 1.0})

        with pytest.raises(IntegrityViolationError, match="holds values"):
            await database.series.delete(close)
        with pytest.raises(IntegrityViolationError, match="has series"):
            await database.chronicles.delete(fx)

        await database.series.delete_value(close, 1)
        await database.series.delete(close)
        assert await database.series.list(fx.id) == []


class TestAccessControl:
    """Authorization and lifecycle errors."""

    @pytest.mark.asyncio
    async def test_read_only_refuses_writes(self, config):
        """ReadOnlyAuthorization allows reads and refuses creates."""
        async with ChronicleDatabase(config, auth=ReadOnlyAuthorization()) as db:
            assert await db.value_types.list() == []
            with pytest.raises(PermissionDeniedError):
                await db.value_types.create(ValueType("code", ValueKind.NAME))
            assert await db.store.count(VALUE_TYPES) == 0

    @pytest.mark.asyncio
    async def test_closed_database(self, database):
        """Access before open and after close raises DatabaseClosedError."""
        with pytest.raises(DatabaseClosedError):
            database.value_types

        await database.open()
        await database.close()

        with pytest.raises(DatabaseClosedError):
            database.schemas

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, database):
        """Closing an unopened or already closed database does nothing."""
        await database.close()
        assert not database.is_open

        await database.open()
        assert database.is_open
        await database.close()
        await database.close()
        assert not database.is_open
