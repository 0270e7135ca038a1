"""
Integration tests for dangerous writes against a real store.

Tests cover:
- Refused deletes leave documents byte-for-byte unchanged
- Base schemas are only guarded against direct chronicle use
- References created during the window trigger compensation
"""

import pytest

from tsdb.chronodb_server.catalog.types import (
    Chronicle,
    ConcreteAttribute,
    Property,
    Schema,
    ValueType,
)
from tsdb.chronodb_server.catalog.values import ValueKind
from tsdb.chronodb_server.database import ChronicleDatabase
from tsdb.chronodb_server.errors import IntegrityViolationError
from tsdb.chronodb_server.integrity.protocol import IntegrityWindow, ProtocolState
from tsdb.chronodb_server.store import CHRONICLES, PROPERTIES, SCHEMAS, VALUE_TYPES


async def build_currency_catalog(db):
    """Value type 'currency' used by property Ccy, defaulted to CHF in schema S1."""
    currency = await db.value_types.create(
        ValueType("currency", ValueKind.NAME, {"CHF": "Swiss franc", "USD": "US dollar"})
    )
    ccy = await db.properties.create(Property("Ccy", currency))
    s1 = await db.schemas.create(Schema("S1", attributes=[ConcreteAttribute(1, ccy, "CHF")]))
    return currency, ccy, s1


class WindowHook(IntegrityWindow):
    """Window running a coroutine factory while it is open, like a racing writer."""

    def __init__(self, during):
        super().__init__(0, 0)
        self.during = during
        self.calls = 0

    async def wait(self, delay_ms):
        self.calls += 1
        await self.during()


class TestCurrencyScenario:
    """Deleting entities still referenced through schemas."""

    @pytest.mark.asyncio
    async def test_delete_value_type_used_by_property(self, database):
        """The value type delete fails and its document is unchanged."""
        await database.open()
        currency, _, _ = await build_currency_catalog(database)
        before = await database.store.get_raw(VALUE_TYPES, currency.id)

        with pytest.raises(IntegrityViolationError, match="used by properties") as exc_info:
            await database.value_types.delete(currency)

        assert exc_info.value.target == currency.id
        assert await database.store.get_raw(VALUE_TYPES, currency.id) == before

    @pytest.mark.asyncio
    async def test_delete_property_used_by_schema(self, database):
        """The property delete fails while S1 defines an attribute with it."""
        await database.open()
        _, ccy, s1 = await build_currency_catalog(database)
        before = await database.store.get_raw(PROPERTIES, ccy.id)

        with pytest.raises(IntegrityViolationError) as exc_info:
            await database.properties.delete(ccy)

        assert exc_info.value.referenced_by == [s1.id]
        assert await database.store.get_raw(PROPERTIES, ccy.id) == before

    @pytest.mark.asyncio
    async def test_remove_value_used_as_schema_default(self, database):
        """Removing CHF from the restricted list fails while S1 defaults to it."""
        await database.open()
        currency, _, _ = await build_currency_catalog(database)
        before = await database.store.get_raw(VALUE_TYPES, currency.id)

        currency.values = {"USD": "US dollar"}
        with pytest.raises(IntegrityViolationError, match="used as default"):
            await database.value_types.update(currency)

        assert await database.store.get_raw(VALUE_TYPES, currency.id) == before

    @pytest.mark.asyncio
    async def test_successful_delete_leaves_no_references(self, database):
        """After the schema and property go, the value type can be deleted."""
        await database.open()
        currency, ccy, s1 = await build_currency_catalog(database)

        await database.schemas.delete(s1)
        await database.properties.delete(ccy)
        outcome = await database.value_types.delete(currency)

        assert outcome.final_state is ProtocolState.FINALIZED
        assert outcome.delay_ms == 0
        assert await database.scanners.properties_using_value_type(currency.id) == []
        assert await database.store.get(VALUE_TYPES, currency.id) is None


class TestBaseSchemaScenario:
    """Schema deletes only consider direct chronicle assignments."""

    @pytest.mark.asyncio
    async def test_delete_base_schema_with_derived_in_use(self, database):
        """B can be deleted even though A (based on B) is used by a chronicle."""
        await database.open()
        b = await database.schemas.create(Schema("B"))
        a = await database.schemas.create(Schema("A", base=b))
        await database.chronicles.create(Chronicle("fx", schema_id=a.id))

        outcome = await database.schemas.delete(b)

        assert outcome.final_state is ProtocolState.FINALIZED
        assert await database.scanners.chronicles_using_schema(b.id) == []
        chain = await database.schemas.get(a.id)
        assert chain.ids() == [a.id]
        assert chain.head.base is None

    @pytest.mark.asyncio
    async def test_delete_schema_used_directly(self, database):
        """A schema assigned to a chronicle cannot be deleted."""
        await database.open()
        b = await database.schemas.create(Schema("B"))
        a = await database.schemas.create(Schema("A", base=b))
        fx = await database.chronicles.create(Chronicle("fx", schema_id=a.id))
        before = await database.store.get_raw(SCHEMAS, a.id)

        with pytest.raises(IntegrityViolationError) as exc_info:
            await database.schemas.delete(a)

        assert exc_info.value.referenced_by == [fx.id]
        assert await database.store.get_raw(SCHEMAS, a.id) == before


class TestRacingWriter:
    """References created between apply and post-check."""

    @pytest.mark.asyncio
    async def test_property_created_during_window_restores_value_type(self, config):
        """A property appearing during the window makes the delete compensate."""
        state = {}

        async def racing_writer():
            await state["db"].store.insert(
                PROPERTIES, {"name": "Late", "type": state["vt"].id, "indexed": False}
            )

        window = WindowHook(racing_writer)
        async with ChronicleDatabase(config, window=window) as database:
            currency = await database.value_types.create(ValueType("code", ValueKind.NAME))
            state.update(db=database, vt=currency)
            before = await database.store.get_raw(VALUE_TYPES, currency.id)

            with pytest.raises(IntegrityViolationError, match="used by properties"):
                await database.value_types.delete(currency)

            assert window.calls == 1
            assert await database.store.get_raw(VALUE_TYPES, currency.id) == before
            assert (await database.value_types.get(currency.id)).name == "code"

    @pytest.mark.asyncio
    async def test_chronicle_assigned_during_window_restores_schema(self, config):
        """A chronicle assigned during the window makes the schema delete compensate."""
        state = {}

        async def racing_writer():
            await state["db"].store.insert(CHRONICLES, {"name": "late", "schema": state["schema"].id})

        async with ChronicleDatabase(config, window=WindowHook(racing_writer)) as database:
            schema = await database.schemas.create(Schema("S"))
            state.update(db=database, schema=schema)
            before = await database.store.get_raw(SCHEMAS, schema.id)

            with pytest.raises(IntegrityViolationError):
                await database.schemas.delete(schema)

            assert await database.store.get_raw(SCHEMAS, schema.id) == before
