"""
Update policies.

Policies are the will_delete/will_update hooks the integrity protocol
runs before and after a dangerous write. Each hook raises
IntegrityViolationError when the write would orphan a reference and
returns quietly otherwise. Hooks read the current store, so running
one again after the window sees references created meanwhile.

Invariants:
    - Hooks never write
    - Hooks are safe to call twice with identical arguments
    - A violation names the target and the first referencing ids found

How to change safely:
    - Keep scans limited, a violation only needs one witness
    - Schema delete deliberately ignores derived schemas and their chronicles
"""

from __future__ import annotations

import logging

from ..catalog.types import EffectiveSchema, Property, ValueType
from ..errors import IntegrityViolationError
from ..store import SERIES, DocumentStore
from .scanners import ReferenceScanners

logger = logging.getLogger(__name__)

WITNESS_LIMIT = 5


def _violation(message: str, target: str | None, referenced_by: list[str]) -> IntegrityViolationError:
    logger.info(
        f"Integrity check refused: {message}",
        extra={"target": target, "referenced_by": referenced_by},
    )
    return IntegrityViolationError(message, target=target, referenced_by=referenced_by)


class SchemaUpdatePolicy:
    """Hooks guarding value types, properties and schemas."""

    def __init__(self, scanners: ReferenceScanners) -> None:
        self._scanners = scanners

    async def will_delete_value_type(self, value_type: ValueType) -> None:
        hits = await self._scanners.properties_using_value_type(value_type.id, limit=WITNESS_LIMIT)
        if hits:
            raise _violation(
                f"Value type {value_type.name} is used by properties", value_type.id, hits
            )

    async def will_delete_value(self, value_type: ValueType, text: str) -> None:
        """Refuse removing a restricted value still used as actual or default value."""
        actual = await self._scanners.attributes_using_value(value_type.id, text, limit=WITNESS_LIMIT)
        if actual:
            raise _violation(
                f"Value {text!r} of {value_type.name} is used by attribute values",
                value_type.id,
                actual,
            )
        defaults = await self._scanners.schemas_using_value(value_type.id, text, limit=WITNESS_LIMIT)
        if defaults:
            raise _violation(
                f"Value {text!r} of {value_type.name} is used as default by schemas",
                value_type.id,
                defaults,
            )

    async def will_delete_property(self, prop: Property) -> None:
        hits = await self._scanners.schemas_using_property(prop.id, limit=WITNESS_LIMIT)
        if hits:
            raise _violation(f"Property {prop.name} is used by schemas", prop.id, hits)

    async def will_delete_schema(self, schema_id: str, name: str) -> None:
        hits = await self._scanners.chronicles_using_schema(schema_id, limit=WITNESS_LIMIT)
        if hits:
            raise _violation(f"Schema {name} is used by chronicles", schema_id, hits)

    async def will_update_schema(
        self, schema_id: str, name: str, before: EffectiveSchema, after: EffectiveSchema
    ) -> None:
        """Refuse removing definitions chronicles still hold data for.

        An attribute definition is removed when its number disappears or
        now names another property. A series definition is removed when
        its number disappears.
        """
        for number, definition in sorted(before.attributes.items()):
            kept = after.attributes.get(number)
            if kept is not None and kept.property.id == definition.property.id:
                continue
            hits = await self._scanners.chronicles_with_property(
                definition.property.id, schema_id, limit=WITNESS_LIMIT
            )
            if hits:
                raise _violation(
                    f"Schema {name} drops attribute {number} ({definition.property.name}) "
                    "still valued by chronicles",
                    schema_id,
                    hits,
                )
        for number in sorted(set(before.series) - set(after.series)):
            hits = await self._scanners.chronicles_with_series(number, schema_id, limit=WITNESS_LIMIT)
            if hits:
                raise _violation(
                    f"Schema {name} drops series {number} still present in chronicles",
                    schema_id,
                    hits,
                )


class ChronicleUpdatePolicy:
    """Hooks guarding chronicles and series."""

    def __init__(self, scanners: ReferenceScanners, store: DocumentStore) -> None:
        self._scanners = scanners
        self._store = store

    async def will_delete_chronicle(self, chronicle_id: str, name: str) -> None:
        children = await self._scanners.child_chronicles(chronicle_id, limit=WITNESS_LIMIT)
        if children:
            raise _violation(f"Chronicle {name} has child chronicles", chronicle_id, children)
        series = await self._scanners.series_of_chronicle(chronicle_id, limit=WITNESS_LIMIT)
        if series:
            raise _violation(f"Chronicle {name} has series", chronicle_id, series)

    async def will_delete_series(self, series_id: str) -> None:
        doc = await self._store.get(SERIES, series_id)
        if doc is not None and doc.get("values"):
            raise _violation(f"Series {series_id} still holds values", series_id, [series_id])
