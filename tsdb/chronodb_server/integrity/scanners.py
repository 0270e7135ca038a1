"""
Reference scanners.

Each scanner answers "which documents still reference this target?" for
one relationship kind. They are pure reads and are called by the update
policies before and after a dangerous write.

Relationships:
    property      -> schemas (top-level and series attribute definitions)
    value type    -> properties
    value         -> schema default values, actual attribute rows
    schema        -> chronicles (direct assignment only)
    property      -> chronicles (attribute rows, filtered by schema dependency)
    series number -> chronicles (series rows, filtered by schema dependency)
    chronicle     -> child chronicles, series

Invariants:
    - Scanners never write
    - Results are sorted ids; limit turns a scan into an existence check
    - Scans are repeatable reads, not snapshots

How to change safely:
    - Every new reference field needs a scanner here and a policy hook
    - Keep the JSON paths in sync with the to_document() encodings
"""

from __future__ import annotations

import logging

from ..catalog.resolver import SchemaResolver
from ..store import ATTRIBUTES, CHRONICLES, PROPERTIES, SCHEMAS, SERIES, DocumentStore

logger = logging.getLogger(__name__)

_TOP_LEVEL_ATTRIBS = ", json_each(c.doc_json, '$.attribs') AS a"
_NESTED_ATTRIBS = (
    ", json_each(c.doc_json, '$.series') AS s, json_each(s.value, '$.attribs') AS a"
)


def _placeholders(values: list[str]) -> str:
    return ", ".join("?" for _ in values)


def _truncate(ids: list[str], limit: int | None) -> list[str]:
    ids = sorted(set(ids))
    return ids if limit is None else ids[:limit]


class ReferenceScanners:
    """Read-only reference queries over the document store."""

    def __init__(self, store: DocumentStore, resolver: SchemaResolver) -> None:
        self._store = store
        self._resolver = resolver

    async def _schemas_with_attribute(
        self, where: str, params: list, limit: int | None
    ) -> list[str]:
        top = await self._store.select_ids(SCHEMAS, where, params, joins=_TOP_LEVEL_ATTRIBS, limit=limit)
        if limit is not None and len(top) >= limit:
            return _truncate(top, limit)
        nested = await self._store.select_ids(SCHEMAS, where, params, joins=_NESTED_ATTRIBS, limit=limit)
        return _truncate(top + nested, limit)

    async def schemas_using_property(self, property_id: str, limit: int | None = None) -> list[str]:
        """Schemas with an attribute definition for the property, at any level."""
        return await self._schemas_with_attribute(
            "json_extract(a.value, '$.prop') = ?", [property_id], limit
        )

    async def properties_using_value_type(self, value_type_id: str, limit: int | None = None) -> list[str]:
        return await self._store.select_ids(
            PROPERTIES, "json_extract(c.doc_json, '$.type') = ?", [value_type_id], limit=limit
        )

    async def schemas_using_value(
        self, value_type_id: str, text: str, limit: int | None = None
    ) -> list[str]:
        """Schemas whose default value for a property of the value type is text."""
        props = await self.properties_using_value_type(value_type_id)
        if not props:
            return []
        return await self._schemas_with_attribute(
            f"json_extract(a.value, '$.prop') IN ({_placeholders(props)})"
            " AND json_extract(a.value, '$.val') = ?",
            [*props, text],
            limit,
        )

    async def attributes_using_value(
        self, value_type_id: str, text: str, limit: int | None = None
    ) -> list[str]:
        """Attribute rows holding text for a property of the value type."""
        props = await self.properties_using_value_type(value_type_id)
        if not props:
            return []
        return await self._store.select_ids(
            ATTRIBUTES,
            f"json_extract(c.doc_json, '$.prop') IN ({_placeholders(props)})"
            " AND json_extract(c.doc_json, '$.val') = ?",
            [*props, text],
            limit=limit,
        )

    async def chronicles_using_schema(self, schema_id: str, limit: int | None = None) -> list[str]:
        """Chronicles assigned this schema directly. Derived schemas are not followed."""
        return await self._store.select_ids(
            CHRONICLES, "json_extract(c.doc_json, '$.schema') = ?", [schema_id], limit=limit
        )

    async def chronicles_with_property(
        self, property_id: str, schema_id: str, limit: int | None = None
    ) -> list[str]:
        """Chronicles holding a value for the property whose schema depends on schema_id."""
        rows = await self._store.find(ATTRIBUTES, {"prop": property_id})
        return await self._filter_dependent(
            sorted({row.body["chron"] for row in rows}), schema_id, limit
        )

    async def chronicles_with_series(
        self, number: int, schema_id: str, limit: int | None = None
    ) -> list[str]:
        """Chronicles with a series of this number whose schema depends on schema_id."""
        rows = await self._store.find(SERIES, {"number": number})
        return await self._filter_dependent(
            sorted({row.body["chron"] for row in rows}), schema_id, limit
        )

    async def child_chronicles(self, chronicle_id: str, limit: int | None = None) -> list[str]:
        return await self._store.select_ids(
            CHRONICLES, "json_extract(c.doc_json, '$.parent') = ?", [chronicle_id], limit=limit
        )

    async def series_of_chronicle(self, chronicle_id: str, limit: int | None = None) -> list[str]:
        return await self._store.select_ids(
            SERIES, "json_extract(c.doc_json, '$.chron') = ?", [chronicle_id], limit=limit
        )

    async def effective_schema_id(self, chronicle_id: str) -> str | None:
        """Schema of the chronicle, inherited from the nearest ancestor that has one."""
        visited: set[str] = set()
        current: str | None = chronicle_id
        while current is not None and current not in visited:
            visited.add(current)
            doc = await self._store.get(CHRONICLES, current)
            if doc is None:
                return None
            if doc.get("schema") is not None:
                return doc["schema"]
            current = doc.get("parent")
        return None

    async def _filter_dependent(
        self, chronicle_ids: list[str], schema_id: str, limit: int | None
    ) -> list[str]:
        hits: list[str] = []
        for chronicle_id in chronicle_ids:
            effective = await self.effective_schema_id(chronicle_id)
            if effective is None:
                continue
            if schema_id in await self._resolver.base_chain_ids(effective):
                hits.append(chronicle_id)
                if limit is not None and len(hits) >= limit:
                    break
        return hits
