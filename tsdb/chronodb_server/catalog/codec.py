"""
Canonical encoding of schema definitions.

Attribute and series definitions are embedded in schema documents as
lists of small objects. The encoding has exactly two shapes per kind:

    attribute, erasing:   {"num": 3, "erasing": true}
    attribute, concrete:  {"num": 3, "prop": "<property id>", "val": "<text>"}
    series, erasing:      {"num": 1, "erasing": true}
    series, concrete:     {"num": 1, "desc": "...", "attribs": [...]}

Invariants:
    - Encoding never writes the erasing flag next to concrete keys
    - Decoding rejects any entry mixing the two shapes, even with null values
    - decode(encode(x)) == x for every definition list

How to change safely:
    - Stored schemas must stay decodable, only add optional keys
    - Property lookup errors surface as EncodingViolationError
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import EncodingViolationError, InvalidValueError, NotFoundError
from ..identity import id_of
from ..store import SCHEMAS
from .types import (
    AttributeDefinition,
    ConcreteAttribute,
    ConcreteSeries,
    ErasingAttribute,
    ErasingSeries,
    Property,
    Schema,
    SeriesDefinition,
)

logger = logging.getLogger(__name__)

PropertyLookup = Callable[[str], Awaitable[Property]]

_ATTRIBUTE_KEYS = ("prop", "val")
_SERIES_KEYS = ("desc", "attribs")


class SchemaCodec:
    """Encodes and decodes embedded schema definitions.

    Decoding needs the referenced properties, to parse default values with
    the right value type. They are resolved through an async lookup.
    """

    def __init__(self, lookup_property: PropertyLookup) -> None:
        self._lookup_property = lookup_property

    # --- Encoding ---

    def encode_attributes(
        self, definitions: list[AttributeDefinition] | tuple[AttributeDefinition, ...]
    ) -> list[dict[str, Any]]:
        encoded = []
        for definition in definitions:
            if isinstance(definition, ErasingAttribute):
                encoded.append({"num": definition.number, "erasing": True})
            else:
                encoded.append(
                    {
                        "num": definition.number,
                        "prop": id_of(definition.property.surrogate),
                        "val": definition.property.value_type.to_string(definition.value),
                    }
                )
        return encoded

    def encode_series(self, definitions: list[SeriesDefinition]) -> list[dict[str, Any]]:
        encoded = []
        for definition in definitions:
            if isinstance(definition, ErasingSeries):
                encoded.append({"num": definition.number, "erasing": True})
            else:
                encoded.append(
                    {
                        "num": definition.number,
                        "desc": definition.description,
                        "attribs": self.encode_attributes(definition.attributes),
                    }
                )
        return encoded

    def encode_schema(self, schema: Schema) -> dict[str, Any]:
        """Encode a schema layer as a full document."""
        doc: dict[str, Any] = {"name": schema.name}
        if schema.base is not None:
            doc["base"] = id_of(schema.base.surrogate)
        doc["attribs"] = self.encode_attributes(schema.attributes)
        doc["series"] = self.encode_series(schema.series)
        return doc

    # --- Decoding ---

    async def decode_attributes(
        self, entries: Any, schema_id: str | None = None
    ) -> list[AttributeDefinition]:
        """Decode attribute definition entries.

        Raises:
            EncodingViolationError: If an entry has an illegal shape
        """
        if not isinstance(entries, list):
            raise self._violation("attribute definitions must be a list", schema_id)
        definitions: list[AttributeDefinition] = []
        for entry in entries:
            number = self._number(entry, schema_id)
            if self._erasing(entry, _ATTRIBUTE_KEYS, schema_id):
                definitions.append(ErasingAttribute(number))
                continue
            missing = [key for key in _ATTRIBUTE_KEYS if key not in entry]
            if missing:
                raise self._violation(
                    f"attribute definition {number} lacks {', '.join(missing)}", schema_id
                )
            prop_id, text = entry["prop"], entry["val"]
            if not isinstance(prop_id, str) or not isinstance(text, str):
                raise self._violation(f"attribute definition {number} has bad prop or val", schema_id)
            try:
                prop = await self._lookup_property(prop_id)
            except NotFoundError as e:
                raise self._violation(
                    f"attribute definition {number} references missing property {prop_id}",
                    schema_id,
                ) from e
            except (InvalidValueError, EncodingViolationError, KeyError, TypeError, ValueError) as e:
                raise self._violation(
                    f"attribute definition {number} references malformed property {prop_id}: {e}",
                    schema_id,
                ) from e
            try:
                value = prop.value_type.scan(text)
            except InvalidValueError as e:
                raise self._violation(
                    f"attribute definition {number} has invalid value {text!r}", schema_id
                ) from e
            definitions.append(ConcreteAttribute(number, prop, value))
        return definitions

    async def decode_series(self, entries: Any, schema_id: str | None = None) -> list[SeriesDefinition]:
        """Decode series definition entries.

        Raises:
            EncodingViolationError: If an entry has an illegal shape
        """
        if not isinstance(entries, list):
            raise self._violation("series definitions must be a list", schema_id)
        definitions: list[SeriesDefinition] = []
        for entry in entries:
            number = self._number(entry, schema_id)
            if self._erasing(entry, _SERIES_KEYS, schema_id):
                definitions.append(ErasingSeries(number))
                continue
            missing = [key for key in _SERIES_KEYS if key not in entry]
            if missing:
                raise self._violation(
                    f"series definition {number} lacks {', '.join(missing)}", schema_id
                )
            if not isinstance(entry["desc"], str):
                raise self._violation(f"series definition {number} has bad desc", schema_id)
            attributes = await self.decode_attributes(entry["attribs"], schema_id)
            definitions.append(ConcreteSeries(number, entry["desc"], tuple(attributes)))
        return definitions

    def _number(self, entry: Any, schema_id: str | None) -> int:
        if not isinstance(entry, dict):
            raise self._violation(f"definition entry is not an object: {entry!r}", schema_id)
        number = entry.get("num")
        if isinstance(number, bool) or not isinstance(number, int) or number < 1:
            raise self._violation(f"definition has invalid num: {number!r}", schema_id)
        return number

    def _erasing(self, entry: dict[str, Any], concrete_keys: tuple[str, ...], schema_id: str | None) -> bool:
        erasing = entry.get("erasing", False)
        if not isinstance(erasing, bool):
            raise self._violation(f"definition {entry['num']} has non-boolean erasing flag", schema_id)
        if erasing:
            mixed = [key for key in concrete_keys if key in entry]
            if mixed:
                raise self._violation(
                    f"erasing definition {entry['num']} also carries {', '.join(mixed)}",
                    schema_id,
                )
        return erasing

    @staticmethod
    def _violation(message: str, schema_id: str | None) -> EncodingViolationError:
        logger.error(f"Schema encoding violation: {message}", extra={"schema_id": schema_id})
        return EncodingViolationError(
            f"Schema {schema_id or '<new>'}: {message}",
            collection=SCHEMAS,
            document_id=schema_id,
        )
