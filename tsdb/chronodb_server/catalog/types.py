"""
Core type definitions for the catalog.

This module defines the entities stored in the catalog:
- ValueType: representation tag plus optional restricted value list
- Property: named attribute slot typed by a value type
- Schema: attribute and series definitions with an optional base schema
- Chronicle: node of the chronicle tree, optionally bound to a schema
- Series: time-indexed numeric values of a chronicle
- Attribute: actual value of a property on a chronicle

Attribute and series definitions are explicit sum types. An erasing
definition only carries its number and removes whatever a base schema
defined under that number. A concrete definition carries every field.

Invariants:
    - A definition is erasing or concrete, never both
    - Definition numbers are positive; order is positional, not keyed
    - Restricted value types store their values keyed by the text form
    - Entities reference each other by id, except a property's value type

How to change safely:
    - Document field names in to_document() are the storage contract
    - Keep EffectiveSchema merge rules in sync with SchemaUpdatePolicy
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from ..errors import InvalidValueError
from ..identity import EntityType, Surrogate, id_of, new_surrogate
from .values import ValueKind, get_serializer


def _surrogate_factory(entity_type: EntityType):
    return lambda: new_surrogate(entity_type)


def _check_number(number: int) -> None:
    if isinstance(number, bool) or not isinstance(number, int) or number < 1:
        raise InvalidValueError(f"Definition number must be a positive integer: {number!r}", value=number)


@dataclass
class ValueType:
    """Type of attribute values.

    Attributes:
        name: Unique value type name
        kind: Representation tag
        values: Allowed values and their descriptions, None if unrestricted
        surrogate: Identity
    """

    name: str
    kind: ValueKind
    values: dict[str, str] | None = None
    surrogate: Surrogate = field(default_factory=_surrogate_factory(EntityType.VALUE_TYPE))

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidValueError("Value type name must not be empty")
        if self.values is not None:
            serializer = get_serializer(self.kind)
            for text in self.values:
                serializer.scan(text)

    @property
    def id(self) -> str | None:
        return self.surrogate.id

    @property
    def restricted(self) -> bool:
        return self.values is not None

    def scan(self, text: str) -> Any:
        """Parse stored text into a value.

        Raises:
            InvalidValueError: If the text is malformed or not an allowed value
        """
        value = get_serializer(self.kind).scan(text)
        self._check_allowed(text)
        return value

    def to_string(self, value: Any) -> str:
        text = get_serializer(self.kind).to_string(value)
        self._check_allowed(text)
        return text

    def _check_allowed(self, text: str) -> None:
        if self.values is not None and text not in self.values:
            raise InvalidValueError(
                f"Value {text!r} is not allowed by value type {self.name}", value=text
            )

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"name": self.name, "type": self.kind.value}
        if self.values is not None:
            doc["values"] = dict(self.values)
        return doc

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> ValueType:
        return cls(
            name=doc["name"],
            kind=ValueKind.from_str(doc["type"]),
            values=dict(doc["values"]) if "values" in doc else None,
            surrogate=new_surrogate(EntityType.VALUE_TYPE, doc_id),
        )


@dataclass
class Property:
    """Named attribute slot.

    Attributes:
        name: Unique property name
        value_type: Type of values held by the property
        indexed: Whether chronicles may be searched by this property
        surrogate: Identity
    """

    name: str
    value_type: ValueType
    indexed: bool = False
    surrogate: Surrogate = field(default_factory=_surrogate_factory(EntityType.PROPERTY))

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidValueError("Property name must not be empty")

    @property
    def id(self) -> str | None:
        return self.surrogate.id

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": id_of(self.value_type.surrogate),
            "indexed": self.indexed,
        }


# --- Definitions ---


@dataclass(frozen=True)
class ErasingAttribute:
    """Removes the attribute definition inherited under this number."""

    number: int

    def __post_init__(self) -> None:
        _check_number(self.number)


@dataclass(frozen=True)
class ConcreteAttribute:
    """Attribute definition with a property and a default value."""

    number: int
    property: Property
    value: Any

    def __post_init__(self) -> None:
        _check_number(self.number)
        self.property.value_type.to_string(self.value)


AttributeDefinition = Union[ErasingAttribute, ConcreteAttribute]


@dataclass(frozen=True)
class ErasingSeries:
    """Removes the series definition inherited under this number."""

    number: int

    def __post_init__(self) -> None:
        _check_number(self.number)


@dataclass(frozen=True)
class ConcreteSeries:
    """Series definition with a description and nested attribute definitions."""

    number: int
    description: str
    attributes: tuple[AttributeDefinition, ...] = ()

    def __post_init__(self) -> None:
        _check_number(self.number)


SeriesDefinition = Union[ErasingSeries, ConcreteSeries]


@dataclass
class Schema:
    """One layer of a schema inheritance chain.

    Attributes:
        name: Unique schema name
        base: Base schema layer, None when absent or cut by cycle detection
        attributes: Attribute definitions, in stored order
        series: Series definitions, in stored order
        surrogate: Identity
    """

    name: str
    base: Schema | None = None
    attributes: list[AttributeDefinition] = field(default_factory=list)
    series: list[SeriesDefinition] = field(default_factory=list)
    surrogate: Surrogate = field(default_factory=_surrogate_factory(EntityType.SCHEMA))

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidValueError("Schema name must not be empty")

    @property
    def id(self) -> str | None:
        return self.surrogate.id


@dataclass(frozen=True)
class EffectiveSeries:
    number: int
    description: str
    attributes: dict[int, ConcreteAttribute]


@dataclass(frozen=True)
class EffectiveSchema:
    """Merged view of a schema chain, keyed by definition number."""

    attributes: dict[int, ConcreteAttribute]
    series: dict[int, EffectiveSeries]

    def property_ids(self) -> set[str]:
        ids = {d.property.id for d in self.attributes.values()}
        for series in self.series.values():
            ids.update(d.property.id for d in series.attributes.values())
        return {i for i in ids if i is not None}


def _merge_attributes(
    merged: dict[int, ConcreteAttribute],
    definitions: list[AttributeDefinition] | tuple[AttributeDefinition, ...],
) -> None:
    for definition in definitions:
        if isinstance(definition, ErasingAttribute):
            merged.pop(definition.number, None)
        else:
            merged[definition.number] = definition


@dataclass
class SchemaChain:
    """A resolved schema and its base layers, most-derived first."""

    layers: list[Schema]

    @property
    def head(self) -> Schema:
        return self.layers[0]

    def ids(self) -> list[str]:
        return [layer.id for layer in self.layers if layer.id is not None]

    def depends_on(self, schema_id: str) -> bool:
        """True if schema_id is this schema or one of its bases."""
        return schema_id in self.ids()

    def effective(self) -> EffectiveSchema:
        """Merge the layers root-first.

        A concrete definition overrides an inherited one with the same
        number, an erasing definition removes it. Series definitions merge
        their nested attribute definitions the same way.
        """
        attributes: dict[int, ConcreteAttribute] = {}
        series: dict[int, EffectiveSeries] = {}
        for layer in reversed(self.layers):
            _merge_attributes(attributes, layer.attributes)
            for definition in layer.series:
                if isinstance(definition, ErasingSeries):
                    series.pop(definition.number, None)
                    continue
                inherited = series.get(definition.number)
                nested = dict(inherited.attributes) if inherited else {}
                _merge_attributes(nested, definition.attributes)
                series[definition.number] = EffectiveSeries(
                    definition.number, definition.description, nested
                )
        return EffectiveSchema(attributes, series)


# --- Chronicles and data ---


@dataclass
class Chronicle:
    """Node of the chronicle tree.

    Attributes:
        name: Name, unique among siblings
        description: Free text description
        parent_id: Parent chronicle id, None for top-level chronicles
        schema_id: Schema id, None to inherit the parent's schema
        surrogate: Identity
    """

    name: str
    description: str = ""
    parent_id: str | None = None
    schema_id: str | None = None
    surrogate: Surrogate = field(default_factory=_surrogate_factory(EntityType.CHRONICLE))

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidValueError("Chronicle name must not be empty")

    @property
    def id(self) -> str | None:
        return self.surrogate.id

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"name": self.name, "desc": self.description}
        if self.parent_id is not None:
            doc["parent"] = self.parent_id
        if self.schema_id is not None:
            doc["schema"] = self.schema_id
        return doc

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> Chronicle:
        return cls(
            name=doc["name"],
            description=doc.get("desc", ""),
            parent_id=doc.get("parent"),
            schema_id=doc.get("schema"),
            surrogate=new_surrogate(EntityType.CHRONICLE, doc_id),
        )


@dataclass
class Series:
    """Series of a chronicle. Values are loaded through SeriesAccess.

    Attributes:
        chronicle_id: Owning chronicle
        number: Series number, matches a series definition of the schema
        first: Smallest time index holding a value, None when empty
        last: Largest time index holding a value, None when empty
        surrogate: Identity
    """

    chronicle_id: str
    number: int
    first: int | None = None
    last: int | None = None
    surrogate: Surrogate = field(default_factory=_surrogate_factory(EntityType.SERIES))

    @property
    def id(self) -> str | None:
        return self.surrogate.id

    @property
    def empty(self) -> bool:
        return self.first is None

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> Series:
        return cls(
            chronicle_id=doc["chron"],
            number=doc["number"],
            first=doc.get("first"),
            last=doc.get("last"),
            surrogate=new_surrogate(EntityType.SERIES, doc_id),
        )


@dataclass
class Attribute:
    """Actual value of a property on a chronicle."""

    chronicle_id: str
    property: Property
    value: Any
    description: str = ""
    surrogate: Surrogate = field(default_factory=_surrogate_factory(EntityType.ATTRIBUTE))

    @property
    def id(self) -> str | None:
        return self.surrogate.id
