"""
Catalog module for ChronoDB.

This module defines the catalog entities and how they are stored:
- Value types, properties, schemas, chronicles, series and attributes
- The canonical encoding of embedded schema definitions
- Resolution of schema base chains into effective schemas
- Access classes per entity (value_types, properties, schemas,
  chronicles, series), routed through the integrity protocol

Invariants:
    - Definitions are erasing or concrete, never both
    - Resolution terminates on any base graph

How to change safely:
    - Access classes import the integrity module, keep this package
      init limited to types and codecs to avoid import cycles
"""

from .codec import SchemaCodec
from .resolver import SchemaResolver
from .types import (
    Attribute,
    AttributeDefinition,
    Chronicle,
    ConcreteAttribute,
    ConcreteSeries,
    EffectiveSchema,
    EffectiveSeries,
    ErasingAttribute,
    ErasingSeries,
    Property,
    Schema,
    SchemaChain,
    Series,
    SeriesDefinition,
    ValueType,
)
from .values import ValueKind, ValueSerializer, get_serializer

__all__ = [
    "Attribute",
    "AttributeDefinition",
    "Chronicle",
    "ConcreteAttribute",
    "ConcreteSeries",
    "EffectiveSchema",
    "EffectiveSeries",
    "ErasingAttribute",
    "ErasingSeries",
    "Property",
    "Schema",
    "SchemaChain",
    "SchemaCodec",
    "SchemaResolver",
    "Series",
    "SeriesDefinition",
    "ValueKind",
    "ValueSerializer",
    "ValueType",
    "get_serializer",
]
