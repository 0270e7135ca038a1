"""
API routes for the ChronoDB admin API.

Provides REST endpoints for browsing the catalog, creating entities,
discovering what still references an entity and running dangerous
deletes through the integrity protocol.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..catalog.types import (
    AttributeDefinition,
    Chronicle,
    ConcreteAttribute,
    ConcreteSeries,
    ErasingAttribute,
    ErasingSeries,
    Property,
    Schema,
    SchemaChain,
    SeriesDefinition,
    ValueType,
)
from ..catalog.values import ValueKind
from ..database import ChronicleDatabase
from ..errors import InvalidValueError
from ..identity import EntityType
from ..integrity.protocol import IntegrityOutcome

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ChronoDB Catalog"])


# --- Request/Response Models ---


class ValueTypeCreateRequest(BaseModel):
    """Request to create a value type."""

    name: str = Field(..., description="Unique value type name")
    kind: str = Field(..., description="Representation tag, e.g. TEXT or NAME")
    values: dict[str, str] | None = Field(None, description="Allowed values, restricted types only")


class PropertyCreateRequest(BaseModel):
    """Request to create a property."""

    name: str = Field(..., description="Unique property name")
    value_type_id: str = Field(..., description="Value type id")
    indexed: bool = Field(False, description="Allow search by value")


class AttributeDefinitionModel(BaseModel):
    """Attribute definition, erasing or concrete."""

    number: int = Field(..., ge=1)
    erasing: bool = False
    property_id: str | None = None
    value: str | None = Field(None, description="Default value in text form")


class SeriesDefinitionModel(BaseModel):
    """Series definition, erasing or concrete."""

    number: int = Field(..., ge=1)
    erasing: bool = False
    description: str | None = None
    attributes: list[AttributeDefinitionModel] = Field(default_factory=list)


class SchemaCreateRequest(BaseModel):
    """Request to create a schema."""

    name: str
    base_id: str | None = None
    attributes: list[AttributeDefinitionModel] = Field(default_factory=list)
    series: list[SeriesDefinitionModel] = Field(default_factory=list)


class ChronicleCreateRequest(BaseModel):
    """Request to create a chronicle."""

    name: str
    description: str = ""
    parent_id: str | None = None
    schema_id: str | None = None


class AttributeSetRequest(BaseModel):
    """Request to set an attribute value."""

    value: str = Field(..., description="Value in text form")
    description: str = ""


class OutcomeResponse(BaseModel):
    """Result of a dangerous write."""

    target: str
    delay_ms: int
    states: list[str]


class ReferencesResponse(BaseModel):
    """Documents still referencing an entity, by kind."""

    target: str
    references: dict[str, list[str]]
    in_use: bool


# --- Dependencies ---


def get_database(request: Request) -> ChronicleDatabase:
    """Get catalog database from app state."""
    return request.app.state.database


# --- Helpers ---


def _value_type_to_dict(value_type: ValueType) -> dict[str, Any]:
    return {
        "id": value_type.id,
        "name": value_type.name,
        "kind": value_type.kind.value,
        "restricted": value_type.restricted,
        "values": value_type.values,
    }


def _property_to_dict(prop: Property) -> dict[str, Any]:
    return {
        "id": prop.id,
        "name": prop.name,
        "value_type_id": prop.value_type.id,
        "indexed": prop.indexed,
    }


def _attribute_definition_to_dict(definition: AttributeDefinition) -> dict[str, Any]:
    if isinstance(definition, ErasingAttribute):
        return {"number": definition.number, "erasing": True}
    return {
        "number": definition.number,
        "erasing": False,
        "property_id": definition.property.id,
        "property": definition.property.name,
        "value": definition.property.value_type.to_string(definition.value),
    }


def _series_definition_to_dict(definition: SeriesDefinition) -> dict[str, Any]:
    if isinstance(definition, ErasingSeries):
        return {"number": definition.number, "erasing": True}
    return {
        "number": definition.number,
        "erasing": False,
        "description": definition.description,
        "attributes": [_attribute_definition_to_dict(d) for d in definition.attributes],
    }


def _chain_to_dict(chain: SchemaChain) -> dict[str, Any]:
    effective = chain.effective()
    return {
        "id": chain.head.id,
        "name": chain.head.name,
        "chain": chain.ids(),
        "layers": [
            {
                "id": layer.id,
                "name": layer.name,
                "base_id": layer.base.id if layer.base else None,
                "attributes": [_attribute_definition_to_dict(d) for d in layer.attributes],
                "series": [_series_definition_to_dict(d) for d in layer.series],
            }
            for layer in chain.layers
        ],
        "effective": {
            "attributes": [
                _attribute_definition_to_dict(d) for _, d in sorted(effective.attributes.items())
            ],
            "series": [
                {
                    "number": s.number,
                    "description": s.description,
                    "attributes": [
                        _attribute_definition_to_dict(d) for _, d in sorted(s.attributes.items())
                    ],
                }
                for _, s in sorted(effective.series.items())
            ],
        },
    }


def _chronicle_to_dict(chronicle: Chronicle) -> dict[str, Any]:
    return {
        "id": chronicle.id,
        "name": chronicle.name,
        "description": chronicle.description,
        "parent_id": chronicle.parent_id,
        "schema_id": chronicle.schema_id,
    }


def _outcome(outcome: IntegrityOutcome) -> OutcomeResponse:
    return OutcomeResponse(
        target=str(outcome.target),
        delay_ms=outcome.delay_ms,
        states=[s.value for s in outcome.states],
    )


def _references(target: str, references: dict[str, list[str]]) -> ReferencesResponse:
    return ReferencesResponse(
        target=target,
        references=references,
        in_use=any(references.values()),
    )


async def _attribute_definitions(
    db: ChronicleDatabase, models: list[AttributeDefinitionModel]
) -> list[AttributeDefinition]:
    definitions: list[AttributeDefinition] = []
    for model in models:
        if model.erasing:
            if model.property_id is not None or model.value is not None:
                raise InvalidValueError(f"Erasing attribute {model.number} must not carry a property or value")
            definitions.append(ErasingAttribute(model.number))
            continue
        if model.property_id is None or model.value is None:
            raise InvalidValueError(f"Attribute {model.number} needs a property and a value")
        prop = await db.properties.get(model.property_id)
        definitions.append(ConcreteAttribute(model.number, prop, prop.value_type.scan(model.value)))
    return definitions


async def _series_definitions(
    db: ChronicleDatabase, models: list[SeriesDefinitionModel]
) -> list[SeriesDefinition]:
    definitions: list[SeriesDefinition] = []
    for model in models:
        if model.erasing:
            if model.description is not None or model.attributes:
                raise InvalidValueError(f"Erasing series {model.number} must not carry a description")
            definitions.append(ErasingSeries(model.number))
            continue
        attributes = await _attribute_definitions(db, model.attributes)
        definitions.append(ConcreteSeries(model.number, model.description or "", tuple(attributes)))
    return definitions


# --- Value Type Routes ---


@router.get("/value-types")
async def list_value_types(db: ChronicleDatabase = Depends(get_database)):
    """List value types by name."""
    return [_value_type_to_dict(v) for v in await db.value_types.list()]


@router.get("/value-types/{value_type_id}")
async def get_value_type(value_type_id: str, db: ChronicleDatabase = Depends(get_database)):
    return _value_type_to_dict(await db.value_types.get(value_type_id))


@router.post("/value-types", status_code=201)
async def create_value_type(request: ValueTypeCreateRequest, db: ChronicleDatabase = Depends(get_database)):
    """Create a value type, restricted when values are given."""
    try:
        kind = ValueKind.from_str(request.kind)
    except ValueError as e:
        raise InvalidValueError(str(e), value=request.kind) from e
    value_type = await db.value_types.create(ValueType(request.name, kind, request.values))
    return _value_type_to_dict(value_type)


@router.delete("/value-types/{value_type_id}", response_model=OutcomeResponse)
async def delete_value_type(value_type_id: str, db: ChronicleDatabase = Depends(get_database)):
    """
    Delete a value type.

    Runs the integrity protocol, refused with 409 while a property uses it.
    """
    return _outcome(await db.value_types.delete(await db.value_types.get(value_type_id)))


@router.get("/value-types/{value_type_id}/references", response_model=ReferencesResponse)
async def value_type_references(value_type_id: str, db: ChronicleDatabase = Depends(get_database)):
    refs = await db.discover_references(EntityType.VALUE_TYPE, value_type_id)
    return _references(value_type_id, refs)


@router.get("/value-types/{value_type_id}/values/{value}/references", response_model=ReferencesResponse)
async def value_references(value_type_id: str, value: str, db: ChronicleDatabase = Depends(get_database)):
    """Attribute values and schema defaults using one value."""
    refs = await db.discover_value_references(value_type_id, value)
    return _references(f"{value_type_id}:{value}", refs)


# --- Property Routes ---


@router.get("/properties")
async def list_properties(db: ChronicleDatabase = Depends(get_database)):
    return [_property_to_dict(p) for p in await db.properties.list()]


@router.get("/properties/{property_id}")
async def get_property(property_id: str, db: ChronicleDatabase = Depends(get_database)):
    return _property_to_dict(await db.properties.get(property_id))


@router.post("/properties", status_code=201)
async def create_property(request: PropertyCreateRequest, db: ChronicleDatabase = Depends(get_database)):
    value_type = await db.value_types.get(request.value_type_id)
    prop = await db.properties.create(Property(request.name, value_type, request.indexed))
    return _property_to_dict(prop)


@router.delete("/properties/{property_id}", response_model=OutcomeResponse)
async def delete_property(property_id: str, db: ChronicleDatabase = Depends(get_database)):
    """Delete a property, refused with 409 while a schema uses it."""
    return _outcome(await db.properties.delete(await db.properties.get(property_id)))


@router.get("/properties/{property_id}/references", response_model=ReferencesResponse)
async def property_references(property_id: str, db: ChronicleDatabase = Depends(get_database)):
    refs = await db.discover_references(EntityType.PROPERTY, property_id)
    return _references(property_id, refs)


# --- Schema Routes ---


@router.get("/schemas")
async def list_schemas(db: ChronicleDatabase = Depends(get_database)):
    return [_chain_to_dict(chain) for chain in await db.schemas.list()]


@router.get("/schemas/{schema_id}")
async def get_schema(schema_id: str, db: ChronicleDatabase = Depends(get_database)):
    """
    Get a schema with its resolved base chain.

    Returns every layer and the effective merged definitions.
    """
    return _chain_to_dict(await db.schemas.get(schema_id))


@router.post("/schemas", status_code=201)
async def create_schema(request: SchemaCreateRequest, db: ChronicleDatabase = Depends(get_database)):
    base = (await db.schemas.get(request.base_id)).head if request.base_id else None
    schema = Schema(
        name=request.name,
        base=base,
        attributes=await _attribute_definitions(db, request.attributes),
        series=await _series_definitions(db, request.series),
    )
    await db.schemas.create(schema)
    return _chain_to_dict(await db.schemas.get(schema.id))


@router.delete("/schemas/{schema_id}", response_model=OutcomeResponse)
async def delete_schema(schema_id: str, db: ChronicleDatabase = Depends(get_database)):
    """Delete a schema, refused with 409 while a chronicle is assigned to it."""
    return _outcome(await db.schemas.delete((await db.schemas.get(schema_id)).head))


@router.get("/schemas/{schema_id}/references", response_model=ReferencesResponse)
async def schema_references(schema_id: str, db: ChronicleDatabase = Depends(get_database)):
    refs = await db.discover_references(EntityType.SCHEMA, schema_id)
    return _references(schema_id, refs)


# --- Chronicle Routes ---


@router.get("/chronicles")
async def list_chronicles(
    parent_id: str | None = Query(None, description="Parent chronicle, top level when omitted"),
    db: ChronicleDatabase = Depends(get_database),
):
    return [_chronicle_to_dict(c) for c in await db.chronicles.children(parent_id)]


@router.get("/chronicles/{chronicle_id}")
async def get_chronicle(chronicle_id: str, db: ChronicleDatabase = Depends(get_database)):
    chronicle = await db.chronicles.get(chronicle_id)
    result = _chronicle_to_dict(chronicle)
    result["attributes"] = {
        a.property.name: a.property.value_type.to_string(a.value)
        for a in await db.chronicles.get_attributes(chronicle)
    }
    return result


@router.post("/chronicles", status_code=201)
async def create_chronicle(request: ChronicleCreateRequest, db: ChronicleDatabase = Depends(get_database)):
    chronicle = await db.chronicles.create(
        Chronicle(request.name, request.description, request.parent_id, request.schema_id)
    )
    return _chronicle_to_dict(chronicle)


@router.put("/chronicles/{chronicle_id}/attributes/{property_id}")
async def set_chronicle_attribute(
    chronicle_id: str,
    property_id: str,
    request: AttributeSetRequest,
    db: ChronicleDatabase = Depends(get_database),
):
    chronicle = await db.chronicles.get(chronicle_id)
    prop = await db.properties.get(property_id)
    attribute = await db.chronicles.set_attribute(
        chronicle, prop, prop.value_type.scan(request.value), request.description
    )
    return {"id": attribute.id, "chronicle_id": chronicle_id, "property_id": property_id, "value": request.value}


@router.delete("/chronicles/{chronicle_id}", response_model=OutcomeResponse)
async def delete_chronicle(chronicle_id: str, db: ChronicleDatabase = Depends(get_database)):
    """Delete a chronicle without children or series, and its attribute values."""
    return _outcome(await db.chronicles.delete(await db.chronicles.get(chronicle_id)))


@router.get("/chronicles/{chronicle_id}/references", response_model=ReferencesResponse)
async def chronicle_references(chronicle_id: str, db: ChronicleDatabase = Depends(get_database)):
    refs = await db.discover_references(EntityType.CHRONICLE, chronicle_id)
    return _references(chronicle_id, refs)


# --- Series Routes ---


@router.delete("/series/{series_id}", response_model=OutcomeResponse)
async def delete_series(series_id: str, db: ChronicleDatabase = Depends(get_database)):
    """Delete a series holding no values."""
    return _outcome(await db.series.delete(await db.series.get(series_id)))
