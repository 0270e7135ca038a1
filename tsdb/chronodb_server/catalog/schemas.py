"""
Schema access.

Schemas are written as whole documents through the codec and read back
through the resolver, so a schema always comes with its base chain.
Updates replace the document and are dangerous: dropping a definition
can orphan attribute values and series held by chronicles.

Invariants:
    - A schema may not become its own base, directly or through its bases
    - An update is checked against the effective schema before and after it
"""

from __future__ import annotations

import logging

from ..auth import AuthorizationCheck, Permission
from ..errors import InvalidValueError
from ..identity import id_of, is_in_construction, upgrade
from ..integrity.policy import SchemaUpdatePolicy
from ..integrity.protocol import IntegrityOutcome, IntegrityProtocol
from ..store import SCHEMAS, DocumentStore
from .codec import SchemaCodec
from .resolver import SchemaResolver
from .types import (
    ConcreteAttribute,
    ConcreteSeries,
    EffectiveSchema,
    Schema,
    SchemaChain,
)

logger = logging.getLogger(__name__)


class SchemaAccess:
    """Create, resolve, update and delete schemas."""

    def __init__(
        self,
        store: DocumentStore,
        protocol: IntegrityProtocol,
        policy: SchemaUpdatePolicy,
        auth: AuthorizationCheck,
        codec: SchemaCodec,
        resolver: SchemaResolver,
    ) -> None:
        self._store = store
        self._protocol = protocol
        self._policy = policy
        self._auth = auth
        self._codec = codec
        self._resolver = resolver

    @staticmethod
    def _check_references(schema: Schema) -> None:
        if schema.base is not None and is_in_construction(schema.base.surrogate):
            raise InvalidValueError(f"Base of schema {schema.name} is not persisted")
        definitions = list(schema.attributes)
        for series in schema.series:
            if isinstance(series, ConcreteSeries):
                definitions.extend(series.attributes)
        for definition in definitions:
            if isinstance(definition, ConcreteAttribute) and is_in_construction(
                definition.property.surrogate
            ):
                raise InvalidValueError(
                    f"Property {definition.property.name} of schema {schema.name} is not persisted"
                )

    async def create(self, schema: Schema) -> Schema:
        """Persist a new schema layer.

        Raises:
            InvalidValueError: If its base or a property is not persisted
            DuplicateNameError: If the name is taken
        """
        self._auth.check(Permission.CREATE, schema)
        self._check_references(schema)
        doc_id = await self._store.insert(SCHEMAS, self._codec.encode_schema(schema))
        upgrade(schema.surrogate, doc_id)
        logger.info(
            f"Created schema {schema.name}",
            extra={"schema_id": doc_id, "base_id": schema.base.id if schema.base else None},
        )
        return schema

    async def get(self, schema_id: str) -> SchemaChain:
        """Resolve a schema with its base chain.

        Raises:
            NotFoundError: If it does not exist
            EncodingViolationError: If a stored layer is malformed
        """
        self._auth.check(Permission.READ, schema_id)
        return await self._resolver.resolve(schema_id)

    async def find(self, name: str) -> SchemaChain | None:
        self._auth.check(Permission.READ, name)
        found = await self._store.find_one(SCHEMAS, {"name": name})
        return None if found is None else await self._resolver.resolve(found.id)

    async def list(self) -> list[SchemaChain]:
        self._auth.check(Permission.READ, SCHEMAS)
        docs = await self._store.find(SCHEMAS, order_by="name")
        return [await self._resolver.resolve(d.id) for d in docs]

    async def _prospective(self, schema: Schema, schema_id: str) -> EffectiveSchema:
        if schema.base is None:
            return SchemaChain([schema]).effective()
        base_chain = await self._resolver.resolve(id_of(schema.base.surrogate))
        if base_chain.depends_on(schema_id):
            raise InvalidValueError(f"Schema {schema.name} cannot be based on itself")
        return SchemaChain([schema, *base_chain.layers]).effective()

    async def update(self, schema: Schema) -> IntegrityOutcome:
        """Replace a stored schema with the given layer.

        Raises:
            InvalidValueError: If the new base chain leads back to the schema
            IntegrityViolationError: If chronicles still use a dropped definition
        """
        self._auth.check(Permission.MODIFY, schema)
        self._check_references(schema)
        schema_id = id_of(schema.surrogate)
        before = (await self._resolver.resolve(schema_id)).effective()
        after = await self._prospective(schema, schema_id)

        doc = self._codec.encode_schema(schema)
        changes = {
            "name": doc["name"],
            "base": doc.get("base"),
            "attribs": doc["attribs"],
            "series": doc["series"],
        }
        outcome = await self._protocol.perform_dangerous_update(
            SCHEMAS,
            schema.surrogate,
            changes,
            lambda: self._policy.will_update_schema(schema_id, schema.name, before, after),
        )
        logger.info(f"Updated schema {schema.name}", extra={"schema_id": schema_id})
        return outcome

    async def delete(self, schema: Schema) -> IntegrityOutcome:
        """Delete a schema no chronicle is assigned to directly.

        Schemas based on it and their chronicles are not considered; their
        chains resolve with the base treated as absent afterwards.

        Raises:
            IntegrityViolationError: If a chronicle uses the schema directly
        """
        self._auth.check(Permission.MODIFY, schema)
        schema_id = id_of(schema.surrogate)
        outcome = await self._protocol.perform_dangerous_delete(
            SCHEMAS,
            schema.surrogate,
            lambda: self._policy.will_delete_schema(schema_id, schema.name),
        )
        logger.info(f"Deleted schema {schema.name}", extra={"schema_id": schema_id})
        return outcome
