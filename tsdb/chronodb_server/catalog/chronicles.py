"""
Chronicle and attribute value access.

Chronicles form a tree. A chronicle without a schema inherits the schema
of its nearest ancestor that has one. Attribute values are separate
documents keyed by (chronicle, property) so that value scans can use an
index on (property, value).

Invariants:
    - Chronicle names are unique among siblings
    - An attribute value may only be set for a property the effective
      schema defines
    - Deleting a chronicle removes its attribute values after the
      protocol finalizes, never before
"""

from __future__ import annotations

import logging
from typing import Any

from ..auth import AuthorizationCheck, Permission
from ..errors import InvalidValueError, NotFoundError
from ..identity import EntityType, id_of, new_surrogate, upgrade
from ..integrity.policy import ChronicleUpdatePolicy
from ..integrity.protocol import IntegrityOutcome, IntegrityProtocol
from ..integrity.scanners import ReferenceScanners
from ..store import ATTRIBUTES, CHRONICLES, SCHEMAS, DocumentStore
from .properties import PropertyAccess
from .resolver import SchemaResolver
from .types import Attribute, Chronicle, Property, SchemaChain

logger = logging.getLogger(__name__)


class ChronicleAccess:
    """Create, read, update and delete chronicles and their attribute values."""

    def __init__(
        self,
        store: DocumentStore,
        protocol: IntegrityProtocol,
        policy: ChronicleUpdatePolicy,
        auth: AuthorizationCheck,
        scanners: ReferenceScanners,
        resolver: SchemaResolver,
        properties: PropertyAccess,
    ) -> None:
        self._store = store
        self._protocol = protocol
        self._policy = policy
        self._auth = auth
        self._scanners = scanners
        self._resolver = resolver
        self._properties = properties

    async def create(self, chronicle: Chronicle) -> Chronicle:
        """Persist a new chronicle.

        Raises:
            NotFoundError: If the parent or schema does not exist
            DuplicateNameError: If a sibling has the same name
        """
        self._auth.check(Permission.CREATE, chronicle)
        if chronicle.parent_id is not None and await self._store.get(CHRONICLES, chronicle.parent_id) is None:
            raise NotFoundError(
                f"Parent chronicle not found: {chronicle.parent_id}",
                collection=CHRONICLES,
                document_id=chronicle.parent_id,
            )
        if chronicle.schema_id is not None and await self._store.get(SCHEMAS, chronicle.schema_id) is None:
            raise NotFoundError(
                f"Schema not found: {chronicle.schema_id}",
                collection=SCHEMAS,
                document_id=chronicle.schema_id,
            )
        doc_id = await self._store.insert(CHRONICLES, chronicle.to_document())
        upgrade(chronicle.surrogate, doc_id)
        logger.info(
            f"Created chronicle {chronicle.name}",
            extra={"chronicle_id": doc_id, "parent_id": chronicle.parent_id},
        )
        return chronicle

    async def get(self, chronicle_id: str) -> Chronicle:
        """Load a chronicle.

        Raises:
            NotFoundError: If it does not exist
        """
        self._auth.check(Permission.READ, chronicle_id)
        doc = await self._store.get(CHRONICLES, chronicle_id)
        if doc is None:
            raise NotFoundError(
                f"Chronicle not found: {chronicle_id}", collection=CHRONICLES, document_id=chronicle_id
            )
        return Chronicle.from_document(chronicle_id, doc)

    async def find(self, name: str, parent_id: str | None = None) -> Chronicle | None:
        """Find a chronicle by name among the children of parent_id (None for top level)."""
        self._auth.check(Permission.READ, name)
        found = await self._store.find_one(CHRONICLES, {"parent": parent_id, "name": name})
        return None if found is None else Chronicle.from_document(found.id, found.body)

    async def children(self, parent_id: str | None = None) -> list[Chronicle]:
        self._auth.check(Permission.READ, parent_id)
        docs = await self._store.find(CHRONICLES, {"parent": parent_id}, order_by="name")
        return [Chronicle.from_document(d.id, d.body) for d in docs]

    async def update(self, chronicle: Chronicle) -> Chronicle:
        """Store a changed name or description. Last writer wins."""
        self._auth.check(Permission.MODIFY, chronicle)
        updated = await self._store.update_fields(
            CHRONICLES,
            id_of(chronicle.surrogate),
            {"name": chronicle.name, "desc": chronicle.description},
        )
        if not updated:
            raise NotFoundError(
                f"Chronicle not found: {chronicle.id}", collection=CHRONICLES, document_id=chronicle.id
            )
        logger.info(f"Updated chronicle {chronicle.name}", extra={"chronicle_id": chronicle.id})
        return chronicle

    async def delete(self, chronicle: Chronicle) -> IntegrityOutcome:
        """Delete a chronicle without children or series, then its attribute values.

        Raises:
            IntegrityViolationError: If it has children or series
        """
        self._auth.check(Permission.MODIFY, chronicle)
        chronicle_id = id_of(chronicle.surrogate)
        outcome = await self._protocol.perform_dangerous_delete(
            CHRONICLES,
            chronicle.surrogate,
            lambda: self._policy.will_delete_chronicle(chronicle_id, chronicle.name),
        )
        removed = await self._store.delete_where(ATTRIBUTES, "chron", chronicle_id)
        logger.info(
            f"Deleted chronicle {chronicle.name}",
            extra={"chronicle_id": chronicle_id, "attributes_removed": removed},
        )
        return outcome

    async def effective_schema(self, chronicle: Chronicle) -> SchemaChain | None:
        """Schema of the chronicle or of its nearest ancestor that has one."""
        self._auth.check(Permission.READ, chronicle)
        schema_id = await self._scanners.effective_schema_id(id_of(chronicle.surrogate))
        return None if schema_id is None else await self._resolver.resolve(schema_id)

    # --- Attribute values ---

    async def _require_defined(self, chronicle: Chronicle, prop: Property) -> None:
        chain = await self.effective_schema(chronicle)
        defined = chain is not None and any(
            d.property.id == prop.id for d in chain.effective().attributes.values()
        )
        if not defined:
            raise InvalidValueError(
                f"Property {prop.name} is not defined by the schema of chronicle {chronicle.name}"
            )

    async def set_attribute(
        self, chronicle: Chronicle, prop: Property, value: Any, description: str = ""
    ) -> Attribute:
        """Set the value of a property on a chronicle.

        Raises:
            InvalidValueError: If the value is invalid or the property undefined
        """
        self._auth.check(Permission.MODIFY, chronicle)
        chronicle_id = id_of(chronicle.surrogate)
        prop_id = id_of(prop.surrogate)
        text = prop.value_type.to_string(value)
        await self._require_defined(chronicle, prop)

        fields = {"val": text, "descr": description}
        existing = await self._store.find_one(ATTRIBUTES, {"chron": chronicle_id, "prop": prop_id})
        if existing is not None and await self._store.update_fields(ATTRIBUTES, existing.id, fields):
            doc_id = existing.id
        else:
            doc_id = await self._store.insert(ATTRIBUTES, {"chron": chronicle_id, "prop": prop_id, **fields})
        logger.debug(
            f"Set {prop.name} on chronicle {chronicle.name}",
            extra={"chronicle_id": chronicle_id, "property_id": prop_id},
        )
        return Attribute(
            chronicle_id,
            prop,
            value,
            description,
            surrogate=new_surrogate(EntityType.ATTRIBUTE, doc_id),
        )

    async def get_attribute(self, chronicle: Chronicle, prop: Property) -> Attribute | None:
        """Value of a property on a chronicle, falling back to the schema default.

        A default is returned as an attribute still in construction.
        """
        self._auth.check(Permission.READ, chronicle)
        chronicle_id = id_of(chronicle.surrogate)
        found = await self._store.find_one(ATTRIBUTES, {"chron": chronicle_id, "prop": prop.id})
        if found is not None:
            return Attribute(
                chronicle_id,
                prop,
                prop.value_type.scan(found.body["val"]),
                found.body.get("descr", ""),
                surrogate=new_surrogate(EntityType.ATTRIBUTE, found.id),
            )
        chain = await self.effective_schema(chronicle)
        if chain is None:
            return None
        for definition in chain.effective().attributes.values():
            if definition.property.id == prop.id:
                return Attribute(chronicle_id, prop, definition.value)
        return None

    async def get_attributes(self, chronicle: Chronicle) -> list[Attribute]:
        """Stored attribute values of a chronicle."""
        self._auth.check(Permission.READ, chronicle)
        chronicle_id = id_of(chronicle.surrogate)
        rows = await self._store.find(ATTRIBUTES, {"chron": chronicle_id})
        attributes = []
        for row in rows:
            prop = await self._properties.get(row.body["prop"])
            attributes.append(
                Attribute(
                    chronicle_id,
                    prop,
                    prop.value_type.scan(row.body["val"]),
                    row.body.get("descr", ""),
                    surrogate=new_surrogate(EntityType.ATTRIBUTE, row.id),
                )
            )
        return attributes

    async def delete_attribute(self, chronicle: Chronicle, prop: Property) -> bool:
        self._auth.check(Permission.MODIFY, chronicle)
        found = await self._store.find_one(
            ATTRIBUTES, {"chron": id_of(chronicle.surrogate), "prop": id_of(prop.surrogate)}
        )
        return found is not None and await self._store.delete(ATTRIBUTES, found.id)

    async def find_by_attribute(self, prop: Property, value: Any) -> list[Chronicle]:
        """Chronicles holding the given value for the property."""
        self._auth.check(Permission.DISCOVER, prop)
        rows = await self._store.find(
            ATTRIBUTES, {"prop": id_of(prop.surrogate), "val": prop.value_type.to_string(value)}
        )
        chronicles = []
        for chronicle_id in sorted({row.body["chron"] for row in rows}):
            doc = await self._store.get(CHRONICLES, chronicle_id)
            if doc is not None:
                chronicles.append(Chronicle.from_document(chronicle_id, doc))
        return chronicles
