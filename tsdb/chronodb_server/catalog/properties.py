"""
Property access.

Properties are loaded together with their value type, which every read
of an attribute value needs. Renames are plain writes; deletes run the
integrity protocol against schemas using the property.
"""

from __future__ import annotations

import logging
from typing import Any

from ..auth import AuthorizationCheck, Permission
from ..errors import InvalidValueError, NotFoundError
from ..identity import EntityType, id_of, is_in_construction, new_surrogate, upgrade
from ..integrity.policy import SchemaUpdatePolicy
from ..integrity.protocol import IntegrityOutcome, IntegrityProtocol
from ..store import PROPERTIES, DocumentStore
from .types import Property
from .value_types import ValueTypeAccess

logger = logging.getLogger(__name__)


class PropertyAccess:
    """Create, read, rename and delete properties."""

    def __init__(
        self,
        store: DocumentStore,
        protocol: IntegrityProtocol,
        policy: SchemaUpdatePolicy,
        auth: AuthorizationCheck,
        value_types: ValueTypeAccess,
    ) -> None:
        self._store = store
        self._protocol = protocol
        self._policy = policy
        self._auth = auth
        self._value_types = value_types

    async def create(self, prop: Property) -> Property:
        """Persist a new property.

        Raises:
            InvalidValueError: If its value type is not persisted
            DuplicateNameError: If the name is taken
        """
        self._auth.check(Permission.CREATE, prop)
        if is_in_construction(prop.value_type.surrogate):
            raise InvalidValueError(f"Value type of property {prop.name} is not persisted")
        doc_id = await self._store.insert(PROPERTIES, prop.to_document())
        upgrade(prop.surrogate, doc_id)
        logger.info(
            f"Created property {prop.name}",
            extra={"property_id": doc_id, "value_type_id": prop.value_type.id},
        )
        return prop

    async def get(self, property_id: str) -> Property:
        """Load a property and its value type.

        Raises:
            NotFoundError: If it does not exist
        """
        self._auth.check(Permission.READ, property_id)
        doc = await self._store.get(PROPERTIES, property_id)
        if doc is None:
            raise NotFoundError(
                f"Property not found: {property_id}", collection=PROPERTIES, document_id=property_id
            )
        return await self._from_document(property_id, doc)

    async def find(self, name: str) -> Property | None:
        self._auth.check(Permission.READ, name)
        found = await self._store.find_one(PROPERTIES, {"name": name})
        return None if found is None else await self._from_document(found.id, found.body)

    async def list(self) -> list[Property]:
        self._auth.check(Permission.READ, PROPERTIES)
        docs = await self._store.find(PROPERTIES, order_by="name")
        return [await self._from_document(d.id, d.body) for d in docs]

    async def _from_document(self, doc_id: str, doc: dict[str, Any]) -> Property:
        return Property(
            name=doc["name"],
            value_type=await self._value_types.get(doc["type"]),
            indexed=bool(doc.get("indexed", False)),
            surrogate=new_surrogate(EntityType.PROPERTY, doc_id),
        )

    async def rename(self, prop: Property, name: str) -> Property:
        """Rename a property. Last writer wins."""
        self._auth.check(Permission.MODIFY, prop)
        if not name:
            raise InvalidValueError("Property name must not be empty")
        if not await self._store.update_fields(PROPERTIES, id_of(prop.surrogate), {"name": name}):
            raise NotFoundError(f"Property not found: {prop.id}", collection=PROPERTIES, document_id=prop.id)
        logger.info(f"Renamed property {prop.name} to {name}", extra={"property_id": prop.id})
        prop.name = name
        return prop

    async def delete(self, prop: Property) -> IntegrityOutcome:
        """Delete a property no schema uses.

        Raises:
            IntegrityViolationError: If a schema defines an attribute with it
        """
        self._auth.check(Permission.MODIFY, prop)
        outcome = await self._protocol.perform_dangerous_delete(
            PROPERTIES, prop.surrogate, lambda: self._policy.will_delete_property(prop)
        )
        logger.info(f"Deleted property {prop.name}", extra={"property_id": prop.id})
        return outcome
