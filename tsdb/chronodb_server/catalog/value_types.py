"""
Value type access.

Deleting a value type and removing values from a restricted value type
are dangerous: properties, attribute rows and schema defaults may still
reference them. Both go through the integrity protocol.

Invariants:
    - The representation tag of a stored value type never changes
    - Adding restricted values or renaming is a plain single write
"""

from __future__ import annotations

import logging

from ..auth import AuthorizationCheck, Permission
from ..errors import InvalidValueError, NotFoundError
from ..identity import id_of, upgrade
from ..integrity.policy import SchemaUpdatePolicy
from ..integrity.protocol import IntegrityOutcome, IntegrityProtocol
from ..store import VALUE_TYPES, DocumentStore
from .types import ValueType

logger = logging.getLogger(__name__)


class ValueTypeAccess:
    """Create, read, update and delete value types."""

    def __init__(
        self,
        store: DocumentStore,
        protocol: IntegrityProtocol,
        policy: SchemaUpdatePolicy,
        auth: AuthorizationCheck,
    ) -> None:
        self._store = store
        self._protocol = protocol
        self._policy = policy
        self._auth = auth

    async def create(self, value_type: ValueType) -> ValueType:
        """Persist a new value type and upgrade its surrogate.

        Raises:
            DuplicateNameError: If the name is taken
        """
        self._auth.check(Permission.CREATE, value_type)
        doc_id = await self._store.insert(VALUE_TYPES, value_type.to_document())
        upgrade(value_type.surrogate, doc_id)
        logger.info(
            f"Created value type {value_type.name}",
            extra={"value_type_id": doc_id, "kind": value_type.kind.value},
        )
        return value_type

    async def get(self, value_type_id: str) -> ValueType:
        """Load a value type.

        Raises:
            NotFoundError: If it does not exist
        """
        self._auth.check(Permission.READ, value_type_id)
        doc = await self._store.get(VALUE_TYPES, value_type_id)
        if doc is None:
            raise NotFoundError(
                f"Value type not found: {value_type_id}",
                collection=VALUE_TYPES,
                document_id=value_type_id,
            )
        return ValueType.from_document(value_type_id, doc)

    async def find(self, name: str) -> ValueType | None:
        self._auth.check(Permission.READ, name)
        found = await self._store.find_one(VALUE_TYPES, {"name": name})
        return None if found is None else ValueType.from_document(found.id, found.body)

    async def list(self) -> list[ValueType]:
        self._auth.check(Permission.READ, VALUE_TYPES)
        docs = await self._store.find(VALUE_TYPES, order_by="name")
        return [ValueType.from_document(d.id, d.body) for d in docs]

    async def update(self, value_type: ValueType) -> IntegrityOutcome | None:
        """Store a changed name or restricted value list.

        Removing restricted values runs the integrity protocol, with every
        removed value checked before and after the window.

        Returns:
            The protocol outcome when values were removed, else None

        Raises:
            InvalidValueError: If the tag or restricted flag changes
            IntegrityViolationError: If a removed value is still in use
        """
        self._auth.check(Permission.MODIFY, value_type)
        stored = await self.get(id_of(value_type.surrogate))
        if stored.kind != value_type.kind or stored.restricted != value_type.restricted:
            raise InvalidValueError(
                f"Value type {stored.name} cannot change its tag or restriction"
            )

        changes = value_type.to_document()
        del changes["type"]
        removed = sorted(set(stored.values or {}) - set(value_type.values or {}))
        if not removed:
            await self._store.update_fields(VALUE_TYPES, value_type.id, changes)
            logger.info(f"Updated value type {value_type.name}", extra={"value_type_id": value_type.id})
            return None

        async def check() -> None:
            for text in removed:
                await self._policy.will_delete_value(stored, text)

        outcome = await self._protocol.perform_dangerous_update(
            VALUE_TYPES, value_type.surrogate, changes, check
        )
        logger.info(
            f"Updated value type {value_type.name}, removed {len(removed)} values",
            extra={"value_type_id": value_type.id, "removed": removed},
        )
        return outcome

    async def delete(self, value_type: ValueType) -> IntegrityOutcome:
        """Delete a value type no property uses.

        Raises:
            IntegrityViolationError: If a property uses it
        """
        self._auth.check(Permission.MODIFY, value_type)
        outcome = await self._protocol.perform_dangerous_delete(
            VALUE_TYPES,
            value_type.surrogate,
            lambda: self._policy.will_delete_value_type(value_type),
        )
        logger.info(f"Deleted value type {value_type.name}", extra={"value_type_id": value_type.id})
        return outcome
