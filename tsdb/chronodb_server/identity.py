"""
Entity identity for the catalog.

A Surrogate is the typed reference every entity carries. It starts
in construction (no id) and is upgraded exactly once, when the insert
returning its id succeeds. Ids are opaque: callers compare and pass
them around but never parse them.

Invariants:
    - An in-construction surrogate has no id
    - upgrade() is only legal on an in-construction surrogate
    - A compensated document keeps its id, so surrogates stay valid
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NewType

from .errors import IntegrityViolationError

DocumentId = NewType("DocumentId", str)


class EntityType(Enum):
    """Kinds of catalog entities and the collection each lives in."""

    VALUE_TYPE = "value_types"
    PROPERTY = "properties"
    SCHEMA = "schemas"
    CHRONICLE = "chronicles"
    SERIES = "series"
    ATTRIBUTE = "attributes"

    @property
    def collection(self) -> str:
        return self.value


@dataclass
class Surrogate:
    """Typed, lifecycle-aware reference to a stored entity.

    Attributes:
        entity_type: Kind of entity referenced
        id: Document id, None while in construction
    """

    entity_type: EntityType
    id: DocumentId | None = None

    @property
    def in_construction(self) -> bool:
        return self.id is None

    def __str__(self) -> str:
        return f"{self.entity_type.name.lower()}:{self.id or '<new>'}"


def new_surrogate(entity_type: EntityType, doc_id: str | None = None) -> Surrogate:
    """Create a surrogate, persisted when an id is given."""
    return Surrogate(entity_type, DocumentId(doc_id) if doc_id is not None else None)


def is_in_construction(surrogate: Surrogate) -> bool:
    return surrogate.in_construction


def upgrade(surrogate: Surrogate, doc_id: str) -> Surrogate:
    """Transition an in-construction surrogate to persisted.

    Raises:
        IntegrityViolationError: If the surrogate already has an id
    """
    if not surrogate.in_construction:
        raise IntegrityViolationError(
            f"Surrogate already persisted: {surrogate}", target=str(surrogate)
        )
    surrogate.id = DocumentId(doc_id)
    return surrogate


def id_of(surrogate: Surrogate) -> DocumentId:
    """Return the id of a persisted surrogate.

    Raises:
        IntegrityViolationError: If the surrogate is still in construction
    """
    if surrogate.id is None:
        raise IntegrityViolationError(
            f"Entity not persisted yet: {surrogate}", target=str(surrogate)
        )
    return surrogate.id


def id_or_none(surrogate: Surrogate | None) -> DocumentId | None:
    return None if surrogate is None else surrogate.id
