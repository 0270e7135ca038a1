"""
Schema inheritance resolution.

A schema document names at most one base schema. Resolving a schema
walks that chain and decodes every layer, producing a SchemaChain whose
layers are linked through ``Schema.base``.

Invariants:
    - Resolution is iterative and terminates: a visited id is never loaded twice
    - A base pointer back into the chain is treated as absent, not as an error
    - A base pointer to a missing document is treated as absent
    - A base pointer that is not an id is an encoding violation
    - Only the requested schema itself must exist

How to change safely:
    - base_chain_ids() must follow exactly the same rules as resolve()
    - Do not add a depth limit, cycle detection already bounds the walk
"""

from __future__ import annotations

import logging

from ..errors import EncodingViolationError, NotFoundError
from ..identity import EntityType, new_surrogate
from ..store import SCHEMAS, DocumentStore
from .codec import SchemaCodec
from .types import Schema, SchemaChain

logger = logging.getLogger(__name__)


class SchemaResolver:
    """Loads schemas together with their base chain."""

    def __init__(self, store: DocumentStore, codec: SchemaCodec) -> None:
        self._store = store
        self._codec = codec

    async def resolve(self, schema_id: str) -> SchemaChain:
        """Load a schema and all of its bases.

        Raises:
            NotFoundError: If schema_id itself does not exist
            EncodingViolationError: If a layer document has an illegal shape
        """
        layers: list[Schema] = []
        for layer_id, doc in await self._walk(schema_id):
            name = doc.get("name")
            if not isinstance(name, str):
                raise EncodingViolationError(
                    f"Schema {layer_id} has no name", collection=SCHEMAS, document_id=layer_id
                )
            layers.append(
                Schema(
                    name=name,
                    attributes=await self._codec.decode_attributes(doc.get("attribs", []), layer_id),
                    series=await self._codec.decode_series(doc.get("series", []), layer_id),
                    surrogate=new_surrogate(EntityType.SCHEMA, layer_id),
                )
            )
        for layer, base in zip(layers, layers[1:]):
            layer.base = base
        return SchemaChain(layers)

    async def base_chain_ids(self, schema_id: str) -> list[str]:
        """Ids of a schema and its bases, without decoding definitions.

        Returns an empty list when schema_id does not exist.

        Raises:
            EncodingViolationError: If a layer has a malformed base
        """
        try:
            return [layer_id for layer_id, _ in await self._walk(schema_id)]
        except NotFoundError:
            return []

    async def _walk(self, schema_id: str) -> list[tuple[str, dict]]:
        visited: set[str] = set()
        chain: list[tuple[str, dict]] = []
        current: str | None = schema_id
        while current is not None:
            if current in visited:
                logger.warning(
                    f"Schema base cycle cut at {current}",
                    extra={"schema_id": schema_id, "cycle_at": current},
                )
                break
            doc = await self._store.get(SCHEMAS, current)
            if doc is None:
                if not chain:
                    raise NotFoundError(
                        f"Schema not found: {current}", collection=SCHEMAS, document_id=current
                    )
                logger.warning(
                    f"Base schema {current} of {chain[-1][0]} not found, treating as absent",
                    extra={"schema_id": schema_id, "missing_base": current},
                )
                break
            visited.add(current)
            chain.append((current, doc))
            current = doc.get("base")
            if current is not None and not isinstance(current, str):
                raise EncodingViolationError(
                    f"Schema {chain[-1][0]} has a malformed base {current!r}",
                    collection=SCHEMAS,
                    document_id=chain[-1][0],
                )
        return chain
