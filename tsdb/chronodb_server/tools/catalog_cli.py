"""
Catalog CLI tool for ChronoDB.

This tool inspects a catalog database:
- resolve: Print a schema with its base chain and effective definitions
- references: List what still references an entity
- verify: Decode every stored schema and report encoding violations

Usage:
    chronodb-catalog resolve --schema Currency
    chronodb-catalog references --kind property --name Ccy
    chronodb-catalog references --kind chronicle --name FX/EURCHF
    chronodb-catalog verify

Invariants:
    - The tool never writes to the catalog
    - references and verify exit non-zero when they find something

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts parsing it
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from ..catalog.types import Chronicle
from ..config import CatalogConfig
from ..database import ChronicleDatabase
from ..errors import CatalogError, EncodingViolationError, NotFoundError
from ..identity import EntityType
from ..store import SCHEMAS

logger = logging.getLogger(__name__)

_KINDS = {
    "value-type": EntityType.VALUE_TYPE,
    "property": EntityType.PROPERTY,
    "schema": EntityType.SCHEMA,
    "chronicle": EntityType.CHRONICLE,
}


class CatalogCLI:
    """CLI tool for catalog inspection.

    Example:
        >>> cli = CatalogCLI(database)
        >>> await cli.resolve("Currency")
    """

    def __init__(self, database: ChronicleDatabase) -> None:
        self.database = database

    async def resolve(self, schema_name: str) -> dict[str, Any]:
        """Resolve a schema by name.

        Raises:
            NotFoundError: If no schema has this name
        """
        chain = await self.database.schemas.find(schema_name)
        if chain is None:
            raise NotFoundError(f"Schema not found: {schema_name}", collection=SCHEMAS)
        effective = chain.effective()
        return {
            "schema": chain.head.name,
            "chain": [layer.name for layer in chain.layers],
            "attributes": {
                str(number): {
                    "property": d.property.name,
                    "value": d.property.value_type.to_string(d.value),
                }
                for number, d in sorted(effective.attributes.items())
            },
            "series": {
                str(number): s.description for number, s in sorted(effective.series.items())
            },
        }

    async def references(self, kind: str, name: str) -> dict[str, list[str]]:
        """References to the entity of the given kind and name.

        Chronicles are named by their path from the top level, such as
        ``FX/EURCHF``, since chronicle names are only unique among siblings.
        """
        entity_type = _KINDS[kind]
        db = self.database
        if entity_type is EntityType.VALUE_TYPE:
            entity = await db.value_types.find(name)
        elif entity_type is EntityType.PROPERTY:
            entity = await db.properties.find(name)
        elif entity_type is EntityType.SCHEMA:
            chain = await db.schemas.find(name)
            entity = chain.head if chain else None
        else:
            entity = await self._find_chronicle(name)
        if entity is None:
            raise NotFoundError(f"No {kind} named {name}")
        return await db.discover_references(entity_type, entity.id)

    async def _find_chronicle(self, path: str) -> Chronicle | None:
        chronicle = None
        for name in path.strip("/").split("/"):
            parent_id = None if chronicle is None else chronicle.id
            chronicle = await self.database.chronicles.find(name, parent_id)
            if chronicle is None:
                return None
        return chronicle

    async def verify(self) -> list[str]:
        """Decode every schema, returning one line per violation."""
        problems = []
        for stored in await self.database.store.find(SCHEMAS, order_by="name"):
            try:
                await self.database.resolver.resolve(stored.id)
            except EncodingViolationError as e:
                problems.append(f"{stored.body.get('name', stored.id)}: {e.message}")
        return problems


async def _run(args: argparse.Namespace) -> int:
    config = CatalogConfig.from_env()
    config = replace(config, integrity=replace(config.integrity, bootstrap=False))
    if args.data_dir:
        config = replace(config, storage=replace(config.storage, data_dir=args.data_dir))

    async with ChronicleDatabase(config) as database:
        cli = CatalogCLI(database)

        if args.command == "resolve":
            print(json.dumps(await cli.resolve(args.schema), indent=2))
            return 0

        if args.command == "references":
            refs = await cli.references(args.kind, args.name)
            print(json.dumps(refs, indent=2, sort_keys=True))
            return 1 if any(refs.values()) else 0

        problems = await cli.verify()
        if not problems:
            print("All schemas decode")
            return 0
        print(f"Schema verification failed with {len(problems)} violation(s):")
        for problem in problems:
            print(f"  - {problem}")
        return 1


def main() -> None:
    """CLI entry point for catalog tool."""
    parser = argparse.ArgumentParser(description="ChronoDB catalog inspection tool")
    parser.add_argument("--data-dir", help="Catalog data directory (default: CHRONODB_DATA_DIR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a schema and its bases")
    resolve_parser.add_argument("--schema", "-s", required=True, help="Schema name")

    references_parser = subparsers.add_parser("references", help="List references to an entity")
    references_parser.add_argument("--kind", "-k", required=True, choices=sorted(_KINDS))
    references_parser.add_argument(
        "--name", "-n", required=True, help="Entity name, or slash-separated path for a chronicle"
    )

    subparsers.add_parser("verify", help="Decode every stored schema")

    args = parser.parse_args()
    try:
        sys.exit(asyncio.run(_run(args)))
    except (CatalogError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
