"""
ChronoDB Catalog - schema-typed time-series catalog over a document store.

This package persists value types, properties, schemas, chronicles and
series into a store that only guarantees single-document atomicity:
- SQLite tables holding one JSON document per row (one table per collection)
- Schema inheritance through base-schema pointers, resolved at read time
- An optimistic integrity protocol guarding deletes and destructive updates

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌───────────────────┐
    │  Admin API  │────▶│ ChronicleDatabase│────▶│  Entity access    │
    │  (FastAPI)  │     │  (composition)   │     │  (catalog/*.py)   │
    └─────────────┘     └──────────────────┘     └─────────┬─────────┘
                                                           │
                           ┌───────────────────────────────┼──────────────┐
                           │                               │              │
                           ▼                               ▼              ▼
                  ┌──────────────────┐           ┌──────────────┐  ┌─────────────┐
                  │IntegrityProtocol │──────────▶│   Policies   │  │ SchemaCodec │
                  │ (window, comp.)  │           │  + Scanners  │  │ + Resolver  │
                  └────────┬─────────┘           └──────┬───────┘  └──────┬──────┘
                           │                            │                 │
                           ▼                            ▼                 ▼
                        ┌──────────────────────────────────────────────────┐
                        │          DocumentStore (SQLite, JSON docs)       │
                        └──────────────────────────────────────────────────┘

Invariants:
    - Every write is atomic on the one document it touches
    - Deletes of referenced entities always go through the integrity protocol
    - A compensated delete restores the exact stored document under its id
    - Schema base chains resolve in finite steps, cycles are cut with a warning

How to change safely:
    - Keep document field names stable, they are the storage contract
    - New relationships need a scanner and a policy hook before they ship
    - Never bypass the protocol for a delete that can orphan a reference
"""

from ._version import __version__

__all__ = ["__version__"]
