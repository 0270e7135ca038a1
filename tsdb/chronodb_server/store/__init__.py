"""
Storage module for the ChronoDB catalog.

This module provides the document store the catalog is persisted in.
It offers single-document atomicity only, references between documents
are maintained by the integrity module.
"""

from .document_store import (
    ATTRIBUTES,
    CHRONICLES,
    COLLECTIONS,
    PROPERTIES,
    SCHEMAS,
    SERIES,
    VALUE_TYPES,
    DocumentStore,
    StoredDocument,
)

__all__ = [
    "ATTRIBUTES",
    "CHRONICLES",
    "COLLECTIONS",
    "PROPERTIES",
    "SCHEMAS",
    "SERIES",
    "VALUE_TYPES",
    "DocumentStore",
    "StoredDocument",
]
