"""
Error types for the ChronoDB catalog.

This module defines all exception types raised by the catalog:
- CatalogError: Base exception
- NotFoundError: Referenced document does not exist
- DuplicateNameError: Unique name constraint violated
- InvalidValueError: Caller supplied a value the catalog rejects
- PermissionDeniedError: Authorization hook refused the operation
- IntegrityViolationError: A reference would be orphaned
- EncodingViolationError: A stored document has an illegal shape
- ConcurrencyAmbiguousError: Outcome of a dangerous operation is unknown

Invariants:
    - All errors inherit from CatalogError
    - Every error carries a stable code for programmatic handling
    - Underlying causes are chained with ``raise ... from``
"""

from __future__ import annotations

from typing import Any


class CatalogError(Exception):
    """Base exception for all catalog errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CATALOG_ERROR"
        self.details = details or {}


class NotFoundError(CatalogError):
    """Document does not exist."""

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        document_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"collection": collection, "document_id": document_id},
        )
        self.collection = collection
        self.document_id = document_id


class DuplicateNameError(CatalogError):
    """A document with the same unique key already exists."""

    def __init__(self, message: str, collection: str | None = None) -> None:
        super().__init__(message, code="DUPLICATE_NAME", details={"collection": collection})
        self.collection = collection


class InvalidValueError(CatalogError):
    """Value rejected by a value type or by entity validation."""

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message, code="INVALID_VALUE", details={"value": value})
        self.value = value


class PermissionDeniedError(CatalogError):
    """Authorization check refused the operation."""

    def __init__(self, message: str, permission: str | None = None) -> None:
        super().__init__(message, code="PERMISSION_DENIED", details={"permission": permission})
        self.permission = permission


class IntegrityViolationError(CatalogError):
    """Operation would leave dangling references.

    Raised when:
    - A pre-check finds documents still referencing the target
    - A post-check finds a reference that appeared during the window
      (the original state has been restored before this is raised)
    """

    def __init__(
        self,
        message: str,
        target: str | None = None,
        referenced_by: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="INTEGRITY_VIOLATION",
            details={"target": target, "referenced_by": list(referenced_by or [])},
        )
        self.target = target
        self.referenced_by = list(referenced_by or [])


class EncodingViolationError(CatalogError):
    """Stored document does not have a legal shape."""

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        document_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="ENCODING_VIOLATION",
            details={"collection": collection, "document_id": document_id},
        )
        self.collection = collection
        self.document_id = document_id


class ConcurrencyAmbiguousError(CatalogError):
    """The final state of a dangerous operation cannot be asserted.

    Raised when:
    - The integrity window was interrupted or cancelled
    - The post-check failed for a reason other than a violation
    - Restoring the original state failed after a violation
    """

    def __init__(
        self,
        message: str,
        target: str | None = None,
        violation: IntegrityViolationError | None = None,
        write_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            code="CONCURRENCY_AMBIGUOUS",
            details={
                "target": target,
                "violation": str(violation) if violation else None,
                "write_error": repr(write_error) if write_error else None,
            },
        )
        self.target = target
        self.violation = violation
        self.write_error = write_error
