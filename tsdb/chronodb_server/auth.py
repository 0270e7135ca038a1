"""
Authorization hook for catalog operations.

The catalog does not decide who may do what. Every operation calls the
configured AuthorizationCheck before touching the store, and the check
raises PermissionDeniedError to refuse.

Invariants:
    - Checks run before any read of the target on writes
    - A refused operation has no side effect
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol

from .errors import PermissionDeniedError

logger = logging.getLogger(__name__)


class Permission(Enum):
    """Permission levels requested by catalog operations."""

    READ = "read"
    DISCOVER = "discover"
    CREATE = "create"
    MODIFY = "modify"


class AuthorizationCheck(Protocol):
    def check(self, permission: Permission, entity: Any) -> None:
        """Raise PermissionDeniedError if the operation is not allowed."""
        ...


class AllowAllAuthorization:
    """Grants every permission."""

    def check(self, permission: Permission, entity: Any) -> None:
        return None


class ReadOnlyAuthorization:
    """Grants READ and DISCOVER only."""

    def check(self, permission: Permission, entity: Any) -> None:
        if permission in (Permission.CREATE, Permission.MODIFY):
            logger.info(f"Refused {permission.value} on {entity}")
            raise PermissionDeniedError(
                f"Catalog is read-only: {permission.value} refused on {entity}",
                permission=permission.value,
            )
