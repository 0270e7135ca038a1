"""
ChronicleDatabase - composition root of the catalog.

Wires the document store, codec, resolver, scanners, policies, integrity
protocol and entity access classes together. The database is an explicit
handle owned by the caller: open() before use, close() when done, or use
it as an async context manager.

Invariants:
    - Components are created once per database and share one store
    - Access classes are only usable between open() and close()
    - Bootstrap is idempotent, built-ins are created only when missing

How to change safely:
    - Build new components here rather than behind module-level singletons
    - Built-in names are part of the catalog contract, do not rename them
"""

from __future__ import annotations

import logging
from typing import Any

from .auth import AllowAllAuthorization, AuthorizationCheck, Permission
from .catalog.chronicles import ChronicleAccess
from .catalog.codec import SchemaCodec
from .catalog.properties import PropertyAccess
from .catalog.resolver import SchemaResolver
from .catalog.schemas import SchemaAccess
from .catalog.series import SeriesAccess
from .catalog.types import Property, ValueType
from .catalog.value_types import ValueTypeAccess
from .catalog.values import ValueKind
from .config import CatalogConfig
from .errors import CatalogError, InvalidValueError
from .identity import EntityType
from .integrity.policy import ChronicleUpdatePolicy, SchemaUpdatePolicy
from .integrity.protocol import IntegrityProtocol, IntegrityWindow
from .integrity.scanners import ReferenceScanners
from .store import DocumentStore

logger = logging.getLogger(__name__)

BUILTIN_VALUE_TYPES: tuple[tuple[str, ValueKind, dict[str, str] | None], ...] = (
    ("name", ValueKind.NAME, None),
    ("type", ValueKind.TYPE, {kind.value: kind.name.lower() for kind in ValueKind}),
    (
        "timedomain",
        ValueKind.TIMEDOMAIN,
        {
            "daily": "Daily",
            "workweek": "Working days",
            "monthly": "Monthly",
            "quarterly": "Quarterly",
            "yearly": "Yearly",
            "datetime": "Date and time",
        },
    ),
    ("binary", ValueKind.BOOLEAN, None),
)

BUILTIN_PROPERTIES: tuple[tuple[str, str], ...] = (
    ("Symbol", "name"),
    ("Type", "type"),
    ("Calendar", "timedomain"),
    ("Sparsity", "binary"),
)


class DatabaseClosedError(CatalogError):
    """Database used before open() or after close()."""

    def __init__(self, message: str = "Database is not open") -> None:
        super().__init__(message, code="DATABASE_CLOSED")


class ChronicleDatabase:
    """Catalog database handle.

    Example:
        >>> async with ChronicleDatabase(CatalogConfig.from_env()) as db:
        ...     ccy = await db.value_types.find("name")
    """

    def __init__(
        self,
        config: CatalogConfig | None = None,
        *,
        store: DocumentStore | None = None,
        window: IntegrityWindow | None = None,
        auth: AuthorizationCheck | None = None,
    ) -> None:
        self.config = config or CatalogConfig()
        storage = self.config.storage
        self.store = store or DocumentStore(
            storage.data_dir,
            db_name=storage.db_name,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
        )
        self.window = window or IntegrityWindow(
            self.config.integrity.window_min_ms, self.config.integrity.window_max_ms
        )
        self.auth = auth or AllowAllAuthorization()
        self._open = False

        self.protocol = IntegrityProtocol(self.store, self.window)
        self.codec = SchemaCodec(lambda property_id: self._properties.get(property_id))
        self.resolver = SchemaResolver(self.store, self.codec)
        self.scanners = ReferenceScanners(self.store, self.resolver)
        self.schema_policy = SchemaUpdatePolicy(self.scanners)
        self.chronicle_policy = ChronicleUpdatePolicy(self.scanners, self.store)

        self._value_types = ValueTypeAccess(self.store, self.protocol, self.schema_policy, self.auth)
        self._properties = PropertyAccess(
            self.store, self.protocol, self.schema_policy, self.auth, self._value_types
        )
        self._schemas = SchemaAccess(
            self.store, self.protocol, self.schema_policy, self.auth, self.codec, self.resolver
        )
        self._chronicles = ChronicleAccess(
            self.store,
            self.protocol,
            self.chronicle_policy,
            self.auth,
            self.scanners,
            self.resolver,
            self._properties,
        )
        self._series = SeriesAccess(
            self.store, self.protocol, self.chronicle_policy, self.auth, self.scanners, self.resolver
        )

    # --- Lifecycle ---

    async def open(self) -> ChronicleDatabase:
        await self.store.initialize()
        self._open = True
        if self.config.integrity.bootstrap:
            await self._bootstrap()
        logger.info(
            "Catalog database open",
            extra={
                "db_path": str(self.store.db_path),
                "window_min_ms": self.window.min_ms,
                "window_max_ms": self.window.max_ms,
            },
        )
        return self

    async def close(self) -> None:
        if not self._open:
            return
        interrupted = self.window.interrupt()
        if interrupted:
            logger.warning(f"Interrupted {interrupted} pending integrity windows on close")
        await self.store.close()
        self._open = False
        logger.info("Catalog database closed")

    async def __aenter__(self) -> ChronicleDatabase:
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    def _require_open(self) -> None:
        if not self._open:
            raise DatabaseClosedError()

    async def _bootstrap(self) -> None:
        created = 0
        by_name: dict[str, ValueType] = {}
        for name, kind, values in BUILTIN_VALUE_TYPES:
            value_type = await self._value_types.find(name)
            if value_type is None:
                value_type = await self._value_types.create(ValueType(name, kind, values))
                created += 1
            by_name[name] = value_type
        for name, value_type_name in BUILTIN_PROPERTIES:
            if await self._properties.find(name) is None:
                await self._properties.create(Property(name, by_name[value_type_name]))
                created += 1
        if created:
            logger.info(f"Bootstrapped {created} built-in catalog entries")

    # --- Access ---

    @property
    def value_types(self) -> ValueTypeAccess:
        self._require_open()
        return self._value_types

    @property
    def properties(self) -> PropertyAccess:
        self._require_open()
        return self._properties

    @property
    def schemas(self) -> SchemaAccess:
        self._require_open()
        return self._schemas

    @property
    def chronicles(self) -> ChronicleAccess:
        self._require_open()
        return self._chronicles

    @property
    def series(self) -> SeriesAccess:
        self._require_open()
        return self._series

    # --- Discovery ---

    async def discover_references(self, entity_type: EntityType, doc_id: str) -> dict[str, list[str]]:
        """List the documents that still reference an entity, by kind.

        An empty result for every kind means a delete passes its pre-check.
        """
        self._require_open()
        self.auth.check(Permission.DISCOVER, doc_id)
        if entity_type is EntityType.VALUE_TYPE:
            return {"properties": await self.scanners.properties_using_value_type(doc_id)}
        if entity_type is EntityType.PROPERTY:
            return {"schemas": await self.scanners.schemas_using_property(doc_id)}
        if entity_type is EntityType.SCHEMA:
            return {"chronicles": await self.scanners.chronicles_using_schema(doc_id)}
        if entity_type is EntityType.CHRONICLE:
            return {
                "chronicles": await self.scanners.child_chronicles(doc_id),
                "series": await self.scanners.series_of_chronicle(doc_id),
            }
        if entity_type is EntityType.SERIES:
            return {}
        raise InvalidValueError(f"No references are tracked for {entity_type.name}")

    async def discover_value_references(self, value_type_id: str, text: str) -> dict[str, list[str]]:
        """Attribute rows and schemas using one value of a value type."""
        self._require_open()
        self.auth.check(Permission.DISCOVER, value_type_id)
        return {
            "attributes": await self.scanners.attributes_using_value(value_type_id, text),
            "schemas": await self.scanners.schemas_using_value(value_type_id, text),
        }
