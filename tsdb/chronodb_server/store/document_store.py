"""
SQLite-backed JSON document store for the catalog.

Each catalog collection is a table holding one JSON document per row.
The store only promises what a document database promises: every
write touches one document and is atomic on its own. There are no
multi-document transactions and no foreign keys, which is why deletes
of referenced entities go through the integrity protocol.

Invariants:
    - One SQLite file per catalog
    - Every public write touches exactly one row, or one predicate for cascades
    - get_raw()/restore_raw() round-trip the stored text byte for byte
    - Unique keys are enforced with expression indexes over the JSON body

How to change safely:
    - Document field names are the storage contract, rename with a migration
    - New unique keys must tolerate existing duplicate data before deploy
    - Keep collection names whitelisted, they are interpolated into SQL

Table schema (for every collection):
    <collection>:
        - id TEXT PRIMARY KEY (opaque document id)
        - doc_json TEXT (the document body, without the id)

Unique indexes:
    value_types(name), properties(name), schemas(name),
    chronicles(parent, name), series(chron, number), attributes(chron, prop)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import DuplicateNameError

logger = logging.getLogger(__name__)

VALUE_TYPES = "value_types"
PROPERTIES = "properties"
SCHEMAS = "schemas"
CHRONICLES = "chronicles"
SERIES = "series"
ATTRIBUTES = "attributes"

COLLECTIONS = (VALUE_TYPES, PROPERTIES, SCHEMAS, CHRONICLES, SERIES, ATTRIBUTES)


def _json_path(field_name: str) -> str:
    if not field_name.replace("_", "").isalnum():
        raise ValueError(f"Invalid field name: {field_name!r}")
    return f"$.{field_name}"


def _dumps(document: dict[str, Any]) -> str:
    return json.dumps(document, separators=(",", ":"))


@dataclass(frozen=True)
class StoredDocument:
    """A document together with its id.

    Attributes:
        id: Opaque document id
        body: Decoded JSON body
    """

    id: str
    body: dict[str, Any]


class DocumentStore:
    """Single-document-atomic JSON store on SQLite.

    This class provides the query capability the catalog is built on:
    - Insert with generated or caller-chosen ids
    - Exact raw snapshot and restore for compensation
    - Field-level $set/$unset updates within one document
    - Equality lookups and id selection over JSON fields

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = DocumentStore("/var/lib/chronodb")
        >>> await store.initialize()
        >>> doc_id = await store.insert("value_types", {"name": "text", "type": "TEXT"})
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "catalog.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -16000,
    ) -> None:
        """Initialize the document store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.db_name = db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._initialized = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @staticmethod
    def _check_collection(collection: str) -> str:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection!r}")
        return collection

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Yields:
            SQLite connection
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create tables and indexes."""
        statements = ["""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );
        """]
        for collection in COLLECTIONS:
            statements.append(f"""
                CREATE TABLE IF NOT EXISTS {collection} (
                    id TEXT PRIMARY KEY,
                    doc_json TEXT NOT NULL
                );
            """)
        statements.append("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_value_types_name
                ON value_types(json_extract(doc_json, '$.name'));
            CREATE UNIQUE INDEX IF NOT EXISTS uq_properties_name
                ON properties(json_extract(doc_json, '$.name'));
            CREATE UNIQUE INDEX IF NOT EXISTS uq_schemas_name
                ON schemas(json_extract(doc_json, '$.name'));
            CREATE UNIQUE INDEX IF NOT EXISTS uq_chronicles_parent_name
                ON chronicles(
                    ifnull(json_extract(doc_json, '$.parent'), ''),
                    json_extract(doc_json, '$.name')
                );
            CREATE UNIQUE INDEX IF NOT EXISTS uq_series_chron_number
                ON series(
                    json_extract(doc_json, '$.chron'),
                    json_extract(doc_json, '$.number')
                );
            CREATE UNIQUE INDEX IF NOT EXISTS uq_attributes_chron_prop
                ON attributes(
                    json_extract(doc_json, '$.chron'),
                    json_extract(doc_json, '$.prop')
                );
            CREATE INDEX IF NOT EXISTS idx_attributes_prop_val
                ON attributes(
                    json_extract(doc_json, '$.prop'),
                    json_extract(doc_json, '$.val')
                );
            CREATE INDEX IF NOT EXISTS idx_properties_type
                ON properties(json_extract(doc_json, '$.type'));
            CREATE INDEX IF NOT EXISTS idx_chronicles_schema
                ON chronicles(json_extract(doc_json, '$.schema'));

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)
        conn.executescript("\n".join(statements))

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        self._initialized = True
        logger.info(f"Initialized catalog database: {self.db_path}")

    async def close(self) -> None:
        self._initialized = False

    async def __aenter__(self) -> DocumentStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # --- Writes ---

    async def insert(
        self,
        collection: str,
        document: dict[str, Any],
        doc_id: str | None = None,
    ) -> str:
        """Insert a document.

        Args:
            collection: Target collection
            document: Document body
            doc_id: Id to use, generated when None

        Returns:
            The document id

        Raises:
            DuplicateNameError: If a unique key is already taken
        """
        self._check_collection(collection)
        doc_id = doc_id or uuid.uuid4().hex
        await self._insert_text(collection, doc_id, _dumps(document))
        return doc_id

    async def restore_raw(self, collection: str, doc_id: str, raw: str) -> None:
        """Reinsert a document snapshot under its original id.

        Raises:
            DuplicateNameError: If the id or a unique key was taken meanwhile
        """
        self._check_collection(collection)
        await self._insert_text(collection, doc_id, raw)

    async def _insert_text(self, collection: str, doc_id: str, text: str) -> None:
        with self._get_connection() as conn:
            try:
                conn.execute(
                    f"INSERT INTO {collection} (id, doc_json) VALUES (?, ?)",
                    (doc_id, text),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateNameError(
                    f"Unique key violated in {collection}: {e}", collection=collection
                ) from e
        logger.debug(
            f"Inserted document into {collection}",
            extra={"collection": collection, "document_id": doc_id},
        )

    async def replace(self, collection: str, doc_id: str, document: dict[str, Any]) -> bool:
        """Replace a whole document. Returns False if it does not exist."""
        self._check_collection(collection)
        with self._get_connection() as conn:
            try:
                cursor = conn.execute(
                    f"UPDATE {collection} SET doc_json = ? WHERE id = ?",
                    (_dumps(document), doc_id),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateNameError(
                    f"Unique key violated in {collection}: {e}", collection=collection
                ) from e
            return cursor.rowcount > 0

    async def update_fields(
        self,
        collection: str,
        doc_id: str,
        set_fields: dict[str, Any] | None = None,
        unset_fields: Sequence[str] = (),
    ) -> bool:
        """Apply $set and $unset to one document atomically.

        Returns:
            False if the document does not exist
        """
        self._check_collection(collection)
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    f"SELECT doc_json FROM {collection} WHERE id = ?", (doc_id,)
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK")
                    return False
                document = json.loads(row["doc_json"])
                document.update(set_fields or {})
                for name in unset_fields:
                    document.pop(name, None)
                conn.execute(
                    f"UPDATE {collection} SET doc_json = ? WHERE id = ?",
                    (_dumps(document), doc_id),
                )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                raise DuplicateNameError(
                    f"Unique key violated in {collection}: {e}", collection=collection
                ) from e
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete one document. Returns False if it did not exist."""
        self._check_collection(collection)
        with self._get_connection() as conn:
            cursor = conn.execute(f"DELETE FROM {collection} WHERE id = ?", (doc_id,))
            return cursor.rowcount > 0

    async def delete_where(self, collection: str, field_name: str, value: Any) -> int:
        """Delete every document whose field equals value."""
        self._check_collection(collection)
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM {collection} WHERE json_extract(doc_json, ?) = ?",
                (_json_path(field_name), value),
            )
            return cursor.rowcount

    # --- Reads ---

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raw = await self.get_raw(collection, doc_id)
        return None if raw is None else json.loads(raw)

    async def get_raw(self, collection: str, doc_id: str) -> str | None:
        """Get the stored text of a document, exactly as written."""
        self._check_collection(collection)
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT doc_json FROM {collection} WHERE id = ?", (doc_id,)
            ).fetchone()
            return None if row is None else row["doc_json"]

    async def find(
        self,
        collection: str,
        criteria: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        """Find documents whose fields equal the given values.

        A None criterion matches a missing or null field.
        """
        self._check_collection(collection)
        clauses: list[str] = []
        params: list[Any] = []
        for name, value in (criteria or {}).items():
            if value is None:
                clauses.append("json_extract(doc_json, ?) IS NULL")
                params.append(_json_path(name))
            else:
                clauses.append("json_extract(doc_json, ?) = ?")
                params.extend([_json_path(name), value])

        sql = f"SELECT id, doc_json FROM {collection}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if order_by:
            sql += " ORDER BY json_extract(doc_json, ?), id"
            params.append(_json_path(order_by))
        else:
            sql += " ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [StoredDocument(row["id"], json.loads(row["doc_json"])) for row in rows]

    async def find_one(self, collection: str, criteria: dict[str, Any]) -> StoredDocument | None:
        found = await self.find(collection, criteria, limit=1)
        return found[0] if found else None

    async def select_ids(
        self,
        collection: str,
        where: str,
        params: Sequence[Any] = (),
        joins: str = "",
        limit: int | None = None,
    ) -> list[str]:
        """Select distinct ids of ``collection`` rows aliased as ``c``.

        ``joins`` may add table-valued functions such as
        ``json_each(c.doc_json, '$.attribs') AS a``. Only trusted SQL
        fragments may be passed, values go through ``params``.
        """
        self._check_collection(collection)
        sql = f"SELECT DISTINCT c.id FROM {collection} AS c{joins} WHERE {where} ORDER BY c.id"
        bound = list(params)
        if limit is not None:
            sql += " LIMIT ?"
            bound.append(limit)
        with self._get_connection() as conn:
            return [row["id"] for row in conn.execute(sql, bound).fetchall()]

    async def count(self, collection: str) -> int:
        self._check_collection(collection)
        with self._get_connection() as conn:
            return conn.execute(f"SELECT COUNT(*) AS n FROM {collection}").fetchone()["n"]
