"""
Series and series value access.

Values live inside the series document as a sparse mapping from time
index to number, together with the first and last index holding a
value. Every value write rewrites those three fields in one $set, so a
series document is always internally consistent.

Invariants:
    - first/last are None exactly when values is empty
    - Value keys are decimal time indexes stored as strings
    - A series number must be defined by the chronicle's effective schema
"""

from __future__ import annotations

import logging
import math
from typing import Any

from ..auth import AuthorizationCheck, Permission
from ..errors import InvalidValueError, NotFoundError
from ..identity import id_of, upgrade
from ..integrity.policy import ChronicleUpdatePolicy
from ..integrity.protocol import IntegrityOutcome, IntegrityProtocol
from ..integrity.scanners import ReferenceScanners
from ..store import CHRONICLES, SERIES, DocumentStore
from .resolver import SchemaResolver
from .types import Series

logger = logging.getLogger(__name__)


def _decode_values(doc: dict[str, Any]) -> dict[int, float]:
    return {int(t): float(v) for t, v in doc.get("values", {}).items()}


def _value_fields(values: dict[int, float]) -> dict[str, Any]:
    ordered = sorted(values)
    return {
        "first": ordered[0] if ordered else None,
        "last": ordered[-1] if ordered else None,
        "values": {str(t): values[t] for t in ordered},
    }


class SeriesAccess:
    """Create, read and delete series and read or write their values."""

    def __init__(
        self,
        store: DocumentStore,
        protocol: IntegrityProtocol,
        policy: ChronicleUpdatePolicy,
        auth: AuthorizationCheck,
        scanners: ReferenceScanners,
        resolver: SchemaResolver,
    ) -> None:
        self._store = store
        self._protocol = protocol
        self._policy = policy
        self._auth = auth
        self._scanners = scanners
        self._resolver = resolver

    async def create(self, series: Series) -> Series:
        """Persist a new, empty series.

        Raises:
            NotFoundError: If the chronicle does not exist
            InvalidValueError: If the schema does not define the series number
            DuplicateNameError: If the chronicle already has this series
        """
        self._auth.check(Permission.CREATE, series)
        if await self._store.get(CHRONICLES, series.chronicle_id) is None:
            raise NotFoundError(
                f"Chronicle not found: {series.chronicle_id}",
                collection=CHRONICLES,
                document_id=series.chronicle_id,
            )
        schema_id = await self._scanners.effective_schema_id(series.chronicle_id)
        defined = schema_id is not None and series.number in (
            await self._resolver.resolve(schema_id)
        ).effective().series
        if not defined:
            raise InvalidValueError(
                f"Series {series.number} is not defined for chronicle {series.chronicle_id}",
                value=series.number,
            )
        doc = {"chron": series.chronicle_id, "number": series.number, **_value_fields({})}
        doc_id = await self._store.insert(SERIES, doc)
        upgrade(series.surrogate, doc_id)
        series.first = series.last = None
        logger.info(
            f"Created series {series.number} of chronicle {series.chronicle_id}",
            extra={"series_id": doc_id, "chronicle_id": series.chronicle_id},
        )
        return series

    async def get(self, series_id: str) -> Series:
        """Load a series without its values.

        Raises:
            NotFoundError: If it does not exist
        """
        self._auth.check(Permission.READ, series_id)
        doc = await self._store.get(SERIES, series_id)
        if doc is None:
            raise NotFoundError(f"Series not found: {series_id}", collection=SERIES, document_id=series_id)
        return Series.from_document(series_id, doc)

    async def find(self, chronicle_id: str, number: int) -> Series | None:
        self._auth.check(Permission.READ, chronicle_id)
        found = await self._store.find_one(SERIES, {"chron": chronicle_id, "number": number})
        return None if found is None else Series.from_document(found.id, found.body)

    async def list(self, chronicle_id: str) -> list[Series]:
        self._auth.check(Permission.READ, chronicle_id)
        docs = await self._store.find(SERIES, {"chron": chronicle_id}, order_by="number")
        return [Series.from_document(d.id, d.body) for d in docs]

    async def delete(self, series: Series) -> IntegrityOutcome:
        """Delete a series holding no values.

        Raises:
            IntegrityViolationError: If it still holds values
        """
        self._auth.check(Permission.MODIFY, series)
        series_id = id_of(series.surrogate)
        outcome = await self._protocol.perform_dangerous_delete(
            SERIES, series.surrogate, lambda: self._policy.will_delete_series(series_id)
        )
        logger.info(f"Deleted series {series_id}", extra={"series_id": series_id})
        return outcome

    # --- Values ---

    async def _load_values(self, series: Series) -> dict[int, float]:
        doc = await self._store.get(SERIES, id_of(series.surrogate))
        if doc is None:
            raise NotFoundError(f"Series not found: {series.id}", collection=SERIES, document_id=series.id)
        return _decode_values(doc)

    async def _store_values(self, series: Series, values: dict[int, float]) -> None:
        fields = _value_fields(values)
        if not await self._store.update_fields(SERIES, id_of(series.surrogate), fields):
            raise NotFoundError(f"Series not found: {series.id}", collection=SERIES, document_id=series.id)
        series.first, series.last = fields["first"], fields["last"]

    async def get_range(self, series: Series) -> tuple[int, int] | None:
        """First and last time index holding a value, None when empty."""
        self._auth.check(Permission.READ, series)
        doc = await self._store.get(SERIES, id_of(series.surrogate))
        if doc is None:
            raise NotFoundError(f"Series not found: {series.id}", collection=SERIES, document_id=series.id)
        if doc.get("first") is None:
            return None
        return doc["first"], doc["last"]

    async def get_values(
        self, series: Series, first: int | None = None, last: int | None = None
    ) -> dict[int, float]:
        """Values within [first, last], both bounds optional."""
        self._auth.check(Permission.READ, series)
        values = await self._load_values(series)
        return {
            t: v
            for t, v in sorted(values.items())
            if (first is None or t >= first) and (last is None or t <= last)
        }

    async def get_first(self, series: Series, after: int | None = None) -> tuple[int, float] | None:
        """First value at or after the given index."""
        values = await self.get_values(series, first=after)
        return next(iter(values.items()), None)

    async def get_last(self, series: Series, before: int | None = None) -> tuple[int, float] | None:
        """Last value at or before the given index."""
        values = await self.get_values(series, last=before)
        return next(reversed(list(values.items())), None)

    async def update_values(self, series: Series, updates: dict[int, float]) -> int:
        """Merge values into the series. A NaN removes the value at its index.

        Returns:
            Number of indexes written or removed

        Raises:
            InvalidValueError: If an index is not an integer or a value is
                infinite or not a number; nothing is written
        """
        self._auth.check(Permission.MODIFY, series)
        values = await self._load_values(series)
        for t, v in updates.items():
            if isinstance(t, bool) or not isinstance(t, int):
                raise InvalidValueError(f"Invalid time index: {t!r}", value=t)
            try:
                number = float(v)
            except (TypeError, ValueError):
                raise InvalidValueError(f"Invalid value at {t}: {v!r}", value=v) from None
            if math.isnan(number):
                values.pop(t, None)
            elif math.isinf(number):
                raise InvalidValueError(f"Infinite value at {t}", value=v)
            else:
                values[t] = number
        await self._store_values(series, values)
        logger.debug(
            f"Updated {len(updates)} values of series {series.id}",
            extra={"series_id": series.id, "first": series.first, "last": series.last},
        )
        return len(updates)

    async def delete_value(self, series: Series, t: int) -> bool:
        self._auth.check(Permission.MODIFY, series)
        values = await self._load_values(series)
        if values.pop(t, None) is None:
            return False
        await self._store_values(series, values)
        return True

    async def set_range(self, series: Series, first: int, last: int) -> int:
        """Drop every value outside [first, last]. Returns the number dropped."""
        self._auth.check(Permission.MODIFY, series)
        if first > last:
            raise InvalidValueError(f"Invalid range [{first}, {last}]")
        values = await self._load_values(series)
        kept = {t: v for t, v in values.items() if first <= t <= last}
        await self._store_values(series, kept)
        return len(values) - len(kept)
