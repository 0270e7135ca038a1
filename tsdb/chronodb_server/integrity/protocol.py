"""
Optimistic integrity protocol for dangerous writes.

The store cannot delete a document and check that nothing references it
in one atomic step. A dangerous write therefore runs as:

    INITIATED -> PRE_CHECKED -> PHYSICALLY_APPLIED -> AWAITING_WINDOW
              -> POST_CHECKED -> FINALIZED
                              \\-> COMPENSATED (then the violation is raised)

The window is a randomized wait giving writers that raced the pre-check
time to land, so the post-check can see them. When it does, the original
document is restored under its id and the violation is raised.

Invariants:
    - A pre-check violation aborts before any write
    - An apply failure is propagated without compensation
    - A post-check violation restores the exact pre-call document
    - Every other post-apply failure raises ConcurrencyAmbiguousError
    - Detection is best-effort: writers starting after the post-check are missed

How to change safely:
    - Never skip the window in production, use [0, 0] only in tests
    - Compensation must write under the original id, surrogates depend on it
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ConcurrencyAmbiguousError, IntegrityViolationError, NotFoundError
from ..identity import Surrogate, id_of
from ..store import DocumentStore

logger = logging.getLogger(__name__)

IntegrityCheck = Callable[[], Awaitable[None]]


class ProtocolState(Enum):
    """States of one dangerous write."""

    INITIATED = "initiated"
    PRE_CHECKED = "pre_checked"
    PHYSICALLY_APPLIED = "physically_applied"
    AWAITING_WINDOW = "awaiting_window"
    POST_CHECKED = "post_checked"
    FINALIZED = "finalized"
    COMPENSATED = "compensated"


class WindowInterrupted(Exception):
    """The integrity window was interrupted before it elapsed."""

    pass


@dataclass
class IntegrityOutcome:
    """Trace of a completed dangerous write.

    Attributes:
        target: Entity written
        delay_ms: Window length drawn for this run
        states: States visited, in order
    """

    target: Surrogate
    delay_ms: int = 0
    states: list[ProtocolState] = field(default_factory=list)

    @property
    def final_state(self) -> ProtocolState:
        return self.states[-1]


class IntegrityWindow:
    """Randomized, interruptible wait between apply and post-check.

    Example:
        >>> window = IntegrityWindow(3000, 6000)
        >>> delay = window.draw_ms()
        >>> await window.wait(delay)
    """

    def __init__(self, min_ms: int = 3000, max_ms: int = 6000, rng: random.Random | None = None) -> None:
        if min_ms < 0 or min_ms > max_ms:
            raise ValueError(f"Invalid integrity window [{min_ms}, {max_ms}]")
        self.min_ms = min_ms
        self.max_ms = max_ms
        self._rng = rng or random.Random()
        self._waiters: set[asyncio.Event] = set()

    def draw_ms(self) -> int:
        """Draw a delay uniformly from [min_ms, max_ms]."""
        return self._rng.randint(self.min_ms, self.max_ms)

    async def wait(self, delay_ms: int) -> None:
        """Wait delay_ms milliseconds.

        Raises:
            WindowInterrupted: If interrupt() is called while waiting
        """
        if delay_ms <= 0:
            return
        event = asyncio.Event()
        self._waiters.add(event)
        try:
            await asyncio.wait_for(event.wait(), timeout=delay_ms / 1000.0)
        except asyncio.TimeoutError:
            return
        finally:
            self._waiters.discard(event)
        raise WindowInterrupted(f"Integrity window interrupted after less than {delay_ms} ms")

    def interrupt(self) -> int:
        """Interrupt every pending wait. Returns the number of waits interrupted."""
        pending = list(self._waiters)
        for event in pending:
            event.set()
        return len(pending)

    @property
    def pending(self) -> int:
        return len(self._waiters)


class IntegrityProtocol:
    """Runs dangerous deletes and updates with a timed double check."""

    def __init__(self, store: DocumentStore, window: IntegrityWindow) -> None:
        self._store = store
        self.window = window

    async def perform_dangerous_delete(
        self,
        collection: str,
        target: Surrogate,
        check: IntegrityCheck,
    ) -> IntegrityOutcome:
        """Delete a document that other documents may reference.

        Args:
            collection: Collection holding the target
            target: Persisted surrogate of the document to delete
            check: Policy hook, run before the delete and after the window

        Raises:
            IntegrityViolationError: Pre-check or post-check found a reference
            NotFoundError: The target does not exist
            ConcurrencyAmbiguousError: Final state cannot be asserted
        """
        doc_id = id_of(target)
        outcome = IntegrityOutcome(target, states=[ProtocolState.INITIATED])

        await check()
        self._advance(outcome, ProtocolState.PRE_CHECKED)

        snapshot = await self._store.get_raw(collection, doc_id)
        if snapshot is None:
            raise NotFoundError(f"Not found: {target}", collection=collection, document_id=doc_id)
        if not await self._store.delete(collection, doc_id):
            raise NotFoundError(
                f"Removed concurrently: {target}", collection=collection, document_id=doc_id
            )
        self._advance(outcome, ProtocolState.PHYSICALLY_APPLIED)

        async def restore() -> None:
            await self._store.restore_raw(collection, doc_id, snapshot)

        await self._verify(outcome, check, restore)
        return outcome

    async def perform_dangerous_update(
        self,
        collection: str,
        target: Surrogate,
        changes: dict[str, Any],
        check: IntegrityCheck,
    ) -> IntegrityOutcome:
        """Update fields of a document when the change may orphan references.

        A None value in changes removes the field. On a post-check violation
        every changed field gets its original value back, and fields that did
        not exist before are removed again.

        Raises:
            IntegrityViolationError: Pre-check or post-check found a reference
            NotFoundError: The target does not exist
            ConcurrencyAmbiguousError: Final state cannot be asserted
        """
        doc_id = id_of(target)
        outcome = IntegrityOutcome(target, states=[ProtocolState.INITIATED])

        await check()
        self._advance(outcome, ProtocolState.PRE_CHECKED)

        original = await self._store.get(collection, doc_id)
        if original is None:
            raise NotFoundError(f"Not found: {target}", collection=collection, document_id=doc_id)
        restore_set = {k: original[k] for k in changes if k in original}
        restore_unset = [k for k in changes if k not in original]

        set_fields = {k: v for k, v in changes.items() if v is not None}
        unset_fields = [k for k, v in changes.items() if v is None]
        if not await self._store.update_fields(collection, doc_id, set_fields, unset_fields):
            raise NotFoundError(
                f"Removed concurrently: {target}", collection=collection, document_id=doc_id
            )
        self._advance(outcome, ProtocolState.PHYSICALLY_APPLIED)

        async def restore() -> None:
            if not await self._store.update_fields(collection, doc_id, restore_set, restore_unset):
                raise NotFoundError(
                    f"Removed during window: {target}", collection=collection, document_id=doc_id
                )

        await self._verify(outcome, check, restore)
        return outcome

    async def _verify(
        self,
        outcome: IntegrityOutcome,
        check: IntegrityCheck,
        restore: Callable[[], Awaitable[None]],
    ) -> None:
        target = str(outcome.target)
        outcome.delay_ms = self.window.draw_ms()
        self._advance(outcome, ProtocolState.AWAITING_WINDOW)
        try:
            await self.window.wait(outcome.delay_ms)
        except (WindowInterrupted, asyncio.CancelledError) as e:
            logger.error(
                f"Integrity window aborted for {target}, state is ambiguous",
                extra={"target": target, "delay_ms": outcome.delay_ms},
            )
            raise ConcurrencyAmbiguousError(
                f"Integrity window aborted for {target}", target=target
            ) from e

        try:
            await check()
        except IntegrityViolationError as violation:
            try:
                await restore()
            except Exception as write_error:
                logger.error(
                    f"Compensation failed for {target}",
                    extra={"target": target, "error": repr(write_error)},
                )
                raise ConcurrencyAmbiguousError(
                    f"Compensation failed for {target} after violation: {violation}",
                    target=target,
                    violation=violation,
                    write_error=write_error,
                ) from write_error
            self._advance(outcome, ProtocolState.COMPENSATED)
            logger.warning(
                f"Post-check violation for {target}, original state restored",
                extra={"target": target, "referenced_by": violation.referenced_by},
            )
            raise
        except Exception as e:
            raise ConcurrencyAmbiguousError(
                f"Post-check failed for {target}: {e}", target=target
            ) from e

        self._advance(outcome, ProtocolState.POST_CHECKED)
        self._advance(outcome, ProtocolState.FINALIZED)

    @staticmethod
    def _advance(outcome: IntegrityOutcome, state: ProtocolState) -> None:
        outcome.states.append(state)
        logger.debug(
            f"Integrity protocol {outcome.target} -> {state.value}",
            extra={"target": str(outcome.target), "state": state.value},
        )
