"""
Integrity module for the ChronoDB catalog.

This module keeps cross-document references consistent on a store that
only guarantees single-document atomicity:
- Reference scanners finding documents that point at a target
- Update policies deciding whether a delete or update may proceed
- The protocol running a dangerous write with a timed double check

Invariants:
    - A refused write leaves the target exactly as it was
    - Ambiguous outcomes are reported, never guessed

How to change safely:
    - Add the scanner and policy hook before exposing a new reference
    - Test compensation with a violation injected during the window
"""

from .policy import ChronicleUpdatePolicy, SchemaUpdatePolicy
from .protocol import (
    IntegrityOutcome,
    IntegrityProtocol,
    IntegrityWindow,
    ProtocolState,
    WindowInterrupted,
)
from .scanners import ReferenceScanners

__all__ = [
    "ChronicleUpdatePolicy",
    "IntegrityOutcome",
    "IntegrityProtocol",
    "IntegrityWindow",
    "ProtocolState",
    "ReferenceScanners",
    "SchemaUpdatePolicy",
    "WindowInterrupted",
]
