"""
ChronoDB catalog test suite.

This package contains:
- unit/: Unit tests (single components, temporary SQLite files)
- integration/: Integration tests (ChronicleDatabase, CLI and admin API
  over a real SQLite store with an immediate integrity window)
"""
