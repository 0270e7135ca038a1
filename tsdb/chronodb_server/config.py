"""
Configuration management for the ChronoDB catalog.

All configuration is done via environment variables, there are no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The integrity window range is validated before any store is opened
    - A single number for the window range means min == max

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Shrinking the default window widens the race the protocol can miss
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_WAITING_DELAY_RANGE = "3000-6000"


def parse_delay_range(text: str) -> tuple[int, int]:
    """Parse a ``"min-max"`` or ``"ms"`` delay range in milliseconds.

    Raises:
        ValueError: If the text is malformed or min > max
    """
    parts = [p.strip() for p in text.strip().split("-")]
    if len(parts) not in (1, 2) or not all(parts):
        raise ValueError(f"Invalid waiting delay range: {text!r}")
    try:
        bounds = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"Invalid waiting delay range: {text!r}") from None
    low, high = bounds[0], bounds[-1]
    if low > high:
        raise ValueError(f"Waiting delay range has min > max: {text!r}")
    return low, high


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory holding the SQLite catalog file
        db_name: File name of the catalog database
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/chronodb"
    db_name: str = "catalog.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -16000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("CHRONODB_DATA_DIR", "/var/lib/chronodb"),
            db_name=os.getenv("CHRONODB_DB_NAME", "catalog.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-16000")),
        )


@dataclass(frozen=True)
class IntegrityConfig:
    """Integrity protocol configuration.

    Attributes:
        window_min_ms: Lower bound of the randomized wait after a dangerous write
        window_max_ms: Upper bound of the randomized wait
        bootstrap: Create the built-in value types and properties on open
    """

    window_min_ms: int = 3000
    window_max_ms: int = 6000
    bootstrap: bool = True

    @classmethod
    def from_range(cls, text: str, bootstrap: bool = True) -> IntegrityConfig:
        low, high = parse_delay_range(text)
        return cls(window_min_ms=low, window_max_ms=high, bootstrap=bootstrap)

    @classmethod
    def from_env(cls) -> IntegrityConfig:
        """Load configuration from environment variables."""
        return cls.from_range(
            os.getenv("CHRONODB_WAITING_DELAY_RANGE", DEFAULT_WAITING_DELAY_RANGE),
            bootstrap=os.getenv("CHRONODB_BOOTSTRAP", "true").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class CatalogConfig:
    """Complete catalog configuration.

    Attributes:
        storage: Local storage configuration
        integrity: Integrity protocol configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    integrity: IntegrityConfig = field(default_factory=IntegrityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> CatalogConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            integrity=IntegrityConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.integrity.window_min_ms < 0:
            raise ValueError("Integrity window bounds must not be negative")
        if self.integrity.window_min_ms > self.integrity.window_max_ms:
            raise ValueError(
                f"Integrity window min {self.integrity.window_min_ms} exceeds "
                f"max {self.integrity.window_max_ms}"
            )
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(f"Invalid LOG_FORMAT '{self.observability.log_format}'")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on open."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Catalog configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "db_name": self.storage.db_name,
                "window_min_ms": self.integrity.window_min_ms,
                "window_max_ms": self.integrity.window_max_ms,
                "bootstrap": self.integrity.bootstrap,
                "log_level": self.observability.log_level,
            },
        )
