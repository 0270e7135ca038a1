"""
ChronoDB Catalog - Main entry point.

This module starts the admin API server:
- Catalog database opened in the application lifespan
- Built-in value types and properties bootstrapped on first start
- uvicorn serving the FastAPI application

Usage:
    python -m tsdb.chronodb_server.main

Configuration is entirely via environment variables.
See api/config.py and config.py for all available settings.

Invariants:
    - Logging is configured before the database is opened
    - Shutdown interrupts pending integrity windows, reporting them as ambiguous

How to change safely:
    - Keep the API process the only writer in a deployment, the integrity
      protocol does not coordinate across processes
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import Settings, create_app
from .config import CatalogConfig

logger = logging.getLogger(__name__)


def setup_logging(config: CatalogConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Catalog configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        # extra={...} fields become top-level JSON keys
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        settings = Settings()
        config = settings.to_catalog_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
