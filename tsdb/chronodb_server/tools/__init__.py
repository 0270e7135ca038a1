"""
Command line tools for the ChronoDB catalog.
"""

from .catalog_cli import CatalogCLI

__all__ = ["CatalogCLI"]
