"""
Admin API for the ChronoDB catalog.

A FastAPI application exposing discovery ("does anything still use
this?"), schema resolution and dangerous deletes. Catalog errors map to
HTTP status codes in one exception handler.
"""

from .app import create_app
from .config import Settings

__all__ = ["Settings", "create_app"]
