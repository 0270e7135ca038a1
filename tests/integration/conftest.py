"""
Shared fixtures for catalog integration tests.

Databases run against a temporary SQLite file with a [0, 0] integrity
window, so dangerous writes complete without waiting.
"""

import tempfile

import pytest
import pytest_asyncio

from tsdb.chronodb_server.config import CatalogConfig, IntegrityConfig, StorageConfig
from tsdb.chronodb_server.database import ChronicleDatabase


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def config(data_dir):
    """Catalog config with an immediate window and no built-ins."""
    return CatalogConfig(
        storage=StorageConfig(data_dir=data_dir, wal_mode=False),
        integrity=IntegrityConfig(0, 0, bootstrap=False),
    )


@pytest_asyncio.fixture
async def database(config):
    """Unopened database; tests open it themselves. Closed on teardown."""
    database = ChronicleDatabase(config)
    yield database
    await database.close()
