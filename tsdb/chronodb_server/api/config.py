"""
Configuration for the ChronoDB admin API.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

from ..config import (
    DEFAULT_WAITING_DELAY_RANGE,
    CatalogConfig,
    IntegrityConfig,
    ObservabilityConfig,
    StorageConfig,
)


class Settings(BaseSettings):
    """Admin API configuration loaded from environment."""

    # Catalog storage
    data_dir: str = Field(default="/var/lib/chronodb", description="Catalog data directory")
    db_name: str = Field(default="catalog.db", description="Catalog database file")
    waiting_delay_range: str = Field(
        default=DEFAULT_WAITING_DELAY_RANGE,
        description="Integrity window in ms, 'min-max' or a single value",
    )
    bootstrap: bool = Field(default=True, description="Create built-in entries on startup")

    # API settings
    host: str = Field(default="0.0.0.0", description="API bind host")
    port: int = Field(default=8090, description="API bind port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json, text)")

    model_config = {"env_prefix": "CHRONODB_API_"}

    def to_catalog_config(self) -> CatalogConfig:
        config = CatalogConfig(
            storage=StorageConfig(data_dir=self.data_dir, db_name=self.db_name),
            integrity=IntegrityConfig.from_range(self.waiting_delay_range, bootstrap=self.bootstrap),
            observability=ObservabilityConfig(log_level=self.log_level, log_format=self.log_format),
        )
        config.validate()
        return config
