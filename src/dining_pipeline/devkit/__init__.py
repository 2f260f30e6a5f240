"""Runtime devkit for configuration, database and logging concerns."""

from dining_pipeline.devkit.config import PipelineSettings, load_settings
from dining_pipeline.devkit.db import (
    CatalogueDatabase,
    Base,
    create_all_tables,
    create_async_engine,
    create_session_factory,
    is_transient_db_error,
    normalize_postgres_dsn,
)
from dining_pipeline.devkit.observability import JsonLineFormatter, configure_logging, configure_otel

__all__ = [
    "CatalogueDatabase",
    "Base",
    "JsonLineFormatter",
    "PipelineSettings",
    "configure_logging",
    "configure_otel",
    "create_all_tables",
    "create_async_engine",
    "create_session_factory",
    "is_transient_db_error",
    "load_settings",
    "normalize_postgres_dsn",
]
