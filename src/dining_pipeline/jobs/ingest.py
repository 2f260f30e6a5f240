from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from dining_pipeline.catalogue.tables import DiningLocationORM
from dining_pipeline.core.exceptions import StoreError
from dining_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from dining_pipeline.core.models import RunReport
from dining_pipeline.core.pipeline import DiningStore, IngestionPipeline
from dining_pipeline.core.prometheus_exporter import PipelinePrometheusExporter
from dining_pipeline.core.quality import RejectionGate
from dining_pipeline.devkit.config import PipelineSettings
from dining_pipeline.devkit.db import CatalogueDatabase, create_all_tables
from dining_pipeline.fetchers.base import BaseFetcher
from dining_pipeline.fetchers.factory import build_fetcher
from dining_pipeline.jobs.sql_store import SqlAlchemyDiningStore

logger = logging.getLogger(__name__)


async def _prepare_database(db: CatalogueDatabase, create_tables: bool) -> None:
    try:
        await db.connect()
        if create_tables:
            await create_all_tables(db.engine, DiningLocationORM.metadata)
    except (SQLAlchemyError, OSError) as exc:
        raise StoreError(f"database unavailable: {exc.__class__.__name__}: {exc}", transient=True) from exc


async def run_ingestion(
    settings: PipelineSettings,
    *,
    fetcher: BaseFetcher | None = None,
    store: DiningStore | None = None,
    metrics: InMemoryPipelineMetricsCollector | None = None,
) -> RunReport:
    metrics = metrics or InMemoryPipelineMetricsCollector()
    source = settings.source_config()
    db: CatalogueDatabase | None = None
    if store is None:
        db = CatalogueDatabase(settings.DB_URL)
        store = SqlAlchemyDiningStore(db, batch_size=settings.PIPELINE_DB_BATCH_SIZE)
    if fetcher is None:
        fetcher = build_fetcher(
            settings.PIPELINE_SOURCE_KIND,
            max_concurrency=settings.PIPELINE_MAX_CONCURRENCY,
            connect_timeout_seconds=settings.PIPELINE_HTTP_CONNECT_TIMEOUT_SECONDS,
            read_timeout_seconds=settings.PIPELINE_HTTP_READ_TIMEOUT_SECONDS,
            request_interval_seconds=settings.PIPELINE_REQUEST_INTERVAL_SECONDS,
            metrics=metrics,
            fetch_details=settings.PIPELINE_FETCH_DETAILS,
        )
    pipeline = IngestionPipeline(
        fetcher=fetcher,
        store=store,
        source=source,
        rejection_gate=RejectionGate(
            max_reject_ratio=settings.PIPELINE_MAX_REJECT_RATIO,
            reject_sample_size=settings.PIPELINE_REJECT_SAMPLE_SIZE,
        ),
        fail_fast=settings.PIPELINE_FAIL_FAST,
        run_timeout_seconds=settings.PIPELINE_RUN_TIMEOUT_SECONDS,
        metrics=metrics,
    )
    try:
        if db is not None:
            await _prepare_database(db, create_tables=settings.PIPELINE_CREATE_TABLES)
        return await pipeline.run()
    finally:
        if db is not None:
            await db.disconnect()
        if settings.PIPELINE_METRICS_TEXTFILE:
            _write_metrics_textfile(metrics, settings.PIPELINE_METRICS_TEXTFILE)


def _write_metrics_textfile(metrics: InMemoryPipelineMetricsCollector, path: str) -> None:
    try:
        PipelinePrometheusExporter().write_textfile(metrics, path)
    except OSError as exc:
        logger.error("metrics_textfile_failed", extra={"path": path, "error": str(exc)})
        return
    logger.info("metrics_textfile_written", extra={"path": path})


def run_pipeline(settings: PipelineSettings) -> RunReport:
    return asyncio.run(run_ingestion(settings))
