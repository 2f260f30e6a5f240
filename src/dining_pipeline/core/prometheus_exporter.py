from __future__ import annotations

from prometheus_client import CollectorRegistry, Gauge, generate_latest, write_to_textfile

from dining_pipeline.core.metrics import InMemoryPipelineMetricsCollector


class PipelinePrometheusExporter:
    def __init__(self) -> None:
        self._registry = CollectorRegistry()
        self._stage_duration = Gauge(
            "ingest_stage_duration_ms",
            "Ingestion stage duration in milliseconds",
            labelnames=("stage",),
            registry=self._registry,
        )
        self._fetched_documents = Gauge(
            "ingest_fetched_documents_total",
            "Source documents fetched in the last run",
            registry=self._registry,
        )
        self._fetch_failures_total = Gauge(
            "ingest_fetch_failures_total",
            "Failed source pages grouped by source and failure kind",
            labelnames=("source", "kind"),
            registry=self._registry,
        )
        self._pipeline_run_total = Gauge(
            "pipeline_run_total",
            "Pipeline runs grouped by source and status",
            labelnames=("source", "status"),
            registry=self._registry,
        )
        self._pipeline_records_total = Gauge(
            "pipeline_records_total",
            "Pipeline record counts grouped by source and result",
            labelnames=("source", "result"),
            registry=self._registry,
        )
        self._pipeline_reject_ratio = Gauge(
            "pipeline_reject_ratio",
            "Reject ratio by source",
            labelnames=("source",),
            registry=self._registry,
        )
        self._pipeline_duration_seconds = Gauge(
            "pipeline_duration_seconds",
            "Pipeline run duration by source",
            labelnames=("source",),
            registry=self._registry,
        )
        self._pipeline_http_errors_total = Gauge(
            "pipeline_source_http_errors_total",
            "Source HTTP errors grouped by source and code",
            labelnames=("source", "code"),
            registry=self._registry,
        )

    def collect(self, metrics: InMemoryPipelineMetricsCollector) -> None:
        latest_by_stage: dict[str, float] = {}
        for item in metrics.stage_durations:
            latest_by_stage[item.stage] = item.duration_ms
        for stage, duration in latest_by_stage.items():
            self._stage_duration.labels(stage=stage).set(duration)
        self._fetched_documents.set(metrics.fetched_documents)
        for (source, kind), count in metrics.fetch_failures_total.items():
            self._fetch_failures_total.labels(source=source, kind=kind).set(count)
        for (source, status), count in metrics.pipeline_run_total.items():
            self._pipeline_run_total.labels(source=source, status=status).set(count)
        for (source, result), count in metrics.pipeline_records_total.items():
            self._pipeline_records_total.labels(source=source, result=result).set(count)
        for source, ratio in metrics.pipeline_reject_ratio.items():
            self._pipeline_reject_ratio.labels(source=source).set(ratio)
        for source, duration in metrics.pipeline_duration_seconds.items():
            self._pipeline_duration_seconds.labels(source=source).set(duration)
        for (source, code), count in metrics.pipeline_http_errors_total.items():
            self._pipeline_http_errors_total.labels(source=source, code=code).set(count)

    def render(self, metrics: InMemoryPipelineMetricsCollector) -> str:
        self.collect(metrics)
        return generate_latest(self._registry).decode("utf-8")

    def write_textfile(self, metrics: InMemoryPipelineMetricsCollector, path: str) -> None:
        self.collect(metrics)
        write_to_textfile(path, self._registry)
