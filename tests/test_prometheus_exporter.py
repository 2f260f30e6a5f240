from __future__ import annotations

from prometheus_client.parser import text_string_to_metric_families

from dining_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from dining_pipeline.core.prometheus_exporter import PipelinePrometheusExporter


def _metrics() -> InMemoryPipelineMetricsCollector:
    metrics = InMemoryPipelineMetricsCollector()
    metrics.set_active_source("paged_json")
    metrics.observe_stage_duration("fetch", 12.5)
    metrics.observe_stage_duration("fetch", 20.0)
    metrics.add_fetched_documents(3)
    metrics.increment_fetch_failure("timeout")
    metrics.increment_http_error(503)
    metrics.increment_run("committed")
    metrics.add_records("inserted", 2)
    metrics.add_records("deactivated", 0)
    metrics.set_reject_ratio(0.25)
    metrics.observe_pipeline_duration(1.5)
    return metrics


def _samples(rendered: str) -> dict[tuple[str, tuple[tuple[str, str], ...]], float]:
    return {
        (sample.name, tuple(sorted(sample.labels.items()))): sample.value
        for family in text_string_to_metric_families(rendered)
        for sample in family.samples
    }


def test_exporter_renders_latest_values() -> None:
    samples = _samples(PipelinePrometheusExporter().render(_metrics()))

    assert samples[("ingest_stage_duration_ms", (("stage", "fetch"),))] == 20.0
    assert samples[("ingest_fetched_documents_total", ())] == 3.0
    assert samples[("ingest_fetch_failures_total", (("kind", "timeout"), ("source", "paged_json")))] == 1.0
    assert samples[("pipeline_source_http_errors_total", (("code", "503"), ("source", "paged_json")))] == 1.0
    assert samples[("pipeline_run_total", (("source", "paged_json"), ("status", "committed")))] == 1.0
    assert samples[("pipeline_records_total", (("result", "inserted"), ("source", "paged_json")))] == 2.0
    assert ("pipeline_records_total", (("result", "deactivated"), ("source", "paged_json"))) not in samples
    assert samples[("pipeline_reject_ratio", (("source", "paged_json"),))] == 0.25


def test_exporter_writes_textfile(tmp_path) -> None:
    path = tmp_path / "dining_pipeline.prom"

    PipelinePrometheusExporter().write_textfile(_metrics(), str(path))

    samples = _samples(path.read_text())
    assert samples[("pipeline_duration_seconds", (("source", "paged_json"),))] == 1.5
