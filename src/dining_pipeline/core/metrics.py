from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass


@dataclass(frozen=True)
class StageDuration:
    stage: str
    duration_ms: float


class InMemoryPipelineMetricsCollector:
    def __init__(self) -> None:
        self.stage_durations: list[StageDuration] = []
        self.fetched_documents = 0
        self.fetch_failures_total: dict[tuple[str, str], int] = defaultdict(int)
        self.pipeline_run_total: dict[tuple[str, str], int] = defaultdict(int)
        self.pipeline_records_total: dict[tuple[str, str], int] = defaultdict(int)
        self.pipeline_reject_ratio: dict[str, float] = {}
        self.pipeline_duration_seconds: dict[str, float] = {}
        self.pipeline_http_errors_total: dict[tuple[str, str], int] = defaultdict(int)
        self._active_source = "unknown"

    def observe_stage_duration(self, stage: str, duration_ms: float) -> None:
        self.stage_durations.append(StageDuration(stage=stage, duration_ms=duration_ms))

    def set_active_source(self, source: str) -> None:
        self._active_source = source or "unknown"

    def add_fetched_documents(self, count: int) -> None:
        self.fetched_documents += count

    def increment_fetch_failure(self, kind: str, source: str | None = None) -> None:
        self.fetch_failures_total[(source or self._active_source, kind)] += 1

    def increment_http_error(self, code: int | str, source: str | None = None) -> None:
        self.pipeline_http_errors_total[(source or self._active_source, str(code))] += 1

    def increment_run(self, status: str, source: str | None = None) -> None:
        self.pipeline_run_total[(source or self._active_source, status)] += 1

    def add_records(self, result: str, count: int, source: str | None = None) -> None:
        if count <= 0:
            return
        self.pipeline_records_total[(source or self._active_source, result)] += count

    def set_reject_ratio(self, ratio: float, source: str | None = None) -> None:
        self.pipeline_reject_ratio[source or self._active_source] = ratio

    def observe_pipeline_duration(self, duration_seconds: float, source: str | None = None) -> None:
        self.pipeline_duration_seconds[source or self._active_source] = duration_seconds
