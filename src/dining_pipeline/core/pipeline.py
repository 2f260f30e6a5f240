from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, replace
from datetime import datetime, timezone
import logging
from time import perf_counter
from typing import TypeVar

from opentelemetry import trace

from dining_pipeline.core.exceptions import PipelineError, RunTimeoutError
from dining_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from dining_pipeline.core.models import (
    DiningRecord,
    FetchFailure,
    PersistedRow,
    RunReport,
    RunState,
    SourceDocument,
    UpsertSummary,
)
from dining_pipeline.core.normalizer import DiningRecordNormalizer, NormalizationResult
from dining_pipeline.core.quality import RejectionGate
from dining_pipeline.fetchers.base import BaseFetcher, SourceConfig

R = TypeVar("R")
logger = logging.getLogger(__name__)

_IN_FLIGHT_STATES = frozenset({RunState.FETCHING, RunState.NORMALIZING, RunState.UPSERTING})


class DiningStore(ABC):
    @abstractmethod
    async def upsert(
        self,
        records: Sequence[DiningRecord],
        run_at: datetime,
        *,
        deactivate_missing: bool = True,
    ) -> UpsertSummary:
        raise NotImplementedError

    @abstractmethod
    async def load_rows(self) -> dict[str, PersistedRow]:
        raise NotImplementedError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionPipeline:
    """Fetch, normalize and upsert one snapshot of the source.

    Each call to :meth:`run` walks ``idle -> fetching -> normalizing ->
    upserting`` and ends ``committed`` or ``aborted``. A run is safe to repeat:
    the store merges by identifier.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        store: DiningStore,
        source: SourceConfig,
        *,
        normalizer: DiningRecordNormalizer | None = None,
        rejection_gate: RejectionGate | None = None,
        fail_fast: bool = False,
        run_timeout_seconds: float | None = None,
        metrics: InMemoryPipelineMetricsCollector | None = None,
        clock: Callable[[], datetime] = _utcnow,
        tracer: trace.Tracer | None = None,
    ) -> None:
        if run_timeout_seconds is not None and run_timeout_seconds <= 0:
            raise ValueError("run_timeout_seconds must be > 0")
        self._fetcher = fetcher
        self._store = store
        self._source = source
        self._normalizer = normalizer or DiningRecordNormalizer()
        self._rejection_gate = rejection_gate
        self._fail_fast = fail_fast
        self._run_timeout_seconds = run_timeout_seconds
        self._metrics = metrics
        self._clock = clock
        self._tracer = tracer or trace.get_tracer(__name__)
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def source_name(self) -> str:
        return getattr(self._fetcher, "source_name", "unknown")

    async def run(self) -> RunReport:
        if self._state in _IN_FLIGHT_STATES:
            raise PipelineError(f"ingestion run already in progress: state={self._state.value}")
        self._state = RunState.IDLE
        run_at = self._clock()
        if self._metrics:
            self._metrics.set_active_source(self.source_name)
        logger.info(
            "ingestion_run_started",
            extra={"source": self.source_name, "run_at": run_at.isoformat(), "fail_fast": self._fail_fast},
        )
        started = perf_counter()
        try:
            if self._run_timeout_seconds is None:
                documents, result, summary, failures = await self._run_stages(run_at)
            else:
                documents, result, summary, failures = await asyncio.wait_for(
                    self._run_stages(run_at),
                    timeout=self._run_timeout_seconds,
                )
        except asyncio.TimeoutError as exc:
            self._abort(started, "timeout")
            raise RunTimeoutError(f"ingestion run exceeded {self._run_timeout_seconds}s") from exc
        except (Exception, asyncio.CancelledError) as exc:
            self._abort(started, type(exc).__name__)
            raise

        self._transition(RunState.COMMITTED)
        duration = perf_counter() - started
        self._observe("ingest_total", duration * 1000.0)
        if self._metrics:
            self._metrics.increment_run("committed")
            self._metrics.observe_pipeline_duration(duration)
        report = RunReport(
            run_at=run_at,
            state=RunState.COMMITTED,
            summary=summary,
            document_count=len(documents),
            duration_seconds=duration,
            fetch_failures=failures,
            rejections=result.rejections,
        )
        logger.info(
            "ingestion_run_committed",
            extra={
                "source": self.source_name,
                **asdict(summary),
                "documents": len(documents),
                "failed_pages": len(failures),
                "duration_seconds": round(duration, 3),
            },
        )
        return report

    async def _run_stages(
        self,
        run_at: datetime,
    ) -> tuple[list[SourceDocument], NormalizationResult, UpsertSummary, list[FetchFailure]]:
        self._transition(RunState.FETCHING)
        failures: list[FetchFailure] = []
        documents = await self._time_async("fetch", lambda: self._collect_documents(failures))
        if self._metrics:
            self._metrics.add_fetched_documents(len(documents))

        self._transition(RunState.NORMALIZING)
        result = self._time_sync("normalize", lambda: self._normalizer.normalize_all(documents))
        if self._metrics:
            self._metrics.add_records("rejected", len(result.rejections))
        if self._rejection_gate:
            ratio = self._rejection_gate.check(result.total, result.rejections)
        else:
            ratio = len(result.rejections) / result.total if result.total else 0.0
        if self._metrics:
            self._metrics.set_reject_ratio(ratio)

        self._transition(RunState.UPSERTING)
        if failures:
            logger.warning(
                "ingestion_snapshot_partial",
                extra={"source": self.source_name, "failed_pages": len(failures)},
            )
        # A committed run is the full snapshot: anything it did not see is deactivated.
        summary = await self._time_async("upsert", lambda: self._store.upsert(result.records, run_at))
        summary = replace(summary, rejected=len(result.rejections))
        if self._metrics:
            self._metrics.add_records("inserted", summary.inserted)
            self._metrics.add_records("updated", summary.updated)
            self._metrics.add_records("deactivated", summary.deactivated)
        return documents, result, summary, failures

    async def _collect_documents(self, failures: list[FetchFailure]) -> list[SourceDocument]:
        on_failure = None if self._fail_fast else failures.append
        return [document async for document in self._fetcher.fetch(self._source, on_failure=on_failure)]

    def _transition(self, state: RunState) -> None:
        logger.debug(
            "ingestion_state_changed",
            extra={"source": self.source_name, "from_state": self._state.value, "to_state": state.value},
        )
        self._state = state

    def _abort(self, started: float, reason: str) -> None:
        failed_state = self._state
        self._transition(RunState.ABORTED)
        if self._metrics:
            self._metrics.increment_run("aborted")
            self._metrics.observe_pipeline_duration(perf_counter() - started)
        logger.error(
            "ingestion_run_aborted",
            extra={"source": self.source_name, "failed_state": failed_state.value, "reason": reason},
        )

    async def _time_async(self, stage: str, action: Callable[[], Awaitable[R]]) -> R:
        started = perf_counter()
        with self._tracer.start_as_current_span(f"ingest.{stage}", attributes={"pipeline.source": self.source_name}):
            result = await action()
        self._observe(stage, (perf_counter() - started) * 1000.0)
        return result

    def _time_sync(self, stage: str, action: Callable[[], R]) -> R:
        started = perf_counter()
        with self._tracer.start_as_current_span(f"ingest.{stage}", attributes={"pipeline.source": self.source_name}):
            result = action()
        self._observe(stage, (perf_counter() - started) * 1000.0)
        return result

    def _observe(self, stage: str, duration_ms: float) -> None:
        if self._metrics:
            self._metrics.observe_stage_duration(stage, duration_ms)
