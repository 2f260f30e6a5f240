from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx

from dining_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from dining_pipeline.fetchers.concept3d import Concept3dFetcher
from dining_pipeline.fetchers.paged import PagedJsonFetcher

FetcherType = type[PagedJsonFetcher]

_FETCHERS: dict[str, FetcherType] = {
    "paged_json": PagedJsonFetcher,
    "concept3d": Concept3dFetcher,
}


def build_fetcher(
    source_kind: str,
    max_concurrency: int = 5,
    connect_timeout_seconds: float = 2.0,
    read_timeout_seconds: float = 5.0,
    request_interval_seconds: float = 0.0,
    metrics: InMemoryPipelineMetricsCollector | None = None,
    client_factory: Callable[[], httpx.AsyncClient] | None = None,
    fetch_details: bool = False,
) -> PagedJsonFetcher:
    fetcher_type = _FETCHERS.get(source_kind)
    if fetcher_type is None:
        supported = ", ".join(sorted(_FETCHERS.keys()))
        raise ValueError(f"unsupported source kind '{source_kind}', supported: {supported}")
    options: dict[str, Any] = {"fetch_details": fetch_details} if fetcher_type is Concept3dFetcher else {}
    return fetcher_type(
        max_concurrency=max_concurrency,
        connect_timeout_seconds=connect_timeout_seconds,
        read_timeout_seconds=read_timeout_seconds,
        request_interval_seconds=request_interval_seconds,
        metrics=metrics,
        client_factory=client_factory,
        **options,
    )
