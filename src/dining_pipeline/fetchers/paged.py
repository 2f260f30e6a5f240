from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
import logging
from typing import Any, TypeVar

import httpx

from dining_pipeline.core.exceptions import (
    FetchConnectionError,
    FetchError,
    FetchPayloadError,
    FetchStatusError,
    FetchTimeoutError,
)
from dining_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from dining_pipeline.core.models import FetchFailure, SourceDocument
from dining_pipeline.fetchers.base import BaseFetcher, FailureCallback, SourceConfig

T = TypeVar("T")
logger = logging.getLogger(__name__)

USER_AGENT = "dining-pipeline/0.1"


class PagedJsonFetcher(BaseFetcher):
    """Fetches a paginated JSON feed, one request per page, with bounded concurrency.

    A page body is either ``{"data": [...]}`` or a bare JSON list; every list
    item becomes one :class:`SourceDocument`.
    """

    source_name = "paged_json"
    send_pagination_params = True

    def __init__(
        self,
        max_concurrency: int = 5,
        connect_timeout_seconds: float = 2.0,
        read_timeout_seconds: float = 5.0,
        request_interval_seconds: float = 0.0,
        metrics: InMemoryPipelineMetricsCollector | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        if request_interval_seconds < 0:
            raise ValueError("request_interval_seconds must be >= 0")
        self._max_concurrency = max_concurrency
        self._timeout = httpx.Timeout(
            connect=connect_timeout_seconds,
            read=read_timeout_seconds,
            write=read_timeout_seconds,
            pool=connect_timeout_seconds,
        )
        self._request_interval_seconds = request_interval_seconds
        self._metrics = metrics
        self._client_factory = client_factory

    async def fetch(
        self,
        source: SourceConfig,
        on_failure: FailureCallback | None = None,
    ) -> AsyncIterator[SourceDocument]:
        pages = self._pages(source)
        logger.info(
            "source_fetch_started",
            extra={"source": self.source_name, "start_page": pages[0], "end_page": pages[-1]},
        )
        semaphore = asyncio.Semaphore(self._max_concurrency)
        factory = self._client_factory or (lambda: httpx.AsyncClient(timeout=self._timeout))
        document_count = 0
        failure_count = 0
        async with factory() as client:
            tasks = [
                asyncio.ensure_future(self._fetch_page_with_limit(client, semaphore, source, page)) for page in pages
            ]
            try:
                for next_done in asyncio.as_completed(tasks):
                    try:
                        page, url, items = await next_done
                    except FetchError as exc:
                        failure_count += 1
                        self._report_failure(exc, on_failure)
                        continue
                    selected = self.select_items(items, source)
                    expanded = await self.expand_items(client, semaphore, source, selected, on_failure)
                    for position, item in enumerate(expanded):
                        document_count += 1
                        yield self.build_document(url, item, page, position)
            finally:
                await self._cancel_pending(tasks)
        logger.info(
            "source_fetch_completed",
            extra={"source": self.source_name, "document_count": document_count, "failed_pages": failure_count},
        )

    def select_items(self, items: list[Any], source: SourceConfig) -> list[Any]:
        del source
        return items

    async def expand_items(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        source: SourceConfig,
        items: list[Any],
        on_failure: FailureCallback | None,
    ) -> list[Any]:
        """Hook for sources that need follow-up requests per item; runs after :meth:`select_items`."""
        del client, semaphore, source, on_failure
        return items

    def _pages(self, source: SourceConfig) -> list[int]:
        return list(range(source.start_page, source.end_page + 1))

    def _headers(self, source: SourceConfig) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if source.auth_token:
            headers["Authorization"] = f"Bearer {source.auth_token}"
        return headers

    async def _fetch_page_with_limit(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        source: SourceConfig,
        page: int,
    ) -> tuple[int, str, list[Any]]:
        return await self._paced(semaphore, lambda: self._fetch_page(client, source, page))

    async def _paced(self, semaphore: asyncio.Semaphore, action: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            try:
                return await action()
            finally:
                if self._request_interval_seconds > 0:
                    await asyncio.sleep(self._request_interval_seconds)

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        source: SourceConfig,
        page: int,
    ) -> tuple[int, str, list[Any]]:
        params = {"page": page, "page_size": source.page_size} if self.send_pagination_params else None
        request_url, payload = await self._get_json(client, source, source.base_url, page, params)
        if isinstance(payload, list):
            return page, request_url, payload
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            return page, request_url, payload["data"]
        raise FetchPayloadError(
            f"source payload missing list field 'data': page={page}",
            source_url=request_url,
            page=page,
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        source: SourceConfig,
        url: str,
        page: int,
        params: dict[str, Any] | None = None,
    ) -> tuple[str, Any]:
        try:
            response = await client.get(url, params=params, headers=self._headers(source))
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"source timeout: page={page}", source_url=url, page=page) from exc
        except httpx.HTTPError as exc:
            raise FetchConnectionError(f"source unreachable: page={page}, error={exc}", source_url=url, page=page) from exc

        request_url = str(response.request.url)
        if not response.is_success:
            if self._metrics:
                self._metrics.increment_http_error(code=response.status_code, source=self.source_name)
            raise FetchStatusError(
                f"source rejected request: status={response.status_code}, page={page}",
                source_url=request_url,
                page=page,
                status_code=response.status_code,
            )

        try:
            return request_url, response.json()
        except ValueError as exc:
            raise FetchPayloadError(f"source payload is not json: page={page}", source_url=request_url, page=page) from exc

    def _report_failure(self, exc: FetchError, on_failure: FailureCallback | None) -> None:
        self._on_page_failed(exc)
        if on_failure is None:
            raise exc
        on_failure(
            FetchFailure(
                source_url=exc.source_url,
                page=exc.page,
                kind=exc.kind,
                reason=str(exc),
                status_code=exc.status_code,
            )
        )

    def _on_page_failed(self, exc: FetchError) -> None:
        if self._metrics:
            self._metrics.increment_fetch_failure(kind=exc.kind, source=self.source_name)
        logger.warning(
            "source_page_failed",
            extra={"source": self.source_name, "page": exc.page, "kind": exc.kind, "status_code": exc.status_code},
        )

    async def _cancel_pending(self, tasks: list[asyncio.Future]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
