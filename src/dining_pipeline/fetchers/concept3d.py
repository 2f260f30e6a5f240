from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from dining_pipeline.core.exceptions import FetchError, FetchPayloadError
from dining_pipeline.fetchers.base import FailureCallback, SourceConfig
from dining_pipeline.fetchers.paged import PagedJsonFetcher

logger = logging.getLogger(__name__)


def _category_id(item: dict[str, Any]) -> int | None:
    try:
        return int(item.get("catId"))
    except (TypeError, ValueError):
        return None


def _image_urls(detail: dict[str, Any]) -> list[str]:
    types = detail.get("mediaUrlTypes") or []
    urls = detail.get("mediaUrls") or []
    if not isinstance(types, list) or not isinstance(urls, list):
        return []
    return [url for kind, url in zip(types, urls) if kind == "image" and isinstance(url, str)]


class Concept3dFetcher(PagedJsonFetcher):
    """Campus map locations list: a single unpaginated JSON array.

    Items outside ``source.category_ids`` are skipped (no filter when the set
    is empty) and a location name seen earlier in the list is dropped. With
    ``fetch_details`` each kept location is also read from ``<list path>/<id>``
    through the same semaphore and request spacing, and its image media URLs
    are attached as ``imageUrls``. A failed detail is reported like a failed
    page and the location is kept without images.
    """

    source_name = "concept3d"
    send_pagination_params = False

    def __init__(self, *args: Any, fetch_details: bool = False, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._fetch_details = fetch_details

    def _pages(self, source: SourceConfig) -> list[int]:
        return [source.start_page]

    async def expand_items(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        source: SourceConfig,
        items: list[Any],
        on_failure: FailureCallback | None,
    ) -> list[Any]:
        if not self._fetch_details:
            return items
        targets = [index for index, item in enumerate(items) if isinstance(item, dict) and item.get("id") is not None]
        results = await asyncio.gather(
            *(self._paced(semaphore, lambda item=items[index]: self._fetch_detail(client, source, item)) for index in targets),
            return_exceptions=True,
        )
        expanded = list(items)
        for index, result in zip(targets, results):
            if isinstance(result, FetchError):
                self._report_failure(result, on_failure)
                continue
            if isinstance(result, BaseException):
                raise result
            expanded[index] = {**items[index], "imageUrls": result}
        return expanded

    async def _fetch_detail(self, client: httpx.AsyncClient, source: SourceConfig, item: dict[str, Any]) -> list[str]:
        base = httpx.URL(source.base_url)
        url = str(base.copy_with(path=f"{base.path.rstrip('/')}/{item['id']}"))
        request_url, detail = await self._get_json(client, source, url, source.start_page)
        if not isinstance(detail, dict):
            raise FetchPayloadError(
                f"location detail is not an object: id={item['id']}",
                source_url=request_url,
                page=source.start_page,
            )
        return _image_urls(detail)

    def select_items(self, items: list[Any], source: SourceConfig) -> list[Any]:
        selected: list[Any] = []
        seen_names: set[str] = set()
        skipped = 0
        for item in items:
            if not isinstance(item, dict):
                selected.append(item)
                continue
            if source.category_ids and _category_id(item) not in source.category_ids:
                skipped += 1
                continue
            name = str(item.get("name") or "").strip()
            if name and name in seen_names:
                skipped += 1
                continue
            if name:
                seen_names.add(name)
            selected.append(item)
        if skipped:
            logger.info("concept3d_items_skipped", extra={"skipped": skipped, "selected": len(selected)})
        return selected
