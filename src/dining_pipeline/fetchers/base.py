from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from dining_pipeline.core.exceptions import ConfigError
from dining_pipeline.core.models import FetchFailure, SourceDocument

FailureCallback = Callable[[FetchFailure], None]


@dataclass(frozen=True)
class SourceConfig:
    base_url: str
    page_size: int = 200
    start_page: int = 1
    end_page: int = 1
    auth_token: str | None = None
    category_ids: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.base_url or not self.base_url.strip():
            raise ConfigError("source base_url is required")
        if self.end_page < self.start_page:
            raise ConfigError("source end_page must be >= start_page")


class BaseFetcher(ABC):
    source_name: str

    @abstractmethod
    def fetch(
        self,
        source: SourceConfig,
        on_failure: FailureCallback | None = None,
    ) -> AsyncIterator[SourceDocument]:
        """Yield one document per source unit.

        With ``on_failure`` set, a failed page is reported through it and the
        remaining pages are still fetched. Without it the first failure raises.
        """
        raise NotImplementedError

    def build_document(self, source_url: str, payload: Any, page: int, position: int) -> SourceDocument:
        return SourceDocument(
            source_url=source_url,
            fetched_at=datetime.now(timezone.utc),
            payload=payload,
            page=page,
            position=position,
        )
