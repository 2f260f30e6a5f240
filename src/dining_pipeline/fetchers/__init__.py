"""Source fetchers."""

from dining_pipeline.fetchers.base import BaseFetcher, SourceConfig
from dining_pipeline.fetchers.concept3d import Concept3dFetcher
from dining_pipeline.fetchers.factory import build_fetcher
from dining_pipeline.fetchers.paged import PagedJsonFetcher

__all__ = [
    "BaseFetcher",
    "Concept3dFetcher",
    "PagedJsonFetcher",
    "SourceConfig",
    "build_fetcher",
]
