from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

IDENTIFIER_MAX_LENGTH = 255
NAME_MAX_LENGTH = 255
COORDINATE_MAX_LENGTH = 32


@dataclass(frozen=True)
class SourceDocument:
    source_url: str
    fetched_at: datetime
    payload: Any
    page: int = 1
    position: int = 0


@dataclass(frozen=True)
class DiningRecord:
    identifier: str
    name: str
    latitude: str
    longitude: str
    last_seen: datetime
    active: bool = True
    image_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class PersistedRow:
    identifier: str
    name: str
    latitude: str
    longitude: str
    last_seen: datetime
    active: bool
    image_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class UpsertSummary:
    inserted: int = 0
    updated: int = 0
    deactivated: int = 0
    rejected: int = 0


@dataclass(frozen=True)
class FetchFailure:
    source_url: str
    page: int | None
    kind: str
    reason: str
    status_code: int | None = None


@dataclass(frozen=True)
class Rejection:
    identifier: str
    source_url: str
    reason: str


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    UPSERTING = "upserting"
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RunReport:
    run_at: datetime
    state: RunState
    summary: UpsertSummary
    document_count: int = 0
    duration_seconds: float = 0.0
    fetch_failures: list[FetchFailure] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)
