from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from dining_pipeline.core.exceptions import StoreError
from dining_pipeline.core.models import DiningRecord, PersistedRow, UpsertSummary
from dining_pipeline.core.pipeline import DiningStore


class InMemoryDiningStore(DiningStore):
    """Copy-on-write store: a run's changes become visible only when the whole upsert succeeds."""

    def __init__(self, rows: dict[str, PersistedRow] | None = None) -> None:
        self._rows: dict[str, PersistedRow] = dict(rows or {})
        self._lock = asyncio.Lock()

    async def upsert(
        self,
        records: Sequence[DiningRecord],
        run_at: datetime,
        *,
        deactivate_missing: bool = True,
    ) -> UpsertSummary:
        async with self._lock:
            staged = dict(self._rows)
            latest = {record.identifier: record for record in records}
            inserted = 0
            updated = 0
            deactivated = 0
            try:
                for identifier, record in latest.items():
                    if identifier in staged:
                        updated += 1
                    else:
                        inserted += 1
                    staged[identifier] = self._to_row(record, run_at)
                if deactivate_missing:
                    for identifier, row in list(staged.items()):
                        if identifier not in latest and row.active:
                            staged[identifier] = replace(row, active=False)
                            deactivated += 1
            except Exception as exc:
                raise StoreError(f"in-memory upsert rolled back: {exc}") from exc
            self._rows = staged
        return UpsertSummary(inserted=inserted, updated=updated, deactivated=deactivated)

    async def load_rows(self) -> dict[str, PersistedRow]:
        return dict(self._rows)

    def _to_row(self, record: DiningRecord, run_at: datetime) -> PersistedRow:
        return PersistedRow(
            identifier=record.identifier,
            name=record.name,
            latitude=record.latitude,
            longitude=record.longitude,
            last_seen=run_at,
            active=True,
            image_urls=record.image_urls,
        )
