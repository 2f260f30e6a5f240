from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from dining_pipeline.core.exceptions import RunTimeoutError, StoreError
from dining_pipeline.core.models import DiningRecord, SourceDocument
from dining_pipeline.core.pipeline import IngestionPipeline
from dining_pipeline.fetchers.base import BaseFetcher, FailureCallback, SourceConfig
from dining_pipeline.jobs.sql_store import SqlAlchemyDiningStore

# SQLite hands datetimes back without tzinfo.
RUN_AT = datetime(2026, 10, 1, 6, 0)


def _record(identifier: str, name: str | None = None, latitude: str = "42.36") -> DiningRecord:
    return DiningRecord(
        identifier=identifier,
        name=name if name is not None else identifier.title(),
        latitude=latitude,
        longitude="-71.09",
        last_seen=RUN_AT,
    )


@pytest.mark.asyncio
async def test_sql_store_inserts_updates_and_soft_deletes(db) -> None:
    store = SqlAlchemyDiningStore(db)

    first = await store.upsert([_record("north"), _record("south")], RUN_AT)
    second_run = RUN_AT + timedelta(days=1)
    second = await store.upsert([_record("north", latitude="42.37")], second_run)
    rows = await store.load_rows()

    assert (first.inserted, first.updated, first.deactivated) == (2, 0, 0)
    assert (second.inserted, second.updated, second.deactivated) == (0, 1, 1)
    assert rows["north"].latitude == "42.37"
    assert rows["north"].last_seen == second_run
    assert rows["north"].active is True
    assert rows["south"].active is False
    assert rows["south"].last_seen == RUN_AT


@pytest.mark.asyncio
async def test_sql_store_repeat_run_does_not_duplicate(db) -> None:
    store = SqlAlchemyDiningStore(db, batch_size=1)
    records = [_record("north"), _record("south"), _record("west")]

    await store.upsert(records, RUN_AT)
    before = await store.load_rows()
    repeat = await store.upsert(records, RUN_AT)

    assert (repeat.inserted, repeat.updated, repeat.deactivated) == (0, 3, 0)
    assert await store.load_rows() == before


@pytest.mark.asyncio
async def test_sql_store_keeps_last_duplicate_in_batch(db) -> None:
    store = SqlAlchemyDiningStore(db)

    summary = await store.upsert([_record("north", name="Old"), _record("north", name="New")], RUN_AT)
    rows = await store.load_rows()

    assert summary.inserted == 1
    assert rows["north"].name == "New"


@pytest.mark.asyncio
async def test_sql_store_reactivates_and_respects_deactivate_flag(db) -> None:
    store = SqlAlchemyDiningStore(db)
    await store.upsert([_record("north"), _record("south")], RUN_AT)

    skipped = await store.upsert([_record("north")], RUN_AT + timedelta(days=1), deactivate_missing=False)
    assert skipped.deactivated == 0
    assert (await store.load_rows())["south"].active is True

    await store.upsert([_record("north")], RUN_AT + timedelta(days=2))
    returned = await store.upsert([_record("north"), _record("south")], RUN_AT + timedelta(days=3))

    assert returned.deactivated == 0
    assert (await store.load_rows())["south"].active is True


@pytest.mark.asyncio
async def test_sql_store_empty_snapshot_deactivates_everything(db) -> None:
    store = SqlAlchemyDiningStore(db)
    await store.upsert([_record("north"), _record("south")], RUN_AT)

    summary = await store.upsert([], RUN_AT + timedelta(days=1))

    assert summary.deactivated == 2
    assert all(not row.active for row in (await store.load_rows()).values())


@pytest.mark.asyncio
async def test_sql_store_rolls_back_whole_run_on_failure(db) -> None:
    store = SqlAlchemyDiningStore(db)
    await store.upsert([_record("north"), _record("south")], RUN_AT)
    before = await store.load_rows()

    broken = DiningRecord(identifier="broken", name=None, latitude="1", longitude="1", last_seen=RUN_AT)  # type: ignore[arg-type]
    with pytest.raises(StoreError) as exc_info:
        await store.upsert([_record("north", latitude="0.0"), broken], RUN_AT + timedelta(days=1))

    assert exc_info.value.transient is False
    assert await store.load_rows() == before


@pytest.mark.asyncio
async def test_sql_store_validates_batch_size(db) -> None:
    with pytest.raises(ValueError):
        SqlAlchemyDiningStore(db, batch_size=0)


@pytest.mark.asyncio
async def test_sql_store_deactivates_missing_rows_in_batches(db) -> None:
    store = SqlAlchemyDiningStore(db, batch_size=1)
    await store.upsert([_record("north"), _record("south"), _record("east"), _record("west")], RUN_AT)

    summary = await store.upsert([_record("north")], RUN_AT + timedelta(days=1))
    rows = await store.load_rows()

    assert summary.deactivated == 3
    assert [identifier for identifier, row in rows.items() if row.active] == ["north"]


@pytest.mark.asyncio
async def test_sql_store_persists_image_urls(db) -> None:
    store = SqlAlchemyDiningStore(db)
    record = DiningRecord(
        identifier="north",
        name="North",
        latitude="42.36",
        longitude="-71.09",
        last_seen=RUN_AT,
        image_urls=("a.jpg", "c.png"),
    )

    await store.upsert([record], RUN_AT)
    assert (await store.load_rows())["north"].image_urls == ("a.jpg", "c.png")

    await store.upsert([_record("north")], RUN_AT + timedelta(days=1))
    assert (await store.load_rows())["north"].image_urls == ()


class _StaticFetcher(BaseFetcher):
    source_name = "static"

    def __init__(self, payloads: list[dict]) -> None:
        self.payloads = payloads

    async def fetch(self, source: SourceConfig, on_failure: FailureCallback | None = None) -> AsyncIterator[SourceDocument]:
        for position, payload in enumerate(self.payloads):
            yield self.build_document(source.base_url, payload, 1, position)


class _SlowDeactivationStore(SqlAlchemyDiningStore):
    async def _deactivate_missing(self, session: AsyncSession, touched: set[str]) -> int:
        await asyncio.sleep(5)
        return await super()._deactivate_missing(session, touched)


@pytest.mark.asyncio
async def test_run_timeout_during_sql_upsert_rolls_back(db) -> None:
    store = _SlowDeactivationStore(db)
    await store.upsert([_record("north"), _record("south")], RUN_AT)
    before = await store.load_rows()
    pipeline = IngestionPipeline(
        _StaticFetcher([{"id": "north", "name": "North Renamed", "lat": "42.37", "lon": "-71.09"}]),
        store,
        SourceConfig(base_url="https://dining.example.com/locations"),
        run_timeout_seconds=0.3,
        clock=lambda: RUN_AT + timedelta(days=1),
    )

    with pytest.raises(RunTimeoutError):
        await pipeline.run()

    assert await store.load_rows() == before
