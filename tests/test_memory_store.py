from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dining_pipeline.core.exceptions import StoreError
from dining_pipeline.core.models import DiningRecord, PersistedRow
from dining_pipeline.jobs.memory_store import InMemoryDiningStore

RUN_AT = datetime(2026, 10, 1, 6, 0, tzinfo=timezone.utc)


def _record(identifier: str, name: str | None = None, latitude: str = "42.36") -> DiningRecord:
    return DiningRecord(
        identifier=identifier,
        name=name or identifier.title(),
        latitude=latitude,
        longitude="-71.09",
        last_seen=RUN_AT,
    )


@pytest.mark.asyncio
async def test_upsert_inserts_updates_and_soft_deletes() -> None:
    store = InMemoryDiningStore()

    first = await store.upsert([_record("north"), _record("south")], RUN_AT)
    second_run = RUN_AT + timedelta(days=1)
    second = await store.upsert([_record("north", latitude="42.37")], second_run)
    rows = await store.load_rows()

    assert (first.inserted, first.updated, first.deactivated) == (2, 0, 0)
    assert (second.inserted, second.updated, second.deactivated) == (0, 1, 1)
    assert rows["north"].active is True
    assert rows["north"].latitude == "42.37"
    assert rows["north"].last_seen == second_run
    assert rows["south"].active is False
    assert rows["south"].last_seen == RUN_AT


@pytest.mark.asyncio
async def test_repeating_run_is_idempotent() -> None:
    store = InMemoryDiningStore()
    records = [_record("north"), _record("south")]

    await store.upsert(records, RUN_AT)
    before = await store.load_rows()
    repeat = await store.upsert(records, RUN_AT)

    assert (repeat.inserted, repeat.deactivated) == (0, 0)
    assert await store.load_rows() == before


@pytest.mark.asyncio
async def test_upsert_reactivates_returning_location() -> None:
    store = InMemoryDiningStore()
    await store.upsert([_record("north"), _record("south")], RUN_AT)
    await store.upsert([_record("north")], RUN_AT + timedelta(days=1))

    summary = await store.upsert([_record("north"), _record("south")], RUN_AT + timedelta(days=2))
    rows = await store.load_rows()

    assert (summary.inserted, summary.updated, summary.deactivated) == (0, 2, 0)
    assert rows["south"].active is True


@pytest.mark.asyncio
async def test_already_inactive_rows_are_not_counted_again() -> None:
    store = InMemoryDiningStore()
    await store.upsert([_record("north"), _record("south")], RUN_AT)
    await store.upsert([_record("north")], RUN_AT + timedelta(days=1))

    summary = await store.upsert([_record("north")], RUN_AT + timedelta(days=2))

    assert summary.deactivated == 0


@pytest.mark.asyncio
async def test_upsert_without_deactivation_keeps_unseen_rows_active() -> None:
    store = InMemoryDiningStore()
    await store.upsert([_record("north"), _record("south")], RUN_AT)

    summary = await store.upsert([_record("north")], RUN_AT + timedelta(days=1), deactivate_missing=False)
    rows = await store.load_rows()

    assert summary.deactivated == 0
    assert rows["south"].active is True


class _FailingStore(InMemoryDiningStore):
    def _to_row(self, record: DiningRecord, run_at: datetime) -> PersistedRow:
        if record.identifier == "boom":
            raise RuntimeError("disk full")
        return super()._to_row(record, run_at)


@pytest.mark.asyncio
async def test_failed_upsert_leaves_rows_untouched() -> None:
    store = _FailingStore()
    await store.upsert([_record("north"), _record("south")], RUN_AT)
    before = await store.load_rows()

    with pytest.raises(StoreError):
        await store.upsert([_record("north", latitude="1.0"), _record("boom")], RUN_AT + timedelta(days=1))

    assert await store.load_rows() == before


@pytest.mark.asyncio
async def test_upsert_keeps_image_urls() -> None:
    store = InMemoryDiningStore()
    record = DiningRecord(
        identifier="north",
        name="North",
        latitude="42.36",
        longitude="-71.09",
        last_seen=RUN_AT,
        image_urls=("a.jpg",),
    )

    await store.upsert([record], RUN_AT)

    assert (await store.load_rows())["north"].image_urls == ("a.jpg",)
