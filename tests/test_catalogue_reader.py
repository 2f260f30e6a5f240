from __future__ import annotations

from datetime import datetime

import pytest

from dining_pipeline.catalogue.reader import CatalogueReader
from dining_pipeline.catalogue.tables import ApExamORM, DiningLocationORM


@pytest.mark.asyncio
async def test_locations_hide_inactive_rows_by_default(db) -> None:
    seen = datetime(2026, 10, 1, 6, 0)
    async with db.transaction() as session:
        session.add_all(
            [
                DiningLocationORM(id="8424", name="Anteatery", latitude="33.6486", longitude="-117.8427", last_seen=seen, active=True),
                DiningLocationORM(id="8309", name="Brandywine", latitude="33.6451", longitude="-117.8425", last_seen=seen, active=False),
            ]
        )
    reader = CatalogueReader(db)

    assert await reader.locations() == [
        {"id": "8424", "name": "Anteatery", "latitude": "33.6486", "longitude": "-117.8427"}
    ]
    assert [row["id"] for row in await reader.locations(include_inactive=True)] == ["8309", "8424"]
    assert await reader.locations("8309") == []
    assert await reader.locations("missing") == []


@pytest.mark.asyncio
async def test_ap_exams_skip_rows_without_catalogue_name(db) -> None:
    async with db.transaction() as session:
        session.add_all(
            [
                ApExamORM(id="AP Biology", catalogue_name="BIO SCI 93"),
                ApExamORM(id="AP Music Theory", catalogue_name=None),
            ]
        )
    reader = CatalogueReader(db)

    assert await reader.ap_exams() == [{"catalogueName": "BIO SCI 93", "officialName": "AP Biology"}]
    assert await reader.ap_exams("AP Music Theory") == []
