from __future__ import annotations

from collections.abc import AsyncIterator

import pytest_asyncio

from dining_pipeline.catalogue.tables import DiningLocationORM
from dining_pipeline.devkit.db import CatalogueDatabase, create_all_tables


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncIterator[CatalogueDatabase]:
    manager = CatalogueDatabase(f"sqlite+aiosqlite:///{tmp_path / 'catalogue.db'}")
    await manager.connect()
    await create_all_tables(manager.engine, DiningLocationORM.metadata)
    yield manager
    await manager.disconnect()
