from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict
from datetime import datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dining_pipeline.catalogue.tables import DiningLocationORM
from dining_pipeline.core.exceptions import StoreError
from dining_pipeline.core.models import DiningRecord, PersistedRow, UpsertSummary
from dining_pipeline.core.pipeline import DiningStore
from dining_pipeline.devkit.db import CatalogueDatabase, is_transient_db_error

logger = logging.getLogger(__name__)


class SqlAlchemyDiningStore(DiningStore):
    def __init__(self, db: CatalogueDatabase, batch_size: int = 1000) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._db = db
        self._batch_size = batch_size

    async def upsert(
        self,
        records: Sequence[DiningRecord],
        run_at: datetime,
        *,
        deactivate_missing: bool = True,
    ) -> UpsertSummary:
        try:
            async with self._db.transaction() as session:
                summary = await self._apply(session, records, run_at, deactivate_missing)
        except (SQLAlchemyError, OSError) as exc:
            transient = isinstance(exc, OSError) or is_transient_db_error(exc)
            raise StoreError(
                f"dining location upsert rolled back: {exc.__class__.__name__}: {exc}",
                transient=transient,
            ) from exc
        logger.info("store_upsert_committed", extra=asdict(summary))
        return summary

    async def load_rows(self) -> dict[str, PersistedRow]:
        async with self._db.transaction() as session:
            rows = (await session.scalars(select(DiningLocationORM).order_by(DiningLocationORM.id))).all()
        return {row.id: self._to_persisted(row) for row in rows}

    async def _apply(
        self,
        session: AsyncSession,
        records: Sequence[DiningRecord],
        run_at: datetime,
        deactivate_missing: bool,
    ) -> UpsertSummary:
        latest = {record.identifier: record for record in records}
        identifiers = list(latest)
        existing: dict[str, DiningLocationORM] = {}
        for start in range(0, len(identifiers), self._batch_size):
            batch = identifiers[start : start + self._batch_size]
            rows = await session.scalars(select(DiningLocationORM).where(DiningLocationORM.id.in_(batch)))
            existing.update({row.id: row for row in rows})

        inserted = 0
        updated = 0
        for identifier, record in latest.items():
            row = existing.get(identifier)
            if row is None:
                session.add(
                    DiningLocationORM(
                        id=identifier,
                        name=record.name,
                        latitude=record.latitude,
                        longitude=record.longitude,
                        last_seen=run_at,
                        active=True,
                        image_urls=list(record.image_urls),
                    )
                )
                inserted += 1
                continue
            row.name = record.name
            row.latitude = record.latitude
            row.longitude = record.longitude
            row.image_urls = list(record.image_urls)
            row.last_seen = run_at
            row.active = True
            updated += 1
        await session.flush()

        deactivated = 0
        if deactivate_missing:
            deactivated = await self._deactivate_missing(session, set(identifiers))
        return UpsertSummary(inserted=inserted, updated=updated, deactivated=deactivated)

    async def _deactivate_missing(self, session: AsyncSession, touched: set[str]) -> int:
        active_ids = await session.scalars(select(DiningLocationORM.id).where(DiningLocationORM.active.is_(True)))
        missing = sorted(set(active_ids) - touched)
        deactivated = 0
        for start in range(0, len(missing), self._batch_size):
            batch = missing[start : start + self._batch_size]
            statement = (
                update(DiningLocationORM)
                .where(DiningLocationORM.id.in_(batch), DiningLocationORM.active.is_(True))
                .values(active=False)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(statement)
            deactivated += int(result.rowcount or 0)
        return deactivated

    def _to_persisted(self, row: DiningLocationORM) -> PersistedRow:
        return PersistedRow(
            identifier=row.id,
            name=row.name,
            latitude=row.latitude,
            longitude=row.longitude,
            last_seen=row.last_seen,
            active=row.active,
            image_urls=tuple(row.image_urls or ()),
        )
