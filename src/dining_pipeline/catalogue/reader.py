from __future__ import annotations

from sqlalchemy import select

from dining_pipeline.catalogue.tables import ApExamORM, DiningLocationORM
from dining_pipeline.devkit.db import CatalogueDatabase


class CatalogueReader:
    """Read-only access to persisted rows, shaped like the public query results."""

    def __init__(self, db: CatalogueDatabase) -> None:
        self._db = db

    async def locations(
        self,
        location_id: str | None = None,
        *,
        include_inactive: bool = False,
    ) -> list[dict[str, str]]:
        query = select(DiningLocationORM).order_by(DiningLocationORM.id)
        if location_id:
            query = query.where(DiningLocationORM.id == location_id)
        if not include_inactive:
            query = query.where(DiningLocationORM.active.is_(True))
        async with self._db.transaction() as session:
            rows = (await session.scalars(query)).all()
        return [
            {
                "id": row.id,
                "name": row.name,
                "latitude": row.latitude,
                "longitude": row.longitude,
            }
            for row in rows
        ]

    async def ap_exams(self, exam_id: str | None = None) -> list[dict[str, str]]:
        query = select(ApExamORM).where(ApExamORM.catalogue_name.is_not(None)).order_by(ApExamORM.id)
        if exam_id:
            query = query.where(ApExamORM.id == exam_id)
        async with self._db.transaction() as session:
            rows = (await session.scalars(query)).all()
        return [{"catalogueName": row.catalogue_name, "officialName": row.id} for row in rows]
