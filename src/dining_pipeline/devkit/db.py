from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
from typing import Any

from sqlalchemy import MetaData, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine as _create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_POSTGRES_PREFIXES = ("postgresql://", "postgres://")


class Base(DeclarativeBase):
    """Declarative base shared by the catalogue tables."""


def normalize_postgres_dsn(dsn: str) -> str:
    """Point bare Postgres URLs (as scrapers usually receive them in ``DB_URL``) at the async psycopg driver."""
    for prefix in _POSTGRES_PREFIXES:
        if dsn.startswith(prefix):
            return "postgresql+psycopg://" + dsn[len(prefix) :]
    return dsn


def redact_dsn(dsn: str) -> str:
    try:
        return make_url(dsn).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable dsn>"


def _engine_options(dsn: str) -> dict[str, Any]:
    if make_url(dsn).get_backend_name() == "sqlite":
        return {}
    return {"pool_pre_ping": True, "pool_recycle": 1800, "pool_size": 2, "max_overflow": 0}


def _install_utc_session_hook(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_utc(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        del connection_record
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("SET TIME ZONE 'UTC'")
        finally:
            cursor.close()


def create_async_engine(dsn: str) -> AsyncEngine:
    dsn = normalize_postgres_dsn(dsn)
    engine = _create_async_engine(dsn, **_engine_options(dsn))
    if engine.dialect.name == "postgresql":
        _install_utc_session_hook(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def is_transient_db_error(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        return bool(getattr(exc, "connection_invalidated", False))
    return False


async def create_all_tables(engine: AsyncEngine, metadata: MetaData) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


class CatalogueDatabase:
    """Owns the engine for one job invocation; every unit of work goes through :meth:`transaction`."""

    def __init__(self, dsn: str) -> None:
        self._dsn = normalize_postgres_dsn(dsn)
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("catalogue database is not connected")
        return self._engine

    async def connect(self) -> None:
        if self._engine is None:
            self._engine = create_async_engine(self._dsn)
            self._session_factory = create_session_factory(self._engine)
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("catalogue_db_connected", extra={"dsn": redact_dsn(self._dsn)})

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Commit on clean exit, roll back otherwise.

        Cancellation also rolls back, so a run stopped by its timeout leaves
        no partial writes.
        """
        if self._session_factory is None:
            await self.connect()
        assert self._session_factory is not None
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()
