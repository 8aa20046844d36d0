from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import Table, Uuid, distinct, func, insert, select, text
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple
import logging
import uuid

from config import settings
from errors import PrimaryStoreError
from queries import DAY_ALIAS, AggregateQuery

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_engine_from_settings(config=settings) -> AsyncEngine:
    # Pool size is the only backpressure: callers queue once it is exhausted
    return create_async_engine(
        config.database_url,
        echo=False,  # Set to True for debugging SQL
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before using them
        pool_recycle=3600,   # Recycle connections after 1 hour
    )


class PrimaryStore:
    """Transactional system of record. Every failure surfaces as PrimaryStoreError."""

    def __init__(self, engine: AsyncEngine, query_timeout: int = None):
        import models  # noqa: F401  registers the tables on Base.metadata

        self.engine = engine
        self.query_timeout = query_timeout or settings.QUERY_TIMEOUT_SECONDS
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def is_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def table(self, name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Commit on success, roll back on any error"""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                raise PrimaryStoreError(str(e)) from e
            except Exception:
                await session.rollback()
                raise

    async def insert_row(self, table: str, row: Dict[str, Any]) -> None:
        await self.insert_rows(table, [row])

    async def insert_rows(self, table: str, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return
        target = self.table(table)
        async with self.transaction() as session:
            await session.execute(insert(target), list(rows))

    def _coerce_id(self, target: Table, value: Any) -> Optional[Any]:
        if isinstance(target.c.id.type, Uuid) and not isinstance(value, uuid.UUID):
            try:
                return uuid.UUID(str(value))
            except ValueError:
                return None
        return value

    async def fetch_row(self, table: str, row_id: Any) -> Optional[Dict[str, Any]]:
        target = self.table(table)
        row_id = self._coerce_id(target, row_id)
        if row_id is None:
            return None
        rows = await self._fetch(select(target).where(target.c.id == row_id))
        return rows[0] if rows else None

    async def fetch_rows(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Sequence[Tuple[str, bool]] = (),
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        target = self.table(table)
        stmt = select(target)
        for column, value in (filters or {}).items():
            stmt = stmt.where(target.c[column] == value)
        for column, desc in order_by:
            stmt = stmt.order_by(target.c[column].desc() if desc else target.c[column].asc())
        if limit is not None:
            stmt = stmt.limit(limit).offset(offset)
        return await self._fetch(stmt)

    async def fetch_window(
        self,
        table: str,
        columns: Sequence[str],
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Selected columns of the rows whose timestamp falls in [start, end], oldest first"""
        target = self.table(table)
        stmt = (
            select(*(target.c[name] for name in columns))
            .where(target.c.timestamp >= start, target.c.timestamp <= end)
            .order_by(target.c.timestamp.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._fetch(stmt, timeout=self.query_timeout)

    async def count_rows(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        target = self.table(table)
        stmt = select(func.count().label("total")).select_from(target)
        for column, value in (filters or {}).items():
            stmt = stmt.where(target.c[column] == value)
        rows = await self._fetch(stmt)
        return int(rows[0]["total"]) if rows else 0

    async def aggregate(self, query: AggregateQuery) -> List[Dict[str, Any]]:
        target = self.table(query.table)
        columns = {name: target.c[name] for name in query.group_by}
        time_column = target.c[query.time_column]
        if query.by_day:
            day = func.date(time_column).label(DAY_ALIAS)
            columns = {DAY_ALIAS: day, **columns}

        labels = {}
        for metric in query.metrics:
            column = target.c[metric.column] if metric.column else None
            if metric.func == "count":
                expr = func.count(column) if column is not None else func.count()
            elif metric.func == "count_distinct":
                expr = func.count(distinct(column))
            elif metric.func == "avg":
                expr = func.avg(column)
            elif metric.func == "max":
                expr = func.max(column)
            else:
                expr = func.sum(column)
            labels[metric.alias] = expr.label(metric.alias)

        stmt = select(*columns.values(), *labels.values())
        if query.start is not None:
            stmt = stmt.where(time_column >= query.start)
        if query.end is not None:
            stmt = stmt.where(time_column <= query.end)
        for column, value in query.filters.items():
            stmt = stmt.where(target.c[column] == value)
        for column in query.not_null:
            stmt = stmt.where(target.c[column].isnot(None))
        if columns:
            stmt = stmt.group_by(*columns.values())
        for name, desc in query.order_by:
            expr = labels.get(name)
            if expr is None:
                expr = columns.get(name, target.c.get(name))
            if expr is None:
                raise ValueError(f"Unknown order column: {name}")
            stmt = stmt.order_by(expr.desc() if desc else expr.asc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit).offset(query.offset)

        return await self._fetch(stmt, timeout=self.query_timeout)

    async def _fetch(self, stmt, timeout: int = None) -> List[Dict[str, Any]]:
        try:
            async with self.session_factory() as session:
                if timeout and self.is_postgres:
                    # Statement timeout to prevent runaway queries
                    await session.execute(text(f"SET LOCAL statement_timeout = '{int(timeout)}s'"))
                result = await session.execute(stmt)
                return [dict(row) for row in result.mappings().all()]
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Primary store read failed: {e}")
            raise PrimaryStoreError(str(e)) from e

    async def ping(self) -> None:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise PrimaryStoreError(str(e)) from e

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Primary store tables ready")

    async def dispose(self) -> None:
        await self.engine.dispose()
