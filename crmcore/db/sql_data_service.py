"""
DataService backed by async SQLAlchemy Core statements over the ORM tables.
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crmcore.db.data_service import DataService, Filters, Row, require_filters
from crmcore.exceptions import ConflictError, UpstreamError
from crmcore.utils.logger import logger


class SQLAlchemyDataService(DataService):
    """Runs each call in its own session and transaction."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tables: Mapping[str, Table] | None = None,
    ):
        """
        Initialize the service.

        Args:
            session_factory: Factory producing async sessions
            tables: Collection name -> table; defaults to every registered model
        """
        self.session_factory = session_factory
        if tables is None:
            from crmcore.db.models import COLLECTION_MODELS

            tables = {name: model.__table__ for name, model in COLLECTION_MODELS.items()}
        self.tables = dict(tables)

    def _table(self, collection: str) -> Table:
        table = self.tables.get(collection)
        if table is None:
            raise UpstreamError(f"Unknown collection: {collection}")
        return table

    def _conditions(self, table: Table, filters: Filters | None) -> list:
        conditions = []
        for column_name, value in (filters or {}).items():
            if column_name not in table.c:
                raise UpstreamError(f"Unknown column {table.name}.{column_name}")
            column = table.c[column_name]
            conditions.append(column.is_(None) if value is None else column == value)
        return conditions

    def _check_columns(self, table: Table, values: Row) -> None:
        unknown = sorted(set(values) - set(table.c.keys()))
        if unknown:
            raise UpstreamError(f"Unknown columns for {table.name}: {', '.join(unknown)}")

    @asynccontextmanager
    async def _transaction(
        self, collection: str, operation: str
    ) -> AsyncIterator[AsyncSession]:
        """Open a session with a transaction and map driver errors to CRM errors."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError as e:
            logger.warning(
                "Constraint violation",
                collection=collection,
                operation=operation,
                error=str(e.orig),
            )
            raise ConflictError(
                f"Constraint violation on {collection}", original_error=e
            ) from e
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "Database call failed",
                collection=collection,
                operation=operation,
                error=str(e),
            )
            raise UpstreamError(
                f"Database {operation} on {collection} failed", original_error=e
            ) from e

    async def select(
        self,
        collection: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Row]:
        table = self._table(collection)
        stmt = select(table).where(*self._conditions(table, filters))
        if order_by is not None:
            if order_by not in table.c:
                raise UpstreamError(f"Unknown column {table.name}.{order_by}")
            column = table.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())

        async with self._transaction(collection, "select") as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    async def select_one(self, collection: str, filters: Filters) -> Row | None:
        table = self._table(collection)
        stmt = select(table).where(*self._conditions(table, filters)).limit(1)

        async with self._transaction(collection, "select") as session:
            result = await session.execute(stmt)
            row = result.mappings().first()
            return dict(row) if row is not None else None

    async def insert(self, collection: str, values: Row) -> Row:
        table = self._table(collection)
        self._check_columns(table, values)

        async with self._transaction(collection, "insert") as session:
            result = await session.execute(insert(table).values(**values))
            key = dict(zip(table.primary_key.columns.keys(), result.inserted_primary_key))
            # Read back so server defaults are included
            stored = await session.execute(
                select(table).where(*self._conditions(table, key))
            )
            return dict(stored.mappings().one())

    async def update(self, collection: str, filters: Filters, values: Row) -> list[Row]:
        require_filters(collection, filters)
        table = self._table(collection)
        self._check_columns(table, values)
        conditions = self._conditions(table, filters)
        pk_column = next(iter(table.primary_key.columns))

        async with self._transaction(collection, "update") as session:
            matched = await session.execute(select(pk_column).where(*conditions))
            keys = [row[0] for row in matched.all()]
            if not keys:
                return []
            if values:
                await session.execute(
                    update(table).where(pk_column.in_(keys)).values(**values)
                )
            result = await session.execute(select(table).where(pk_column.in_(keys)))
            return [dict(row) for row in result.mappings().all()]

    async def delete(self, collection: str, filters: Filters) -> int:
        require_filters(collection, filters)
        table = self._table(collection)
        conditions = self._conditions(table, filters)

        async with self._transaction(collection, "delete") as session:
            result = await session.execute(delete(table).where(*conditions))
            return result.rowcount
